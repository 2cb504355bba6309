"""
Analysis Output Parser

Turns Claude's free-form reply into an Analysis.

The model is asked for strict JSON, but replies often wrap it in prose or a
fenced block. Parsing tries, in order:
1. Fenced ```json blocks
2. Every balanced {...} region in the text (string-aware)

Anything that does not yield a usable sentiment is a parse failure (None).
"""

import json
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional

from citewatch.models import Analysis

logger = logging.getLogger(__name__)


# ============================================================================
# SENTIMENT SCALE
# ============================================================================

POSITIVE = "Positive"
NEUTRAL = "Neutral"
NEGATIVE = "Negative"
NOT_MENTIONED = "Not Mentioned"

SENTIMENT_SCORES = {
    POSITIVE.lower(): 1.0,
    NEUTRAL.lower(): 0.0,
    NEGATIVE.lower(): -1.0,
    NOT_MENTIONED.lower(): 0.0,
}

POSITIVE_THRESHOLD = 0.5
NEGATIVE_THRESHOLD = -0.5


def sentiment_label(score: Optional[float]) -> str:
    """Bucket a numeric sentiment into its display label."""
    if score is None:
        return NOT_MENTIONED
    if score >= POSITIVE_THRESHOLD:
        return POSITIVE
    if score <= NEGATIVE_THRESHOLD:
        return NEGATIVE
    return NEUTRAL


def _score(value: float) -> Optional[float]:
    """Clamp to [-1, 1]; NaN and infinities are not a sentiment."""
    if not math.isfinite(value):
        return None
    return max(-1.0, min(1.0, value))


def parse_sentiment(value: Any) -> Optional[tuple]:
    """
    Read a sentiment given as a label or a number.

    Returns:
        (label, score) or None when unrecognized
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        score = _score(float(value))
        return (sentiment_label(score), score) if score is not None else None
    if isinstance(value, str):
        key = value.strip().lower()
        if key in SENTIMENT_SCORES:
            label = next(l for l in (POSITIVE, NEUTRAL, NEGATIVE, NOT_MENTIONED) if l.lower() == key)
            return label, SENTIMENT_SCORES[key]
        try:
            score = _score(float(key))
        except ValueError:
            return None
        return (sentiment_label(score), score) if score is not None else None
    return None


# ============================================================================
# JSON EXTRACTION
# ============================================================================

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index just past the brace that closes text[start], or None."""
    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def _loads_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Find the first JSON object embedded in text."""
    if not text:
        return None

    for match in _FENCED.findall(text):
        data = _loads_object(match.strip())
        if data is not None:
            return data

    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        if end is not None:
            data = _loads_object(text[start:end])
            if data is not None:
                return data
        start = text.find("{", start + 1)

    return None


# ============================================================================
# ANALYSIS
# ============================================================================

def _first_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, list):
        for item in value:
            if isinstance(item, str) and item.strip():
                return item.strip()
    return None


def _joined_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, list):
        items = [item.strip() for item in value if isinstance(item, str) and item.strip()]
        return "\n".join(items) if items else None
    return None


def dedupe_sources(*groups: Optional[Iterable[Any]]) -> List[str]:
    """Merge source URL lists, dropping non-strings and duplicates, keeping order."""
    seen = []
    for group in groups:
        if not isinstance(group, (list, tuple)):
            continue
        for url in group:
            if isinstance(url, str) and url and url not in seen:
                seen.append(url)
    return seen


def parse_analysis(text: Optional[str], extra_sources: Optional[List[str]] = None) -> Optional[Analysis]:
    """
    Parse an engine reply into an Analysis.

    Args:
        text: Raw reply text
        extra_sources: Sources reported outside the reply body (tool results)

    Returns:
        Analysis, or None when no JSON object or no usable sentiment is found
    """
    data = extract_json_object(text)
    if data is None:
        logger.warning("No JSON object found in analysis reply")
        return None

    sentiment = parse_sentiment(data.get("sentiment"))
    if sentiment is None:
        logger.warning(f"Unrecognized sentiment in analysis reply: {data.get('sentiment')!r}")
        return None

    label, score = sentiment
    gap = data.get("gap", data.get("gaps"))
    strategy = data.get("strategy", data.get("strategies"))

    return Analysis(
        sentiment_label=label,
        sentiment_score=score,
        gap=_first_text(gap),
        strategy=_joined_text(strategy),
        sources=dedupe_sources(data.get("sources"), extra_sources),
    )
