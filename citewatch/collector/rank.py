"""
Rank Extraction

Finds the tracked domain in a ranked result list. Works on the normalized
ResultEntry view the source fetcher produces, but also tolerates raw provider
dicts (URL under "link" or "url", snippet under "snippet" or "text").

A missing, empty or malformed list is zero matches - never an exception.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from citewatch.utils.domain_match import MatchPolicy, url_matches_domain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResultEntry:
    """One ranked entry from any surface, in normalized form."""
    url: Optional[str]
    title: Optional[str] = None
    snippet: Optional[str] = None


@dataclass(frozen=True)
class RankMatch:
    """Result of a rank lookup. position is 1-based and set iff cited."""
    cited: bool = False
    position: Optional[int] = None
    matched_url: Optional[str] = None
    matched_title: Optional[str] = None
    matched_snippet: Optional[str] = None


NO_MATCH = RankMatch()


def _entry_fields(entry: Any):
    """Read (url, title, snippet) from a ResultEntry or a raw dict."""
    if isinstance(entry, ResultEntry):
        return entry.url, entry.title, entry.snippet
    if isinstance(entry, dict):
        url = entry.get("link") or entry.get("url")
        snippet = entry.get("snippet") or entry.get("text")
        return url, entry.get("title"), snippet
    return None, None, None


def find_rank(
    results: Optional[Iterable[Any]],
    domain: str,
    policy: MatchPolicy = MatchPolicy.HOST_SUFFIX,
) -> RankMatch:
    """
    Find the first entry whose URL belongs to the domain.

    Args:
        results: Ordered entries (ResultEntry or raw dicts); None is allowed
        domain: Tracked domain
        policy: Domain matching policy

    Returns:
        RankMatch; NO_MATCH when the domain is absent
    """
    if not results or not domain:
        return NO_MATCH

    try:
        entries = list(results)
    except TypeError:
        logger.debug(f"Result list is not iterable: {type(results).__name__}")
        return NO_MATCH

    for index, entry in enumerate(entries):
        url, title, snippet = _entry_fields(entry)
        if not isinstance(url, str):
            continue

        if url_matches_domain(url, domain, policy):
            return RankMatch(
                cited=True,
                position=index + 1,
                matched_url=url,
                matched_title=title if isinstance(title, str) else None,
                matched_snippet=snippet if isinstance(snippet, str) else None,
            )

    return NO_MATCH
