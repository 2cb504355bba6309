"""
Citewatch - Analysis Package

Qualitative analysis of AI search answers with Claude:
- ClaudeClient: Anthropic SDK wrapper with usage tracking
- parser: defensive JSON extraction and the sentiment scale
- AnalysisEnricher: one-shot, observable enrichment tasks per snapshot
"""

from .client import ClaudeClient, AnalysisResponse, TokenUsage
from .parser import (
    extract_json_object,
    parse_analysis,
    parse_sentiment,
    sentiment_label,
)
from .enricher import (
    AnalysisEnricher,
    AnalysisError,
    EnrichmentOutcome,
    EnrichmentState,
    EnrichmentTask,
    build_prompt,
)

__all__ = [
    # Client
    "ClaudeClient",
    "AnalysisResponse",
    "TokenUsage",

    # Parsing
    "extract_json_object",
    "parse_analysis",
    "parse_sentiment",
    "sentiment_label",

    # Enrichment
    "AnalysisEnricher",
    "AnalysisError",
    "EnrichmentOutcome",
    "EnrichmentState",
    "EnrichmentTask",
    "build_prompt",
]
