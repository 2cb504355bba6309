"""Utility modules for Citewatch."""

from .config import Settings, get_settings
from .domain_match import (
    MatchPolicy,
    normalize_domain,
    extract_host,
    url_matches_domain,
)

__all__ = [
    "Settings",
    "get_settings",
    # Domain matching
    "MatchPolicy",
    "normalize_domain",
    "extract_host",
    "url_matches_domain",
]
