"""
Domain Matching Utilities

Shared logic for deciding whether a result URL belongs to the tracked domain.
Used by the rank extractor on all three search surfaces.

Two policies:
- HOST_SUFFIX (default): the URL host equals the domain or is a subdomain of it.
  "blog.hypefresh.co" matches "hypefresh.co"; "nothypefresh.co.uk" does not.
- SUBSTRING: the raw URL contains the domain anywhere (case-sensitive).
  Kept for parity with historical data, which was collected this way.
"""

import enum
import logging
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class MatchPolicy(enum.Enum):
    """How a result URL is matched against the tracked domain."""
    HOST_SUFFIX = "host_suffix"
    SUBSTRING = "substring"


def normalize_domain(domain: Optional[str]) -> str:
    """
    Normalize user-entered domain to a bare host.

    Strips scheme, path, port, leading "www." and trailing dots.

    Examples:
        "https://www.Hypefresh.co/blog" -> "hypefresh.co"
        "hypefresh.co." -> "hypefresh.co"
    """
    if not domain:
        return ""

    value = domain.strip().lower()
    if "://" in value:
        value = value.split("://", 1)[1]
    value = value.split("/", 1)[0].split("?", 1)[0].split("#", 1)[0]
    value = value.rsplit("@", 1)[-1].split(":", 1)[0]
    value = value.strip(".")
    if value.startswith("www."):
        value = value[4:]
    return value


def extract_host(url: Optional[str]) -> str:
    """Extract the lower-cased host from a URL, tolerating missing schemes."""
    if not url or not isinstance(url, str):
        return ""

    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"http://{candidate}"

    try:
        host = urlparse(candidate).hostname or ""
    except ValueError:
        logger.debug(f"Unparseable URL: {url!r}")
        return ""

    host = host.strip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def url_matches_domain(
    url: Optional[str],
    domain: Optional[str],
    policy: MatchPolicy = MatchPolicy.HOST_SUFFIX,
) -> bool:
    """
    Check whether a result URL belongs to the tracked domain.

    Args:
        url: Result URL as returned by the search provider
        domain: Tracked domain
        policy: Matching policy

    Returns:
        True if the URL counts as a hit for the domain
    """
    if not url or not domain or not isinstance(url, str):
        return False

    if policy is MatchPolicy.SUBSTRING:
        return domain in url

    target = normalize_domain(domain)
    if not target:
        return False

    host = extract_host(url)
    return host == target or host.endswith("." + target)
