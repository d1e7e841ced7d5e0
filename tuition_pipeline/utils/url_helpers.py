"""
URL helper utilities for grounding sources.

Normalization, domain extraction and Google redirect resolution.
"""

import logging
from typing import Optional
from urllib.parse import parse_qs, quote_plus, urlparse

from ..constants import GOOGLE_SEARCH_URL

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """
    Normalize URL by stripping whitespace and adding a scheme if missing.

    Examples:
        >>> normalize_url("wharton.upenn.edu/tuition")
        'https://wharton.upenn.edu/tuition'
        >>> normalize_url("//haas.berkeley.edu")
        'https://haas.berkeley.edu'
    """
    url = url.strip()

    if url.startswith("//"):
        url = f"https:{url}"

    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"

    return url


def is_valid_url(url: Optional[str]) -> bool:
    """Return True for absolute http(s) URLs with a host."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def extract_domain(url: Optional[str]) -> Optional[str]:
    """
    Get the lower-cased host of a URL, without port.

    Examples:
        >>> extract_domain("https://WWW.Kellogg.Northwestern.edu/programs")
        'www.kellogg.northwestern.edu'
        >>> extract_domain("not a url") is None
        True
    """
    if not url:
        return None
    try:
        host = urlparse(normalize_url(url)).hostname
    except ValueError:
        return None
    if not host or "." not in host or " " in host:
        return None
    return host.lower()


def normalize_base_url(url: str) -> str:
    """
    Reduce a URL to its comparison key for deduplication.

    Lower-cases the host, drops "www.", the query string, the fragment and any
    trailing slash. The scheme is ignored so http/https variants collapse.

    Examples:
        >>> normalize_base_url("https://www.wharton.upenn.edu/mba/tuition/?utm=1#fees")
        'wharton.upenn.edu/mba/tuition'
    """
    parsed = urlparse(normalize_url(url))
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    path = parsed.path.rstrip("/")
    return f"{host}{path}"


def resolve_google_redirect(url: Optional[str]) -> Optional[str]:
    """
    Extract the target of a google.com/url?q=TARGET redirect.

    Non-redirect URLs, and redirects without a valid target, are returned unchanged.
    """
    if not url or "google.com/url" not in url:
        return url

    try:
        target = parse_qs(urlparse(url).query).get("q", [None])[0]
    except ValueError as e:
        logger.warning(f"Failed to resolve redirect: {url} ({e})")
        return url

    if target and is_valid_url(target):
        logger.debug(f"Resolved redirect: {url} -> {target}")
        return target
    return url


def build_search_url(school: str, program: str) -> str:
    """Google search URL used as the primary source when grounding returned nothing."""
    return GOOGLE_SEARCH_URL.format(query=quote_plus(f"{school} {program} tuition"))
