"""Website URL normalization for express-check grouping."""

from __future__ import annotations

from urllib.parse import urlsplit


def normalize_website_url(url: str) -> str:
    """
    Normalize a checked website URL so variants group together.

    - Lowercase, surrounding whitespace trimmed
    - Scheme defaults to https://
    - Leading "www." stripped from the host
    - Trailing slash stripped

    >>> normalize_website_url(" WWW.Example.ru/ ")
    'https://example.ru'
    """
    normalized = url.strip().lower()
    if not normalized.startswith(("http://", "https://")):
        normalized = "https://" + normalized

    parts = urlsplit(normalized)
    host = parts.netloc
    if host.startswith("www."):
        host = host[4:]

    rebuilt = f"{parts.scheme}://{host}{parts.path}"
    if parts.query:
        rebuilt += f"?{parts.query}"
    return rebuilt.rstrip("/")


def derive_severity(score_percent: int | None) -> str | None:
    """Severity band for a compliance score: >=80 low, >=50 medium, else high."""
    if score_percent is None:
        return None
    if score_percent >= 80:
        return "low"
    if score_percent >= 50:
        return "medium"
    return "high"
