from __future__ import annotations

import re
from urllib.parse import urljoin, urlparse


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except Exception:
        return False


def clean_content(text: str, max_length: int = 8000) -> str:
    """Collapse whitespace and trim to max length."""
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def absolute_url(base_url: str, src: str) -> str:
    """Resolve a possibly relative asset reference against the page URL."""
    src = src.strip()
    if not src or src.startswith("data:"):
        return src
    return urljoin(base_url, src)
