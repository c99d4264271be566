from __future__ import annotations

import re
from datetime import datetime
from urllib.parse import urlparse


def is_valid_url(url: str) -> bool:
    """Accept only absolute http(s) URLs."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except Exception:
        return False


def clean_content(text: str, max_length: int = 3000) -> str:
    """Collapse whitespace and trim to max length."""
    text = re.sub(r"\s+", " ", text).strip()
    if max_length > 0 and len(text) > max_length:
        text = text[:max_length]
    return text


def extract_domain(url: str) -> str:
    """Extract domain from URL for display."""
    try:
        return urlparse(url).netloc
    except Exception:
        return url


def screenshot_name_hint(url: str, *, now: datetime | None = None) -> str:
    """Build a filesystem-safe name from host, path and capture time."""
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    try:
        parsed = urlparse(url)
        if not parsed.netloc:
            raise ValueError(url)
        host = re.sub(r"[^a-zA-Z0-9]", "-", parsed.hostname or parsed.netloc)
        path = re.sub(r"[^a-zA-Z0-9]", "-", parsed.path or "")
    except ValueError:
        return f"screenshot-{stamp}"
    name = f"{host}-{path}-{stamp}" if path else f"{host}-{stamp}"
    return name[:100]


def source_type(url: str) -> str:
    """Classify a source URL for report listings."""
    domain = extract_domain(url).lower()
    if not domain:
        return "Unknown"
    if "wikipedia" in domain:
        return "Wikipedia"
    if ".gov" in domain:
        return "Government"
    if ".edu" in domain:
        return "Education"
    if ".org" in domain:
        return "Organization"
    if "news" in domain or "cnn" in domain or "bbc" in domain:
        return "News media"
    return "Website"
