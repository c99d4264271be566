from __future__ import annotations

import re

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from researchloop.config import settings
from researchloop.tools.web_utils import clean_content, is_valid_url

USER_AGENT = "Mozilla/5.0 (compatible; researchloop/0.1)"

# Elements that never carry article text
BOILERPLATE_TAGS = ("script", "style", "nav", "footer", "header", "aside", "noscript")
MAIN_SELECTORS = ("main", "article", ".content", ".post-content", ".entry-content", "body")


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _extract_with_trafilatura(raw_html: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(raw_html, output_format="txt")
    if not isinstance(extracted, str):
        return ""
    return _normalize_text(extracted)


def _extract_with_soup(raw_html: str) -> str:
    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(list(BOILERPLATE_TAGS)):
        tag.decompose()
    for selector in MAIN_SELECTORS:
        node = soup.select_one(selector)
        if node is not None:
            return _normalize_text(node.get_text(" "))
    return _normalize_text(soup.get_text(" "))


def extract_main_text(raw_html: str) -> str:
    """Pull readable text out of an HTML page, trafilatura first."""
    try:
        text = _extract_with_trafilatura(raw_html)
    except Exception as exc:
        logger.debug(f"trafilatura extraction failed: {exc}")
        text = ""
    if text:
        return text
    return _extract_with_soup(raw_html)


class ContentFetcher:
    """Fetches a page and returns bounded readable text; "" on any failure."""

    def __init__(
        self,
        *,
        timeout: float | None = None,
        max_chars: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout or settings.content_fetch_timeout_seconds
        self.max_chars = max_chars if max_chars is not None else settings.content_max_chars
        self._transport = transport

    async def fetch(self, url: str) -> str:
        if not is_valid_url(url):
            logger.warning(f"Skipping content fetch for invalid URL: {url}")
            return ""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url, headers={"User-Agent": USER_AGENT})
                response.raise_for_status()
                raw = response.text
        except Exception as exc:
            logger.warning(f"Failed to fetch content from {url}: {exc}")
            return ""

        try:
            text = extract_main_text(raw)
        except Exception as exc:
            logger.warning(f"Failed to extract content from {url}: {exc}")
            return ""
        return clean_content(text, max_length=self.max_chars)
