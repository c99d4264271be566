from __future__ import annotations

import httpx
import pytest

from researchloop.tools import content_fetcher
from researchloop.tools.content_fetcher import ContentFetcher, extract_main_text

PAGE = """
<html>
  <head><title>Page</title><script>var tracking = 1;</script></head>
  <body>
    <nav>Home | About | Contact</nav>
    <main><h1>Headline</h1><p>Main   article text about research loops.</p></main>
    <footer>Copyright</footer>
  </body>
</html>
"""


def _no_trafilatura(monkeypatch):
    monkeypatch.setattr(content_fetcher, "_extract_with_trafilatura", lambda _html: "")


def test_extract_main_text_falls_back_to_main_element(monkeypatch):
    _no_trafilatura(monkeypatch)

    text = extract_main_text(PAGE)

    assert "Main article text about research loops." in text
    assert "Home | About" not in text
    assert "tracking" not in text
    assert "Copyright" not in text


def test_extract_main_text_prefers_trafilatura(monkeypatch):
    monkeypatch.setattr(content_fetcher, "_extract_with_trafilatura", lambda _html: "from trafilatura")
    assert extract_main_text(PAGE) == "from trafilatura"


@pytest.mark.asyncio
async def test_fetch_returns_bounded_clean_text(monkeypatch):
    _no_trafilatura(monkeypatch)
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text=PAGE))
    fetcher = ContentFetcher(max_chars=20, transport=transport)

    text = await fetcher.fetch("https://example.com/article")

    assert len(text) == 20
    assert text.startswith("Headline Main")


@pytest.mark.asyncio
async def test_fetch_returns_empty_string_on_http_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="oops"))
    assert await ContentFetcher(transport=transport).fetch("https://example.com") == ""


@pytest.mark.asyncio
async def test_fetch_returns_empty_string_on_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    fetcher = ContentFetcher(transport=httpx.MockTransport(handler))
    assert await fetcher.fetch("https://slow.example.com") == ""


@pytest.mark.asyncio
async def test_fetch_skips_invalid_urls():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    fetcher = ContentFetcher(transport=httpx.MockTransport(handler))
    assert await fetcher.fetch("javascript:alert(1)") == ""
