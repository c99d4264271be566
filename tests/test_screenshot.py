from __future__ import annotations

import pytest

from researchloop.tools.screenshot import CaptureError, CaptureOptions, ScreenshotCapturer


def _capturer(backend, sleep, **kwargs) -> ScreenshotCapturer:
    return ScreenshotCapturer(
        backend=backend,
        max_attempts=3,
        retry_delay=1.0,
        batch_size=3,
        batch_pause=2.0,
        sleep=sleep,
        **kwargs,
    )


def test_default_capture_options_match_full_page_png():
    options = CaptureOptions()
    assert (options.viewport_width, options.viewport_height) == (1920, 1080)
    assert options.full_page is True
    assert options.wait_ms == 3000
    assert options.image_format == "png"


@pytest.mark.asyncio
async def test_capture_fails_after_three_attempts(recording_sleep):
    calls: list[str] = []

    async def broken_backend(url, _options):
        calls.append(url)
        raise TimeoutError("navigation timeout")

    capturer = _capturer(broken_backend, recording_sleep)

    with pytest.raises(CaptureError) as excinfo:
        await capturer.capture("https://example.com")

    assert len(calls) == 3
    assert recording_sleep.delays == [1.0, 2.0]
    assert excinfo.value.url == "https://example.com"
    assert "navigation timeout" in str(excinfo.value)


@pytest.mark.asyncio
async def test_capture_retries_empty_output_then_succeeds(recording_sleep):
    outputs = [b"", b"png-bytes"]

    async def backend(_url, _options):
        return outputs.pop(0)

    data = await _capturer(backend, recording_sleep).capture("https://example.com/page")

    assert data == b"png-bytes"
    assert recording_sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_capture_rejects_non_http_urls_on_every_attempt(recording_sleep):
    async def backend(_url, _options):
        raise AssertionError("backend must not be called for invalid URLs")

    with pytest.raises(CaptureError):
        await _capturer(backend, recording_sleep).capture("ftp://example.com/file")
    assert recording_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_capture_many_keeps_input_order_and_reports_failures(recording_sleep):
    async def backend(url, _options):
        if "bad" in url:
            raise RuntimeError("crashed")
        return url.encode()

    urls = [
        "https://a.example.com",
        "https://bad.example.com",
        "https://c.example.com",
        "https://d.example.com",
    ]
    outcomes = await _capturer(backend, recording_sleep).capture_many(urls)

    assert [o.url for o in outcomes] == urls
    assert [o.success for o in outcomes] == [True, False, True, True]
    assert outcomes[0].data == b"https://a.example.com"
    assert outcomes[1].data is None
    assert "crashed" in outcomes[1].error
    # two retry waits for the bad URL, one pause between the two batches
    assert sorted(recording_sleep.delays) == [1.0, 2.0, 2.0]
