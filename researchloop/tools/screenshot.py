from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from loguru import logger

from researchloop.config import settings
from researchloop.services.concurrency import (
    RetryExhaustedError,
    Sleep,
    retry_async,
    run_in_batches,
)
from researchloop.tools.web_utils import is_valid_url


class CaptureError(RuntimeError):
    """Raised once every capture attempt for a URL has failed."""

    def __init__(self, url: str, message: str):
        super().__init__(f"Screenshot capture failed for {url}: {message}")
        self.url = url


@dataclass(frozen=True, slots=True)
class CaptureOptions:
    viewport_width: int = 1920
    viewport_height: int = 1080
    full_page: bool = True
    wait_ms: int = 3000
    image_format: str = "png"
    quality: int = 90
    timeout_ms: int = 30000


@dataclass(frozen=True, slots=True)
class CaptureOutcome:
    url: str
    success: bool
    data: bytes | None = None
    error: str | None = None


CaptureBackend = Callable[[str, CaptureOptions], Awaitable[bytes]]


async def capture_with_playwright(url: str, options: CaptureOptions) -> bytes:
    """Render ``url`` in headless Chromium and return the encoded image."""
    from playwright.async_api import async_playwright

    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=True)
        try:
            context = await browser.new_context(
                viewport={"width": options.viewport_width, "height": options.viewport_height}
            )
            page = await context.new_page()
            await page.goto(url, wait_until="domcontentloaded", timeout=options.timeout_ms)
            if options.wait_ms > 0:
                await page.wait_for_timeout(options.wait_ms)
            kwargs: dict = {"full_page": options.full_page, "type": options.image_format}
            if options.image_format == "jpeg":
                kwargs["quality"] = options.quality
            data = await page.screenshot(**kwargs)
            await context.close()
            return data
        finally:
            await browser.close()


class ScreenshotCapturer:
    """Captures page screenshots with bounded retries and batching."""

    def __init__(
        self,
        *,
        backend: CaptureBackend | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        batch_size: int | None = None,
        batch_pause: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._backend = backend or capture_with_playwright
        self.max_attempts = max_attempts or settings.screenshot_max_attempts
        self.retry_delay = (
            retry_delay if retry_delay is not None else settings.screenshot_retry_delay_seconds
        )
        self.batch_size = batch_size or settings.screenshot_batch_size
        self.batch_pause = (
            batch_pause if batch_pause is not None else settings.screenshot_batch_pause_seconds
        )
        self._sleep = sleep
        self.default_options = CaptureOptions(
            timeout_ms=int(settings.screenshot_timeout_seconds * 1000)
        )

    async def capture(self, url: str, options: CaptureOptions | None = None) -> bytes:
        opts = options or self.default_options

        async def attempt(number: int) -> bytes:
            logger.info(f"Capturing screenshot of {url} (attempt {number}/{self.max_attempts})")
            if not is_valid_url(url):
                raise ValueError(f"Invalid URL: {url}")
            data = await self._backend(url, opts)
            if not data:
                raise ValueError("Empty screenshot returned")
            return data

        def on_failure(number: int, exc: Exception) -> None:
            logger.warning(f"Screenshot attempt {number} failed for {url}: {exc}")

        try:
            data = await retry_async(
                attempt,
                attempts=self.max_attempts,
                base_delay=self.retry_delay,
                sleep=self._sleep,
                on_failure=on_failure,
            )
        except RetryExhaustedError as exc:
            logger.error(f"Failed to capture screenshot after {exc.attempts} attempts: {url}")
            raise CaptureError(url, str(exc.last_error or exc)) from exc

        logger.info(f"Screenshot captured: {url} ({len(data)} bytes)")
        return data

    async def capture_many(
        self, urls: Sequence[str], options: CaptureOptions | None = None
    ) -> list[CaptureOutcome]:
        async def one(url: str) -> CaptureOutcome:
            try:
                data = await self.capture(url, options)
            except CaptureError as exc:
                return CaptureOutcome(url=url, success=False, error=str(exc))
            return CaptureOutcome(url=url, success=True, data=data)

        return await run_in_batches(
            list(urls),
            one,
            batch_size=self.batch_size,
            pause=self.batch_pause,
            sleep=self._sleep,
        )
