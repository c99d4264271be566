"""Bounded batching and linear-backoff retry helpers.

Both take a ``sleep`` callable so tests can pass a fake clock instead of
waiting on ``asyncio.sleep``.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")

Sleep = Callable[[float], Awaitable[None]]


class RetryExhaustedError(RuntimeError):
    def __init__(self, attempts: int, last_error: Exception | None):
        detail = str(last_error) if last_error else "unknown error"
        super().__init__(f"gave up after {attempts} attempts: {detail}")
        self.attempts = attempts
        self.last_error = last_error


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    sleep: Sleep = asyncio.sleep,
    on_failure: Callable[[int, Exception], None] | None = None,
) -> T:
    """Run ``operation(attempt)`` until it succeeds or attempts run out.

    The wait after failed attempt ``n`` is ``base_delay * n``; there is no
    wait after the final attempt.
    """
    attempts = max(int(attempts), 1)
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation(attempt)
        except Exception as exc:
            last_error = exc
            if on_failure is not None:
                on_failure(attempt, exc)
            if attempt < attempts:
                await sleep(base_delay * attempt)
    raise RetryExhaustedError(attempts, last_error)


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    batch_size: int,
    pause: float = 0.0,
    sleep: Sleep = asyncio.sleep,
) -> list[R]:
    """Apply ``worker`` to items in fixed-size concurrent batches.

    Output order matches input order. ``worker`` is expected to absorb its
    own failures.
    """
    size = max(int(batch_size), 1)
    results: list[R] = []
    for start in range(0, len(items), size):
        batch = items[start : start + size]
        results.extend(await asyncio.gather(*(worker(item) for item in batch)))
        if pause > 0 and start + size < len(items):
            await sleep(pause)
    return results
