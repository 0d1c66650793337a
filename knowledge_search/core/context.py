"""
Per-request deadline and cancellation carrier.
Every outbound leg (embedding, pool search, hydration) runs through a RequestContext.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, List, Optional

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from .errors import DeadlineExceeded, UpstreamUnavailable


class RequestContext:
    """Deadline and cancellation state for one inbound request.

    The context is created by the API layer and threaded through every
    outbound call so that a timeout or client disconnect stops in-flight work.
    """

    def __init__(self, timeout_sec: float, retry_attempts: int = 1, authorization: Optional[str] = None):
        self.deadline = time.monotonic() + timeout_sec
        self.authorization = authorization
        self.retry_attempts = max(1, retry_attempts)
        self._cancelled = asyncio.Event()

    def remaining(self) -> float:
        """Seconds left before the deadline (never negative)."""
        return max(0.0, self.deadline - time.monotonic())

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check(self, leg: str) -> None:
        """Raise if the request is already cancelled or out of time."""
        if self.cancelled:
            raise asyncio.CancelledError(f"request cancelled before {leg}")
        if self.remaining() <= 0:
            raise DeadlineExceeded(f"Request deadline exceeded before {leg}")

    async def run(self, leg: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run one outbound call under the deadline, applying the retry policy.

        Only UpstreamUnavailable is retried. DeadlineExceeded is never retried.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._run_once(leg, call)

    async def _run_once(self, leg: str, call: Callable[[], Awaitable[Any]]) -> Any:
        self.check(leg)
        try:
            return await asyncio.wait_for(call(), timeout=self.remaining())
        except asyncio.TimeoutError:
            raise DeadlineExceeded(f"Request deadline exceeded during {leg}")

    async def gather(self, *coros: Awaitable[Any]) -> List[Any]:
        """Run independent legs concurrently; if one fails the others are cancelled."""
        tasks = [asyncio.ensure_future(c) for c in coros]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise


def new_context(
    authorization: Optional[str] = None,
    timeout_sec: Optional[float] = None,
    retry_attempts: Optional[int] = None,
) -> RequestContext:
    """Build a RequestContext from configured defaults."""
    from . import config

    return RequestContext(
        timeout_sec=config.REQUEST_TIMEOUT_SEC if timeout_sec is None else timeout_sec,
        retry_attempts=config.UPSTREAM_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts,
        authorization=authorization,
    )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamUnavailable) and not isinstance(exc, DeadlineExceeded)
