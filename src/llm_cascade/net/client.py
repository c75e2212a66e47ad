"""Outbound HTTP with per-attempt timeout, retries and jittered exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

import httpx

from llm_cascade.security import redact_secrets

logger = logging.getLogger(__name__)

BACKOFF_BASE_S = 1.0
BACKOFF_CAP_S = 10.0
JITTER_MAX_S = 1.0


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


def backoff_floor(attempt: int) -> float:
    """Deterministic part of the delay before retry number ``attempt + 1``."""
    return min(BACKOFF_BASE_S * 2**attempt, BACKOFF_CAP_S)


class ResilientClient:
    """Retry wrapper around ``httpx.AsyncClient``.

    HTTP-level failure is a value: after the last attempt a 5xx/429 response is
    returned for the caller to inspect. Transport failure is a fault: the last
    error is re-raised. Caller cancellation is never retried.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        jitter: Callable[[], float] | None = None,
    ) -> None:
        # Per-attempt timeouts come from send(), not from the httpx default.
        self._client = client or httpx.AsyncClient(timeout=None)
        self._owns_client = client is None
        self._sleep = sleep
        self._jitter = jitter or (lambda: random.uniform(0.0, JITTER_MAX_S))  # noqa: S311

    def backoff_delay(self, attempt: int) -> float:
        return backoff_floor(attempt) + self._jitter()

    async def send(
        self,
        request: httpx.Request,
        *,
        max_retries: int = 3,
        timeout_s: float = 30.0,
    ) -> httpx.Response:
        """Send ``request`` up to ``max_retries + 1`` times."""
        if max_retries < 0:
            msg = "max_retries must be >= 0"
            raise ValueError(msg)

        request.extensions = {**request.extensions, "timeout": httpx.Timeout(timeout_s).as_dict()}
        for attempt in range(max_retries + 1):
            final = attempt == max_retries
            try:
                async with asyncio.timeout(timeout_s):
                    response = await self._client.send(request)
            except (httpx.TransportError, TimeoutError) as e:
                logger.info(
                    "%s %s attempt %d/%d failed: %s",
                    request.method,
                    request.url.host,
                    attempt + 1,
                    max_retries + 1,
                    redact_secrets(repr(e)),
                )
                if final:
                    raise
                await self._sleep(self.backoff_delay(attempt))
                continue

            if not is_retryable_status(response.status_code) or final:
                return response

            logger.info(
                "%s %s attempt %d/%d returned %d, backing off",
                request.method,
                request.url.host,
                attempt + 1,
                max_retries + 1,
                response.status_code,
            )
            await response.aclose()
            await self._sleep(self.backoff_delay(attempt))

        msg = "retry loop exited without a response"
        raise RuntimeError(msg)

    async def close(self) -> None:
        """Clean up HTTP client if we created it."""
        if self._owns_client:
            await self._client.aclose()
