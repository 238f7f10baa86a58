"""Async HTTP client used by the listing fetchers and URL discovery."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import httpx

from .logging_config import get_logger
from .models import FetchConfig, FetchStats

logger = get_logger("http_client")

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-AU,en;q=0.9",
}
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429})


class HTTPClient:
    """Thin wrapper over ``httpx.AsyncClient`` with timeouts and optional retries.

    Listing fetches run with ``max_retries=0``: a failed URL is reported,
    not retried. Non-2xx responses surface as ``httpx.HTTPStatusError`` so
    callers can classify them by status code.
    """

    def __init__(self, config: Optional[FetchConfig] = None) -> None:
        self.config = config or FetchConfig()
        self.timeout = httpx.Timeout(
            self.config.timeout_seconds,
            connect=self.config.connect_timeout_seconds,
        )
        self.headers = {**DEFAULT_HEADERS, **self.config.headers}

    async def get_async(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        stats: Optional[FetchStats] = None,
    ) -> httpx.Response:
        return await self.request_async("GET", url, headers=headers, params=params, stats=stats)

    async def post_async(
        self,
        url: str,
        *,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        stats: Optional[FetchStats] = None,
    ) -> httpx.Response:
        return await self.request_async("POST", url, headers=headers, json=json, stats=stats)

    async def request_async(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        stats: Optional[FetchStats] = None,
    ) -> httpx.Response:
        """Send one request, retrying retryable failures up to ``max_retries`` times.

        Raises:
            httpx.HTTPStatusError: Final response was not 2xx
            httpx.RequestError: Transport failure or timeout on the last attempt
        """
        request_headers = {**self.headers, **(headers or {})}
        max_retries = self.config.max_retries

        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            attempt = 0
            while True:
                attempt += 1
                if stats:
                    stats.http_requests += 1
                try:
                    response = await client.request(
                        method,
                        url,
                        headers=request_headers,
                        params=params,
                        json=json,
                    )
                    response.raise_for_status()
                    return response
                except httpx.HTTPStatusError as exc:
                    reason = f"status {exc.response.status_code}"
                    retryable = self.is_retryable_status(exc.response.status_code)
                    if not retryable or attempt > max_retries:
                        logger.info(f"{method} {url} failed with {reason}")
                        raise
                except httpx.RequestError as exc:
                    reason = f"{type(exc).__name__}: {exc}"
                    if attempt > max_retries:
                        logger.info(f"{method} {url} failed after {attempt} attempt(s): {reason}")
                        raise

                delay = self._calculate_retry_delay(attempt)
                if stats:
                    stats.retry_attempts += 1
                logger.warning(f"{method} {url} failed ({reason}); retry {attempt}/{max_retries} in {delay:.2f}s")
                await asyncio.sleep(delay)

    @staticmethod
    def is_retryable_status(status_code: int) -> bool:
        return status_code >= 500 or status_code in RETRYABLE_STATUS_CODES

    def _calculate_retry_delay(self, retry_number: int) -> float:
        delay = self.config.retry_base_delay * self.config.retry_exponential_base ** (retry_number - 1)
        return min(delay, self.config.retry_max_delay)
