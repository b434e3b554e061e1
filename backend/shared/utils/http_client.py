"""
Async HTTP client wrapper for the upstream live-score API.
Includes bounded retries, timeout management, and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.errors import FetchError
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY, PROVIDER_REQUESTS

logger = get_logger(__name__)

MAX_RETRY_DELAY_S = 10.0


def retry_delay(retry_after: str | None, attempt: int) -> float:
    """
    Seconds to wait before the next attempt. Honors a numeric Retry-After;
    an HTTP-date or anything unparseable falls back to ``attempt`` seconds.
    """
    delay = float(attempt)
    if retry_after:
        try:
            delay = max(0.0, float(retry_after))
        except ValueError:
            pass
    return min(delay, MAX_RETRY_DELAY_S)


class UpstreamHTTPClient:
    """
    Async JSON client for a single upstream provider.

    Server errors, rate limiting and timeouts are retried a bounded number of
    times inside one call; anything left over surfaces as ``FetchError`` so
    the caller never loops on a failing upstream.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.provider_request_timeout_s
        self._max_retries = max(1, max_retries)
        self._default_headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET ``url`` (absolute, or relative to base_url) and decode the JSON body.

        Raises:
            FetchError: after retries are exhausted, on a non-retryable status,
                or when the body is not JSON.
        """
        if not self._client:
            raise RuntimeError("UpstreamHTTPClient not started. Call start() first.")

        last_error = "no attempt made"
        for attempt in range(1, self._max_retries + 1):
            start_time = time.perf_counter()
            status = "error"
            try:
                resp = await self._client.get(url, params=params)
                status = str(resp.status_code)

                if resp.status_code == 429 or resp.status_code >= 500:
                    last_error = f"HTTP {resp.status_code}"
                    logger.warning(
                        "provider_retryable_status",
                        provider=self._provider,
                        url=url,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    if attempt < self._max_retries:
                        await asyncio.sleep(retry_delay(resp.headers.get("Retry-After"), attempt))
                        continue
                    break

                if resp.status_code >= 400:
                    raise FetchError(f"HTTP {resp.status_code} for {url}")

                logger.debug(
                    "provider_request_success",
                    provider=self._provider,
                    url=url,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return resp.json()

            except httpx.TimeoutException:
                status = "timeout"
                last_error = "timeout"
                logger.warning("provider_timeout", provider=self._provider, url=url, attempt=attempt)
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)
                    continue

            except httpx.HTTPError as exc:
                last_error = str(exc) or exc.__class__.__name__
                logger.error(
                    "provider_request_error",
                    provider=self._provider,
                    url=url,
                    error=last_error,
                    attempt=attempt,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)
                    continue

            except ValueError as exc:
                status = "bad_body"
                raise FetchError(f"invalid JSON from {url}: {exc}") from exc

            finally:
                PROVIDER_REQUESTS.labels(provider=self._provider, status=status).inc()
                PROVIDER_LATENCY.labels(provider=self._provider).observe(
                    time.perf_counter() - start_time
                )

        raise FetchError(f"{last_error} after {self._max_retries} attempts ({url})")
