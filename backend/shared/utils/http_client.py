"""
Async HTTP client wrapper for provider requests.
Includes retry logic, timeout management, and metrics collection.
Every failure leaves this module as UpstreamUnavailable or UpstreamMalformed.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.errors import UpstreamMalformed, UpstreamUnavailable
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY, PROVIDER_REQUESTS

logger = get_logger(__name__)


class ProviderHTTPClient:
    """
    Async HTTP client tailored for sports data provider APIs.
    Handles timeouts, retries, and records metrics per request.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.provider_request_timeout_s
        self._max_retries = max(1, max_retries or settings.provider_max_retries)
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
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET a path and decode its JSON body.

        Raises:
            UpstreamUnavailable: transport errors, timeouts, 429/5xx after all
                retries, and non-retryable 4xx responses.
            UpstreamMalformed: the body is not valid JSON.
        """
        resp = await self.get(path, params=params)
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamMalformed(self._provider, f"{path}: invalid JSON body") from exc

    async def get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """Perform a GET request with retry, metrics, and structured logging."""
        if not self._client:
            raise RuntimeError("ProviderHTTPClient not started. Call start() first.")

        last_error = "no attempt made"
        retry_after: Optional[float] = None

        for attempt in range(1, self._max_retries + 1):
            start_time = time.perf_counter()
            status = "unknown"

            try:
                resp = await self._client.get(path, params=params)
                status = str(resp.status_code)

                if resp.status_code == 429:
                    retry_after = _retry_after(resp)
                    last_error = "rate limited"
                    logger.warning(
                        "provider_rate_limited",
                        provider=self._provider,
                        path=path,
                        attempt=attempt,
                        retry_after_s=retry_after,
                    )
                    if attempt < self._max_retries:
                        await asyncio.sleep(min(retry_after, 10.0))
                    continue

                if resp.status_code >= 500:
                    last_error = f"server error {resp.status_code}"
                    logger.warning(
                        "provider_server_error",
                        provider=self._provider,
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    if attempt < self._max_retries:
                        await asyncio.sleep(1.0 * attempt)
                    continue

                if resp.status_code >= 400:
                    # Client errors are not retried
                    logger.error(
                        "provider_http_error",
                        provider=self._provider,
                        path=path,
                        status=resp.status_code,
                    )
                    raise UpstreamUnavailable(self._provider, f"{path}: HTTP {resp.status_code}")

                logger.debug(
                    "provider_request_success",
                    provider=self._provider,
                    path=path,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return resp

            except httpx.TimeoutException:
                status = "timeout"
                last_error = "timeout"
                logger.warning(
                    "provider_timeout",
                    provider=self._provider,
                    path=path,
                    attempt=attempt,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)

            except httpx.TransportError as exc:
                status = "error"
                last_error = str(exc) or type(exc).__name__
                logger.warning(
                    "provider_transport_error",
                    provider=self._provider,
                    path=path,
                    error=last_error,
                    attempt=attempt,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)

            finally:
                PROVIDER_REQUESTS.labels(
                    provider=self._provider, endpoint=path, status=status
                ).inc()
                PROVIDER_LATENCY.labels(provider=self._provider).observe(
                    time.perf_counter() - start_time
                )

        raise UpstreamUnavailable(
            self._provider,
            f"{path}: {last_error} after {self._max_retries} attempts",
            retry_after=retry_after,
        )


def _retry_after(resp: httpx.Response) -> float:
    try:
        return float(resp.headers.get("Retry-After", "2"))
    except ValueError:
        return 2.0
