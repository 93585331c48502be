"""
Async HTTP client wrapper for upstream feed requests.
Includes retry logic, timeout management, and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import FeedUnavailableError
from shared.utils.logging import get_logger
from shared.utils.metrics import FEED_LATENCY, FEED_REQUESTS

logger = get_logger(__name__)

NOT_PUBLISHED_STATUSES = frozenset({403, 404})


def _retry_delay(resp: httpx.Response, attempt: int) -> float:
    try:
        delay = float(resp.headers.get("Retry-After", attempt))
    except ValueError:
        delay = float(attempt)
    return min(delay, 10.0)


class FeedHTTPClient:
    """
    Async HTTP client for the upstream JSON feed.

    ``get_json`` returns ``None`` when the document is not published yet
    (404/403), retries timeouts, 429 and 5xx responses, and raises
    ``FeedUnavailableError`` once retries are exhausted.
    """

    def __init__(
        self,
        base_url: str,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._base_url = base_url.rstrip("/")
        self._timeout = self._settings.feed_request_timeout_s
        self._max_retries = max(1, self._settings.feed_max_retries)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "User-Agent": self._settings.feed_user_agent,
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(self, path: str, resource: str = "unknown") -> Optional[dict[str, Any]]:
        """
        GET ``path`` and decode the JSON body.

        Args:
            path: Path relative to the base URL.
            resource: Metric/log label (playbyplay, boxscore, schedule).

        Returns:
            Decoded JSON, or None when the upstream has not published it.

        Raises:
            FeedUnavailableError: On timeouts, connection errors, 429 or 5xx
                after all retries, and on any other unexpected status.
        """
        if not self._client:
            raise RuntimeError("FeedHTTPClient not started. Call start() first.")

        last_reason = "no attempt made"
        for attempt in range(1, self._max_retries + 1):
            start_time = time.perf_counter()
            status = "error"
            try:
                resp = await self._client.get(path)
                status = str(resp.status_code)

                if resp.status_code in NOT_PUBLISHED_STATUSES:
                    logger.debug("feed_not_published", path=path, status=resp.status_code)
                    return None

                if resp.status_code == 429 or resp.status_code >= 500:
                    last_reason = f"HTTP {resp.status_code}"
                    logger.warning(
                        "feed_retryable_status",
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    if attempt < self._max_retries:
                        await asyncio.sleep(_retry_delay(resp, attempt))
                    continue

                resp.raise_for_status()
                return resp.json()

            except httpx.TimeoutException:
                status = "timeout"
                last_reason = "timeout"
                logger.warning("feed_timeout", path=path, attempt=attempt)
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)

            except httpx.TransportError as exc:
                last_reason = f"transport error: {exc}"
                logger.warning("feed_transport_error", path=path, attempt=attempt, error=str(exc))
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)

            except (httpx.HTTPStatusError, ValueError) as exc:
                logger.error("feed_bad_response", path=path, status=status, error=str(exc))
                raise FeedUnavailableError(resource, str(exc)) from exc

            finally:
                FEED_REQUESTS.labels(resource=resource, status=status).inc()
                FEED_LATENCY.labels(resource=resource).observe(time.perf_counter() - start_time)

        raise FeedUnavailableError(resource, f"{last_reason} after {self._max_retries} attempts")
