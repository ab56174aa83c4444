"""
HTTP metrics snapshot provider.

Fetches a repository's snapshot from a metrics service exposing
GET {base_url}/repositories/{repository_id}/metrics?window_days=N

Transient failures (timeouts, connection errors, 408/429/5xx) are retried
with exponential backoff; anything still failing surfaces as
CollaboratorError.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from secgate.core.errors import CollaboratorError, NotFoundError
from secgate.metrics.providers import MetricsSnapshot

logger = structlog.get_logger()

DEFAULT_USER_AGENT = "secgate-metrics-client/0.1.0"


class RetryableMetricsError(Exception):
    """Metrics service errors worth another attempt."""


def is_retryable_status(status_code: int) -> bool:
    return status_code in (408, 429, 500, 502, 503, 504)


class HttpMetricsProvider:
    """Metrics provider backed by a remote metrics API."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        token: str | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        max_attempts: int = 3,
        backoff_factor: float = 1.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._token = token
        self._user_agent = user_agent
        self._max_attempts = max_attempts
        self._backoff_factor = backoff_factor

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": self._user_agent, "Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def get_snapshot(self, repository_id: str, window_days: int) -> MetricsSnapshot:
        """
        Fetch the metrics snapshot for a repository.

        Raises:
            NotFoundError: If the metrics service does not know the repository
            CollaboratorError: If the metrics service is unreachable or errors
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(RetryableMetricsError),
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=self._backoff_factor, max=10),
                reraise=True,
            ):
                with attempt:
                    data = await self._fetch(repository_id, window_days)
        except (RetryableMetricsError, httpx.HTTPError) as exc:
            logger.error("metrics_fetch_failed", repository_id=repository_id, error=str(exc))
            raise CollaboratorError(
                f"Metrics provider unavailable: {exc}", {"repository_id": repository_id}
            ) from exc
        except ValueError as exc:
            raise CollaboratorError(
                "Metrics provider returned invalid JSON", {"repository_id": repository_id}
            ) from exc

        snapshot = data.get("metrics", data) if isinstance(data, dict) else None
        if not isinstance(snapshot, dict):
            raise CollaboratorError(
                "Metrics provider returned an unexpected payload",
                {"repository_id": repository_id},
            )
        return snapshot

    async def _fetch(self, repository_id: str, window_days: int) -> Any:
        url = f"{self._base_url}/repositories/{repository_id}/metrics"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(
                    url, headers=self._headers(), params={"window_days": window_days}
                )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            logger.warning("metrics_network_error", url=url, error=str(exc))
            raise RetryableMetricsError(str(exc)) from exc

        if resp.status_code == 404:
            raise NotFoundError(
                f"Repository {repository_id} not found", {"repository_id": repository_id}
            )
        if is_retryable_status(resp.status_code):
            logger.warning("metrics_retryable_error", url=url, status=resp.status_code)
            raise RetryableMetricsError(f"HTTP {resp.status_code}")

        resp.raise_for_status()
        return resp.json()
