"""
Metrics snapshot providers.

A snapshot maps condition keys (critical_vulnerabilities, license_type, ...)
to the values rules are evaluated against. Providers raise NotFoundError for
an unknown repository and CollaboratorError when their backing data is
unavailable; they never substitute zeros for missing data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Protocol

import structlog

from secgate.core.errors import CollaboratorError, NotFoundError, SecGateError
from secgate.policies.models import ensure_utc, utcnow

logger = structlog.get_logger()

MetricsSnapshot = dict[str, Any]

# Repository attributes copied verbatim into the snapshot when present.
REPOSITORY_ATTRIBUTE_KEYS = (
    "license_type",
    "dependency_age_months",
    "test_coverage_percentage",
)


class MetricsSnapshotProvider(Protocol):
    async def get_snapshot(self, repository_id: str, window_days: int) -> MetricsSnapshot: ...


class StaticMetricsProvider:
    """Serves pre-computed snapshots keyed by repository id."""

    def __init__(self, snapshots: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._snapshots: dict[str, MetricsSnapshot] = {
            str(repo): dict(snapshot) for repo, snapshot in (snapshots or {}).items()
        }

    def set_snapshot(self, repository_id: str, snapshot: Mapping[str, Any]) -> None:
        self._snapshots[str(repository_id)] = dict(snapshot)

    async def get_snapshot(self, repository_id: str, window_days: int) -> MetricsSnapshot:
        snapshot = self._snapshots.get(str(repository_id))
        if snapshot is None:
            raise NotFoundError(
                f"Repository {repository_id} not found", {"repository_id": repository_id}
            )
        return dict(snapshot)


@dataclass
class AlertRecord:
    """A security alert already enriched with a severity."""

    severity: str
    created_at: datetime
    alert_type: str | None = None
    description: str | None = None
    extra_data: dict[str, Any] = field(default_factory=dict)


class AlertSource(Protocol):
    async def get_repository(self, repository_id: str) -> Mapping[str, Any] | None: ...

    async def list_alerts(self, repository_id: str, since: datetime) -> list[AlertRecord]: ...


class AlertMetricsProvider:
    """
    Derives a snapshot from a repository's recent alerts.

    Counts critical and high severity alerts over the trailing window and
    treats alerts mentioning "security" in their type or description as
    security hotspots. License, dependency age and coverage come from the
    repository record when it carries them.
    """

    def __init__(
        self,
        source: AlertSource,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.source = source
        self.clock = clock

    async def get_snapshot(self, repository_id: str, window_days: int) -> MetricsSnapshot:
        since = ensure_utc(self.clock()) - timedelta(days=window_days)

        try:
            repository = await self.source.get_repository(repository_id)
            if repository is None:
                raise NotFoundError(
                    f"Repository {repository_id} not found", {"repository_id": repository_id}
                )
            alerts = await self.source.list_alerts(repository_id, since)
        except SecGateError:
            raise
        except Exception as exc:
            raise CollaboratorError(
                f"Alert source unavailable: {exc}", {"repository_id": repository_id}
            ) from exc

        recent = [a for a in alerts if ensure_utc(a.created_at) >= since]
        snapshot: MetricsSnapshot = {
            "critical_vulnerabilities": sum(1 for a in recent if _severity(a) == "critical"),
            "high_vulnerabilities": sum(1 for a in recent if _severity(a) == "high"),
            "security_hotspots": sum(1 for a in recent if _is_security_hotspot(a)),
        }
        for key in REPOSITORY_ATTRIBUTE_KEYS:
            if repository.get(key) is not None:
                snapshot[key] = repository[key]

        logger.debug(
            "metrics_snapshot_built",
            repository_id=repository_id,
            window_days=window_days,
            alert_count=len(recent),
        )
        return snapshot


def _severity(alert: AlertRecord) -> str:
    return (alert.severity or "").lower()


def _is_security_hotspot(alert: AlertRecord) -> bool:
    return "security" in (alert.alert_type or "").lower() or "security" in (
        alert.description or ""
    ).lower()
