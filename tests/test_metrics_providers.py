"""Tests for metrics snapshot providers."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import respx
from httpx import Response

from secgate.core.errors import CollaboratorError, NotFoundError
from secgate.metrics import (
    AlertMetricsProvider,
    AlertRecord,
    HttpMetricsProvider,
    StaticMetricsProvider,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
BASE_URL = "https://metrics.example.com"
SNAPSHOT_URL = f"{BASE_URL}/repositories/repo-1/metrics"


class FakeAlertSource:
    def __init__(self, repositories=None, alerts=None, error=None):
        self.repositories = repositories or {}
        self.alerts = alerts or []
        self.error = error
        self.since = None

    async def get_repository(self, repository_id):
        if self.error:
            raise self.error
        return self.repositories.get(repository_id)

    async def list_alerts(self, repository_id, since):
        self.since = since
        return list(self.alerts)


def alert(severity, days_ago=1, alert_type=None, description=None):
    return AlertRecord(
        severity=severity,
        created_at=NOW - timedelta(days=days_ago),
        alert_type=alert_type,
        description=description,
    )


class TestStaticMetricsProvider:
    @pytest.mark.asyncio
    async def test_returns_copy_of_snapshot(self):
        provider = StaticMetricsProvider({"repo-1": {"critical_vulnerabilities": 1}})

        snapshot = await provider.get_snapshot("repo-1", 30)
        snapshot["critical_vulnerabilities"] = 99

        assert await provider.get_snapshot("repo-1", 30) == {"critical_vulnerabilities": 1}

    @pytest.mark.asyncio
    async def test_unknown_repository(self):
        with pytest.raises(NotFoundError):
            await StaticMetricsProvider().get_snapshot("repo-1", 30)


class TestAlertMetricsProvider:
    @pytest.mark.asyncio
    async def test_counts_alerts_in_window(self):
        source = FakeAlertSource(
            repositories={"repo-1": {"license_type": "MIT", "test_coverage_percentage": 88}},
            alerts=[
                alert("CRITICAL"),
                alert("critical", days_ago=29),
                alert("high"),
                alert("high", days_ago=45),
                alert("low", alert_type="security_misconfiguration"),
                alert("medium", description="Possible SECURITY issue in auth"),
            ],
        )
        provider = AlertMetricsProvider(source, clock=lambda: NOW)

        snapshot = await provider.get_snapshot("repo-1", 30)

        assert source.since == NOW - timedelta(days=30)
        assert snapshot == {
            "critical_vulnerabilities": 2,
            "high_vulnerabilities": 1,
            "security_hotspots": 2,
            "license_type": "MIT",
            "test_coverage_percentage": 88,
        }

    @pytest.mark.asyncio
    async def test_missing_repository_attributes_are_not_zeroed(self):
        source = FakeAlertSource(repositories={"repo-1": {}})
        snapshot = await AlertMetricsProvider(source, clock=lambda: NOW).get_snapshot("repo-1", 30)

        assert "dependency_age_months" not in snapshot
        assert snapshot["critical_vulnerabilities"] == 0

    @pytest.mark.asyncio
    async def test_unknown_repository(self):
        provider = AlertMetricsProvider(FakeAlertSource(), clock=lambda: NOW)
        with pytest.raises(NotFoundError):
            await provider.get_snapshot("repo-1", 30)

    @pytest.mark.asyncio
    async def test_source_failure_is_collaborator_error(self):
        provider = AlertMetricsProvider(
            FakeAlertSource(error=ConnectionError("db down")), clock=lambda: NOW
        )
        with pytest.raises(CollaboratorError):
            await provider.get_snapshot("repo-1", 30)


class TestHttpMetricsProvider:
    @pytest.mark.asyncio
    async def test_success(self):
        provider = HttpMetricsProvider(BASE_URL, token="secret")

        with respx.mock:
            route = respx.get(SNAPSHOT_URL).mock(
                return_value=Response(200, json={"critical_vulnerabilities": 0})
            )

            snapshot = await provider.get_snapshot("repo-1", 30)

        assert snapshot == {"critical_vulnerabilities": 0}
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.url.params["window_days"] == "30"

    @pytest.mark.asyncio
    async def test_unwraps_metrics_key(self):
        provider = HttpMetricsProvider(BASE_URL)

        with respx.mock:
            respx.get(SNAPSHOT_URL).mock(
                return_value=Response(200, json={"metrics": {"high_vulnerabilities": 4}})
            )
            snapshot = await provider.get_snapshot("repo-1", 30)

        assert snapshot == {"high_vulnerabilities": 4}

    @pytest.mark.asyncio
    async def test_retry_on_503(self):
        provider = HttpMetricsProvider(BASE_URL, max_attempts=2, backoff_factor=0)

        with respx.mock:
            route = respx.get(SNAPSHOT_URL)
            route.side_effect = [
                Response(503),
                Response(200, json={"critical_vulnerabilities": 1}),
            ]

            snapshot = await provider.get_snapshot("repo-1", 30)

        assert snapshot == {"critical_vulnerabilities": 1}
        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_persistent_503_is_collaborator_error(self):
        provider = HttpMetricsProvider(BASE_URL, max_attempts=2, backoff_factor=0)

        with respx.mock:
            route = respx.get(SNAPSHOT_URL).mock(return_value=Response(503))

            with pytest.raises(CollaboratorError):
                await provider.get_snapshot("repo-1", 30)

        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_connection_error_is_collaborator_error(self):
        provider = HttpMetricsProvider(BASE_URL, max_attempts=1)

        with respx.mock:
            respx.get(SNAPSHOT_URL).mock(side_effect=httpx.ConnectError("refused"))

            with pytest.raises(CollaboratorError):
                await provider.get_snapshot("repo-1", 30)

    @pytest.mark.asyncio
    async def test_404_is_not_found_without_retry(self):
        provider = HttpMetricsProvider(BASE_URL, max_attempts=3, backoff_factor=0)

        with respx.mock:
            route = respx.get(SNAPSHOT_URL).mock(return_value=Response(404))

            with pytest.raises(NotFoundError):
                await provider.get_snapshot("repo-1", 30)

        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        provider = HttpMetricsProvider(BASE_URL, max_attempts=3, backoff_factor=0)

        with respx.mock:
            route = respx.get(SNAPSHOT_URL).mock(return_value=Response(400))

            with pytest.raises(CollaboratorError):
                await provider.get_snapshot("repo-1", 30)

        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_non_mapping_payload_rejected(self):
        provider = HttpMetricsProvider(BASE_URL)

        with respx.mock:
            respx.get(SNAPSHOT_URL).mock(return_value=Response(200, json=[1, 2, 3]))

            with pytest.raises(CollaboratorError):
                await provider.get_snapshot("repo-1", 30)

    @pytest.mark.asyncio
    async def test_invalid_json_rejected(self):
        provider = HttpMetricsProvider(BASE_URL)

        with respx.mock:
            respx.get(SNAPSHOT_URL).mock(return_value=Response(200, content=b"not json"))

            with pytest.raises(CollaboratorError):
                await provider.get_snapshot("repo-1", 30)
