"""Tests for policy audit logging and the SQL-backed stores.

Tests for PolicyAuditRecorder, PolicyAuditRepository, SQLPolicyStore
and SQLGateStore.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from structlog.testing import capture_logs

from secgate.db.models import Base
from secgate.gates import SQLGateStore
from secgate.policies import (
    AuditAction,
    CheckStatus,
    DeploymentGate,
    GateCheck,
    GateStatus,
    PolicyAuditEvent,
    PolicyAuditRecorder,
    PolicyRegistry,
    default_policies,
)
from secgate.policies.models import utcnow
from secgate.policies.repository import (
    PolicyAuditRepository,
    SQLPolicyStore,
    policy_from_record,
)
from secgate.policies.store import AuditStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

# -- Fixtures --


@pytest.fixture
def mock_store():
    """Create a mock audit store."""
    store = MagicMock(spec=AuditStore)
    store.record_event = AsyncMock()
    store.get_events = AsyncMock(return_value=[])
    return store


@pytest.fixture
def recorder(mock_store):
    return PolicyAuditRecorder(mock_store)


@pytest.fixture
def blocked_gate():
    return DeploymentGate(
        repository_id="repo-1",
        commit_sha="3f2a9c1d",
        status=GateStatus.BLOCKED,
        gate_checks=(
            GateCheck(policy_id="critical-vulns", status=CheckStatus.FAIL, message="violated"),
            GateCheck(policy_id="code-quality", status=CheckStatus.PASS, message="compliant"),
        ),
        created_at=NOW,
    )


@pytest.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


# -- PolicyAuditRecorder --


class TestPolicyAuditRecorder:
    """Tests for PolicyAuditRecorder."""

    @pytest.mark.asyncio
    async def test_record_gate_evaluation(self, recorder, mock_store, blocked_gate):
        event = await recorder.record_gate_evaluation(blocked_gate, actor="ci-bot")

        assert event is not None
        assert event.action == AuditAction.EVALUATE
        assert event.result == "BLOCKED"
        assert event.actor == "ci-bot"
        assert event.commit_sha == "3f2a9c1d"
        assert event.extra_data["failed_policies"] == ["critical-vulns"]
        mock_store.record_event.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_record_decision(self, recorder, mock_store, blocked_gate):
        bypassed = replace(blocked_gate, status=GateStatus.BYPASSED)

        event = await recorder.record_decision(
            bypassed, AuditAction.BYPASS, "admin@co", "hotfix"
        )

        assert event.action == AuditAction.BYPASS
        assert event.result == "BYPASSED"
        assert event.reason == "hotfix"
        mock_store.record_event.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fail_open_on_store_error(self, recorder, mock_store, blocked_gate):
        """Store errors are logged, not raised."""
        mock_store.record_event.side_effect = Exception("DB connection lost")

        with capture_logs() as logs:
            result = await recorder.record_gate_evaluation(blocked_gate)

        assert result is None
        assert any(e["event"] == "policy_audit_record_failed" for e in logs)

    def test_event_to_dict(self):
        event = PolicyAuditEvent(
            id="evt-1",
            timestamp=NOW,
            repository_id="repo-1",
            commit_sha="abc",
            action=AuditAction.APPROVE,
            actor="alice@co",
            result="APPROVED",
            reason="ok",
        )
        data = event.to_dict()
        assert data["action"] == "approve"
        assert data["timestamp"] == NOW.isoformat()
        assert data["extra_data"] == {}


# -- PolicyAuditRepository --


class TestPolicyAuditRepository:
    """Tests for PolicyAuditRepository against SQLite."""

    def _event(self, event_id, timestamp, repository_id="repo-1", action=AuditAction.EVALUATE):
        return PolicyAuditEvent(
            id=event_id,
            timestamp=timestamp,
            repository_id=repository_id,
            commit_sha="abc",
            action=action,
            actor=None,
            result="APPROVED",
            extra_data={"active_violations": 0},
        )

    @pytest.mark.asyncio
    async def test_record_and_read_back(self, session_factory):
        repo = PolicyAuditRepository(session_factory)
        now = utcnow()

        await repo.record_event(self._event("old", now - timedelta(hours=2)))
        await repo.record_event(self._event("new", now - timedelta(minutes=5)))
        await repo.record_event(self._event("other", now, repository_id="repo-2"))

        events = await repo.get_events("repo-1", hours=24)

        assert [e.id for e in events] == ["new", "old"]
        assert events[0].action == AuditAction.EVALUATE
        assert events[0].extra_data == {"active_violations": 0}
        assert events[0].timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_time_window(self, session_factory):
        repo = PolicyAuditRepository(session_factory)
        now = utcnow()

        await repo.record_event(self._event("stale", now - timedelta(hours=30)))
        await repo.record_event(self._event("fresh", now - timedelta(hours=1)))

        events = await repo.get_events("repo-1", hours=24)

        assert [e.id for e in events] == ["fresh"]


# -- SQL stores --


class TestSQLPolicyStore:
    @pytest.mark.asyncio
    async def test_registry_over_sql_store(self, session_factory):
        registry = PolicyRegistry(SQLPolicyStore(session_factory))

        seeded = await registry.seed_defaults()
        await registry.add_exemption(
            "critical-vulns", reason="vendor fix pending", approved_by="sec@co"
        )
        await registry.set_enabled("outdated-deps", False)

        policies = await registry.list_policies()
        assert [p.id for p in policies] == [p.id for p in seeded]
        by_id = {p.id: p for p in policies}
        assert by_id["critical-vulns"].exemptions[0].reason == "vendor fix pending"
        assert by_id["outdated-deps"].enabled is False
        assert by_id["restricted-licenses"].rules == default_policies()[2].rules

    @pytest.mark.asyncio
    async def test_delete(self, session_factory):
        store = SQLPolicyStore(session_factory)
        policy = default_policies()[0]
        await store.put(policy)

        assert await store.delete(policy.id) is True
        assert await store.delete(policy.id) is False
        assert await store.get(policy.id) is None

    def test_stored_rule_that_no_longer_compiles_is_dropped(self):
        record = default_policies()[2].to_dict()
        record["rules"].append(
            {"id": "broken", "condition": "license_type", "operator": "MATCHES", "value": "("}
        )

        with capture_logs() as logs:
            policy = policy_from_record(record)

        assert [r.id for r in policy.rules] == ["copyleft-blocklist"]
        assert any(e["event"] == "rule_not_applicable" for e in logs)

    def test_stored_rule_with_unknown_operator_is_dropped(self):
        record = default_policies()[2].to_dict()
        record["rules"].append(
            {"id": "legacy", "condition": "license_type", "operator": "STARTS_WITH", "value": "GPL"}
        )

        with capture_logs() as logs:
            policy = policy_from_record(record)

        assert [r.id for r in policy.rules] == ["copyleft-blocklist"]
        dropped = [e for e in logs if e["event"] == "rule_not_applicable"]
        assert dropped[0]["rule_id"] == "legacy"


class TestSQLGateStore:
    @pytest.mark.asyncio
    async def test_save_upserts_by_commit(self, session_factory, blocked_gate):
        store = SQLGateStore(session_factory)

        await store.save(blocked_gate)
        bypassed = replace(blocked_gate, status=GateStatus.BYPASSED, completed_at=NOW)
        await store.save(bypassed)

        assert await store.get("repo-1", "3f2a9c1d") == bypassed
        assert await store.list_for_repository("repo-1") == [bypassed]

    @pytest.mark.asyncio
    async def test_list_newest_first(self, session_factory, blocked_gate):
        store = SQLGateStore(session_factory)
        later = replace(blocked_gate, commit_sha="9e8d7c6b", created_at=NOW + timedelta(hours=1))

        await store.save(blocked_gate)
        await store.save(later)

        gates = await store.list_for_repository("repo-1")
        assert [g.commit_sha for g in gates] == ["9e8d7c6b", "3f2a9c1d"]
        assert await store.get("repo-1", "missing") is None
