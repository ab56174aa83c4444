from __future__ import annotations

from fastapi import Depends

from secgate.config import Settings, get_settings
from secgate.core.errors import ConfigurationError
from secgate.db.session import get_session_factory
from secgate.gates import InMemoryGateStore, SecurityPolicyEngine, SQLGateStore
from secgate.metrics import HttpMetricsProvider, MetricsSnapshotProvider, StaticMetricsProvider
from secgate.notifications import build_dispatcher
from secgate.policies import (
    AuditStore,
    InMemoryAuditStore,
    InMemoryPolicyStore,
    PolicyAuditRecorder,
    PolicyRegistry,
    default_policies,
)
from secgate.policies.repository import PolicyAuditRepository, SQLPolicyStore


def build_metrics_provider(settings: Settings) -> MetricsSnapshotProvider:
    if settings.metrics_url:
        return HttpMetricsProvider(
            settings.metrics_url,
            timeout=settings.http_timeout,
            token=settings.metrics_token,
        )
    return StaticMetricsProvider()


def build_engine(settings: Settings) -> SecurityPolicyEngine:
    """Wire registry, stores, metrics and notifications from settings."""
    if settings.policy_store == "memory":
        seeded = default_policies() if settings.seed_default_policies else []
        registry = PolicyRegistry(InMemoryPolicyStore(seeded))
        gate_store = InMemoryGateStore()
        audit_store: AuditStore = InMemoryAuditStore()
    elif settings.policy_store == "sql":
        session_factory = get_session_factory()
        registry = PolicyRegistry(SQLPolicyStore(session_factory))
        gate_store = SQLGateStore(session_factory)
        audit_store = PolicyAuditRepository(session_factory)
    else:
        raise ConfigurationError(f"Unsupported policy store: {settings.policy_store}")

    return SecurityPolicyEngine(
        registry,
        build_metrics_provider(settings),
        dispatcher=build_dispatcher(settings),
        gate_store=gate_store,
        recorder=PolicyAuditRecorder(audit_store),
        window_days=settings.metrics_window_days,
    )


_engine: SecurityPolicyEngine | None = None


def get_engine(settings: Settings = Depends(get_settings)) -> SecurityPolicyEngine:  # noqa: B008
    global _engine

    if _engine is None:
        _engine = build_engine(settings)
    return _engine


async def shutdown_engine() -> None:
    """Let in-flight notifications finish, then drop the cached engine."""
    global _engine

    if _engine is not None:
        await _engine.drain_notifications()
    _engine = None


def get_registry(
    engine: SecurityPolicyEngine = Depends(get_engine),  # noqa: B008
) -> PolicyRegistry:
    return engine.registry


def get_audit_store(
    engine: SecurityPolicyEngine = Depends(get_engine),  # noqa: B008
) -> AuditStore:
    if engine.recorder is None:
        raise ConfigurationError("Audit trail is not configured")
    return engine.recorder.store
