"""Root test configuration."""

import logging
from dataclasses import replace
from datetime import datetime, timezone

import pytest
import structlog

from secgate.gates import InMemoryGateStore, SecurityPolicyEngine
from secgate.metrics import StaticMetricsProvider
from secgate.notifications import NotificationDispatcher
from secgate.policies import (
    InMemoryAuditStore,
    InMemoryPolicyStore,
    PolicyAuditRecorder,
    PolicyRegistry,
    default_policies,
)

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def only_policies():
    """Factory: registry of the built-ins with every policy not listed disabled."""

    def _registry(*policy_ids: str) -> PolicyRegistry:
        policies = [
            p if p.id in policy_ids else replace(p, enabled=False) for p in default_policies()
        ]
        return PolicyRegistry(InMemoryPolicyStore(policies))

    return _registry


@pytest.fixture
def metrics():
    return StaticMetricsProvider()


@pytest.fixture
def audit_store():
    return InMemoryAuditStore()


@pytest.fixture
def dispatcher():
    return NotificationDispatcher()


@pytest.fixture
def make_engine(metrics, audit_store, dispatcher):
    """Factory building an engine over a registry with a fixed clock."""

    def _make(registry: PolicyRegistry | None = None, **kwargs) -> SecurityPolicyEngine:
        return SecurityPolicyEngine(
            registry or PolicyRegistry(),
            kwargs.pop("metrics_provider", metrics),
            dispatcher=kwargs.pop("dispatcher", dispatcher),
            gate_store=kwargs.pop("gate_store", InMemoryGateStore()),
            recorder=kwargs.pop("recorder", PolicyAuditRecorder(audit_store)),
            clock=kwargs.pop("clock", lambda: FIXED_NOW),
            **kwargs,
        )

    return _make


@pytest.fixture
def fixed_now():
    return FIXED_NOW
