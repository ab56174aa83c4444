from __future__ import annotations

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from secgate.db.models import DeploymentGateModel
from secgate.policies.models import DeploymentGate


class GateStore(Protocol):
    async def save(self, gate: DeploymentGate) -> None: ...

    async def get(self, repository_id: str, commit_sha: str) -> DeploymentGate | None: ...

    async def list_for_repository(self, repository_id: str) -> list[DeploymentGate]: ...


class InMemoryGateStore:
    """Process-local gate store keyed by (repository_id, commit_sha)."""

    def __init__(self) -> None:
        self._gates: dict[tuple[str, str], DeploymentGate] = {}

    async def save(self, gate: DeploymentGate) -> None:
        self._gates[gate.key] = gate

    async def get(self, repository_id: str, commit_sha: str) -> DeploymentGate | None:
        return self._gates.get((repository_id, commit_sha))

    async def list_for_repository(self, repository_id: str) -> list[DeploymentGate]:
        gates = [g for (repo, _), g in self._gates.items() if repo == repository_id]
        return sorted(gates, key=lambda g: g.created_at, reverse=True)


class SQLGateStore:
    """Durable gate store; one row per (repository_id, commit_sha)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def save(self, gate: DeploymentGate) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeploymentGateModel).where(
                    DeploymentGateModel.repository_id == gate.repository_id,
                    DeploymentGateModel.commit_sha == gate.commit_sha,
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                model = DeploymentGateModel(
                    repository_id=gate.repository_id,
                    commit_sha=gate.commit_sha,
                )
                session.add(model)

            model.status = gate.status.value
            model.record = gate.to_dict()
            model.created_at = gate.created_at
            model.completed_at = gate.completed_at
            await session.commit()

    async def get(self, repository_id: str, commit_sha: str) -> DeploymentGate | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeploymentGateModel).where(
                    DeploymentGateModel.repository_id == repository_id,
                    DeploymentGateModel.commit_sha == commit_sha,
                )
            )
            model = result.scalar_one_or_none()
            return DeploymentGate.from_dict(model.record) if model else None

    async def list_for_repository(self, repository_id: str) -> list[DeploymentGate]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeploymentGateModel)
                .where(DeploymentGateModel.repository_id == repository_id)
                .order_by(DeploymentGateModel.created_at.desc())
            )
            return [DeploymentGate.from_dict(m.record) for m in result.scalars().all()]
