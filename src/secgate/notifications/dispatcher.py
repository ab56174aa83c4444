"""
Notification dispatcher.

Fans ACTIVE violations out to each channel configured on the owning
policy's enforcement action. Delivery is best effort: every failure is
logged and reported in the results, none is raised to the caller.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import structlog

from secgate.config import Settings
from secgate.notifications.channels import (
    LogChannel,
    NotificationChannel,
    SlackChannel,
    WebhookChannel,
)
from secgate.policies.models import DeploymentGate, Policy, Violation

logger = structlog.get_logger()


@dataclass(frozen=True)
class NotificationRequest:
    """One violation to be delivered on one channel."""

    channel: str
    violation: Violation
    recipients: tuple[str, ...] = ()


@dataclass(frozen=True)
class DeliveryResult:
    channel: str
    violation_id: str
    status: str  # "sent" | "logged" | "skipped" | "failed"
    error: str | None = None


class NotificationDispatcher:
    """Routes notification requests to registered channels by name."""

    def __init__(
        self,
        channels: Mapping[str, NotificationChannel] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.channels: dict[str, NotificationChannel] = dict(channels or {})
        self.timeout = timeout

    def register(self, name: str, channel: NotificationChannel) -> None:
        self.channels[name] = channel

    @staticmethod
    def build_requests(
        violations: Iterable[Violation],
        policies: Mapping[str, Policy],
    ) -> list[NotificationRequest]:
        """Decide what to send to whom; exempted violations are not announced."""
        requests: list[NotificationRequest] = []
        for violation in violations:
            if not violation.is_active:
                continue
            policy = policies.get(violation.policy_id)
            if policy is None:
                continue
            enforcement = policy.enforcement
            for channel in enforcement.notification_channels:
                requests.append(
                    NotificationRequest(
                        channel=channel,
                        violation=violation,
                        recipients=enforcement.escalation_path,
                    )
                )
        return requests

    async def dispatch(
        self,
        violations: Iterable[Violation],
        gate: DeploymentGate,
        policies: Mapping[str, Policy],
    ) -> list[DeliveryResult]:
        """Deliver every request concurrently and report per-request outcomes."""
        requests = self.build_requests(violations, policies)
        if not requests:
            return []

        results = await asyncio.gather(*(self._deliver(request, gate) for request in requests))

        logger.info(
            "notifications_dispatched",
            repository_id=gate.repository_id,
            commit_sha=gate.commit_sha,
            requested=len(requests),
            failed=sum(1 for r in results if r.status == "failed"),
        )
        return list(results)

    async def _deliver(self, request: NotificationRequest, gate: DeploymentGate) -> DeliveryResult:
        channel = self.channels.get(request.channel)
        if channel is None:
            logger.warning(
                "notification_channel_unconfigured",
                channel=request.channel,
                violation_id=request.violation.id,
            )
            return DeliveryResult(request.channel, request.violation.id, "skipped")

        try:
            outcome: Any = await asyncio.wait_for(
                channel.send(request.channel, request.violation, gate, request.recipients),
                timeout=self.timeout,
            )
        except Exception as exc:
            logger.error(
                "notification_failed",
                channel=request.channel,
                repository_id=gate.repository_id,
                violation_id=request.violation.id,
                error=str(exc) or type(exc).__name__,
            )
            return DeliveryResult(
                request.channel, request.violation.id, "failed", str(exc) or type(exc).__name__
            )

        # Channels that return nothing useful still delivered.
        status = outcome.get("status", "sent") if isinstance(outcome, Mapping) else "sent"
        return DeliveryResult(request.channel, request.violation.id, str(status))


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    """
    Build a dispatcher from settings.

    email, slack and webhook are always registered; a channel without a
    configured transport falls back to the structured log.
    """
    timeout = settings.notification_timeout
    log_channel = LogChannel()
    dispatcher = NotificationDispatcher(timeout=timeout)

    dispatcher.register(
        "slack",
        SlackChannel(settings.slack_webhook_url, timeout)
        if settings.slack_webhook_url
        else log_channel,
    )
    dispatcher.register(
        "email",
        WebhookChannel(settings.email_relay_url, timeout)
        if settings.email_relay_url
        else log_channel,
    )
    dispatcher.register(
        "webhook",
        WebhookChannel(settings.notification_webhook_url, timeout)
        if settings.notification_webhook_url
        else log_channel,
    )
    return dispatcher
