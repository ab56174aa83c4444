"""
Notification channels for policy violations.

Each channel knows how to deliver one violation of one gate. Delivery
failures raise NotificationError; the dispatcher decides what to do with it.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

import httpx
import structlog

from secgate.core.errors import NotificationError
from secgate.policies.models import DeploymentGate, Violation

logger = structlog.get_logger()


class NotificationChannel(Protocol):
    async def send(
        self,
        channel: str,
        violation: Violation,
        gate: DeploymentGate,
        recipients: Sequence[str] = (),
    ) -> dict[str, Any]: ...


def violation_payload(
    violation: Violation,
    gate: DeploymentGate,
    recipients: Sequence[str] = (),
) -> dict[str, Any]:
    """Transport-neutral JSON body describing a violation and its gate."""
    return {
        "event": "policy_violation",
        "repository_id": gate.repository_id,
        "commit_sha": gate.commit_sha,
        "gate_status": gate.status.value,
        "violation": violation.to_dict(),
        "recipients": list(recipients),
    }


class SlackChannel:
    """Send violation notifications to Slack via webhook."""

    SEVERITY_COLORS = {
        "LOW": "#36a64f",
        "MEDIUM": "#ff9900",
        "HIGH": "#ff5500",
        "CRITICAL": "#ff0000",
    }

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def send(
        self,
        channel: str,
        violation: Violation,
        gate: DeploymentGate,
        recipients: Sequence[str] = (),
    ) -> dict[str, Any]:
        """
        Post a violation to Slack.

        Raises:
            NotificationError: If the webhook call fails
        """
        payload = self._format_slack_message(violation, gate, recipients)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"Failed to send Slack notification: {exc}") from exc

        logger.info(
            "slack_notification_sent",
            repository_id=gate.repository_id,
            violation_id=violation.id,
        )
        return {"status": "sent", "channel": channel}

    def _format_slack_message(
        self,
        violation: Violation,
        gate: DeploymentGate,
        recipients: Sequence[str],
    ) -> dict[str, Any]:
        color = self.SEVERITY_COLORS.get(violation.severity.value, "#999999")
        title = f"Policy violation in {gate.repository_id} @ {gate.commit_sha[:12]}"

        blocks: list[dict[str, Any]] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": title},
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": violation.description},
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": (
                            f"*Gate:* {gate.status.value}  "
                            f"*Detected:* {violation.detected_at.strftime('%Y-%m-%d %H:%M:%S UTC')}"
                        ),
                    },
                ],
            },
        ]
        if recipients:
            blocks.append(
                {
                    "type": "context",
                    "elements": [
                        {"type": "mrkdwn", "text": f"*Escalation:* {' → '.join(recipients)}"},
                    ],
                }
            )

        return {
            "text": title,
            "blocks": blocks,
            "attachments": [
                {
                    "color": color,
                    "text": f"Severity: {violation.severity.value}",
                }
            ],
        }


class WebhookChannel:
    """POST the violation payload as JSON to an arbitrary endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}

    async def send(
        self,
        channel: str,
        violation: Violation,
        gate: DeploymentGate,
        recipients: Sequence[str] = (),
    ) -> dict[str, Any]:
        payload = {"channel": channel, **violation_payload(violation, gate, recipients)}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload, headers=self.headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"Failed to deliver {channel} notification: {exc}") from exc

        return {"status": "sent", "channel": channel}


class LogChannel:
    """Records the notification in the structured log only."""

    async def send(
        self,
        channel: str,
        violation: Violation,
        gate: DeploymentGate,
        recipients: Sequence[str] = (),
    ) -> dict[str, Any]:
        logger.info(
            "notification_logged",
            channel=channel,
            repository_id=gate.repository_id,
            commit_sha=gate.commit_sha,
            violation_id=violation.id,
            description=violation.description,
            recipients=list(recipients),
        )
        return {"status": "logged", "channel": channel}
