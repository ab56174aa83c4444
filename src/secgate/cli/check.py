"""
Deployment gate check command.

Evaluates a commit against the built-in policies (plus an optional policy
file) using a metrics snapshot read from disk.

Exit codes: 0 = Approved, 1 = Pending approval, 2 = Blocked
"""

from __future__ import annotations

import argparse
import asyncio

from secgate.cli.loaders import apply_policy_file, load_snapshot
from secgate.cli.ux import console, error, header, print_table, styled, success, warning
from secgate.config import get_settings
from secgate.core.errors import main_with_error_handling
from secgate.gates import SecurityPolicyEngine
from secgate.metrics import StaticMetricsProvider
from secgate.notifications import build_dispatcher
from secgate.policies import DeploymentGate, PolicyRegistry


async def run_gate_check(
    repository_id: str,
    commit_sha: str,
    metrics_file: str,
    policies_file: str | None = None,
) -> DeploymentGate:
    settings = get_settings()
    registry = PolicyRegistry()
    if policies_file:
        await apply_policy_file(registry, policies_file)

    engine = SecurityPolicyEngine(
        registry,
        StaticMetricsProvider({repository_id: load_snapshot(metrics_file)}),
        dispatcher=build_dispatcher(settings),
        window_days=settings.metrics_window_days,
    )
    gate = await engine.create_deployment_gate(repository_id, commit_sha)
    # The process exits right after; deliver before the loop closes.
    await engine.drain_notifications()
    return gate


@main_with_error_handling()
def check_command(
    repository_id: str,
    commit_sha: str,
    metrics_file: str,
    policies_file: str | None = None,
    output_format: str = "table",
) -> int:
    """Check whether a commit may be deployed."""
    gate = asyncio.run(run_gate_check(repository_id, commit_sha, metrics_file, policies_file))

    if output_format == "json":
        console.print_json(data=gate.to_dict())
    else:
        _display_gate(gate)

    return gate.exit_code


def _display_gate(gate: DeploymentGate) -> None:
    header(f"Deployment Gate: {gate.repository_id} @ {gate.commit_sha[:12]}")

    print_table(
        "Policy checks",
        ["Policy", "Status", "Message"],
        [[c.policy_id, styled(c.status.value), c.message] for c in gate.gate_checks],
    )

    if gate.violations:
        print_table(
            "Violations",
            ["Policy", "Rule", "Severity", "Actual", "Status"],
            [
                [
                    v.policy_id,
                    v.rule_id,
                    v.severity.value,
                    str(v.details.get("actual")),
                    styled(v.status.value),
                ]
                for v in gate.violations
            ],
        )

    console.print()
    if gate.is_blocked:
        error("Deployment BLOCKED")
    elif gate.is_pending:
        warning("Deployment requires approval")
    else:
        success("Deployment approved")


def register_check_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register check subcommand parser."""
    parser = subparsers.add_parser(
        "check",
        help="Evaluate a deployment gate for a commit",
    )
    parser.add_argument("repository_id", help="Repository identifier")
    parser.add_argument("commit_sha", help="Commit SHA to gate")
    parser.add_argument(
        "--metrics",
        "-m",
        dest="metrics_file",
        required=True,
        help="YAML/JSON file with the repository's metrics snapshot",
    )
    parser.add_argument(
        "--policies",
        "-p",
        dest="policies_file",
        help="YAML/JSON policy file merged over the built-in policies",
    )
    parser.add_argument(
        "--format",
        "-f",
        dest="output_format",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table)",
    )


def handle_check_command(args: argparse.Namespace) -> int:
    """Handle check command from CLI args."""
    return check_command(
        repository_id=args.repository_id,
        commit_sha=args.commit_sha,
        metrics_file=args.metrics_file,
        policies_file=getattr(args, "policies_file", None),
        output_format=getattr(args, "output_format", "table"),
    )
