"""List the policies a gate check would use."""

from __future__ import annotations

import argparse
import asyncio

from secgate.cli.loaders import apply_policy_file
from secgate.cli.ux import console, print_table, styled
from secgate.core.errors import main_with_error_handling
from secgate.policies import Policy, PolicyRegistry


async def collect_policies(policies_file: str | None, enabled_only: bool) -> list[Policy]:
    registry = PolicyRegistry()
    if policies_file:
        await apply_policy_file(registry, policies_file)
    return await registry.list_policies(enabled=True if enabled_only else None)


@main_with_error_handling()
def policies_command(
    policies_file: str | None = None,
    output_format: str = "table",
    enabled_only: bool = False,
) -> int:
    policies = asyncio.run(collect_policies(policies_file, enabled_only))

    if output_format == "json":
        console.print_json(data=[p.to_dict() for p in policies])
        return 0

    print_table(
        "Security policies",
        ["ID", "Name", "Category", "Severity", "Enforcement", "Enabled"],
        [
            [
                p.id,
                p.name,
                p.category.value,
                p.severity.value,
                styled(p.enforcement.type.value),
                "yes" if p.enabled else "no",
            ]
            for p in policies
        ],
    )
    return 0


def register_policies_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("policies", help="List security policies")
    parser.add_argument(
        "--policies",
        "-p",
        dest="policies_file",
        help="YAML/JSON policy file merged over the built-in policies",
    )
    parser.add_argument(
        "--enabled",
        dest="enabled_only",
        action="store_true",
        help="Only show enabled policies",
    )
    parser.add_argument(
        "--format",
        "-f",
        dest="output_format",
        choices=["table", "json"],
        default="table",
    )


def handle_policies_command(args: argparse.Namespace) -> int:
    return policies_command(
        policies_file=getattr(args, "policies_file", None),
        output_format=getattr(args, "output_format", "table"),
        enabled_only=getattr(args, "enabled_only", False),
    )
