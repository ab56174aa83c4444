"""Load metrics snapshots and policy files for the CLI."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from secgate.core.errors import ConfigurationError
from secgate.policies import Policy, PolicyRegistry


def read_document(path: str | Path) -> Any:
    """Parse a YAML or JSON file (JSON is chosen by the .json suffix)."""
    file_path = Path(path)
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(
            f"Cannot read {file_path}: {exc}", {"path": str(file_path)}
        ) from exc

    try:
        if file_path.suffix.lower() == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(
            f"Cannot parse {file_path}: {exc}", {"path": str(file_path)}
        ) from exc


def load_snapshot(path: str | Path) -> dict[str, Any]:
    """
    Load a metrics snapshot.

    Accepts either a bare mapping of metric keys or one nested under
    a top-level `metrics` key.
    """
    data = read_document(path)
    if isinstance(data, dict) and isinstance(data.get("metrics"), dict):
        data = data["metrics"]
    if not isinstance(data, dict):
        raise ConfigurationError("Metrics file must contain a mapping", {"path": str(path)})
    return data


def load_policy_records(path: str | Path) -> list[Policy]:
    """
    Load policies from a YAML/JSON list, or a mapping with a `policies` list.

    Raises:
        ConfigurationError: If the file is unreadable or not a list
        ValidationError: If a policy or rule is invalid
    """
    data = read_document(path)
    if isinstance(data, dict):
        data = data.get("policies")
    if not isinstance(data, list):
        raise ConfigurationError(
            "Policy file must contain a list of policies", {"path": str(path)}
        )
    return [Policy.from_dict(record) for record in data]


async def apply_policy_file(registry: PolicyRegistry, path: str | Path) -> list[Policy]:
    """Upsert every policy of a file into the registry; built-ins can be overridden by id."""
    return [await registry.replace_policy(policy) for policy in load_policy_records(path)]
