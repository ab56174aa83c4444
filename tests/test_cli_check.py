"""
Tests for the check and policies CLI commands.
"""

import json

import pytest
import yaml

from secgate.cli import build_parser, main
from secgate.cli.check import check_command
from secgate.cli.loaders import load_policy_records, load_snapshot
from secgate.cli.policies import policies_command
from secgate.core.errors import ConfigurationError, ExitCode

REPO = "payments-api"
SHA = "3f2a9c1d0b7e"


@pytest.fixture
def write_yaml(tmp_path):
    def _write(name, data):
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data))
        return str(path)

    return _write


class TestCheckCommand:
    def test_clean_snapshot_is_approved(self, write_yaml, capsys):
        metrics = write_yaml("metrics.yaml", {"critical_vulnerabilities": 0, "license_type": "MIT"})

        exit_code = check_command(REPO, SHA, metrics)

        assert exit_code == 0
        assert "Deployment approved" in capsys.readouterr().out

    def test_high_vulnerabilities_pending(self, write_yaml, capsys):
        metrics = write_yaml("metrics.yaml", {"metrics": {"high_vulnerabilities": 5}})

        exit_code = check_command(REPO, SHA, metrics)

        assert exit_code == 1
        assert "requires approval" in capsys.readouterr().out

    def test_critical_vulnerabilities_blocked(self, write_yaml, capsys):
        metrics = write_yaml("metrics.yaml", {"critical_vulnerabilities": 2})

        exit_code = check_command(REPO, SHA, metrics)

        output = capsys.readouterr().out
        assert exit_code == 2
        assert "BLOCKED" in output
        assert "critical-vulns" in output

    def test_json_output(self, tmp_path, capsys):
        metrics = tmp_path / "metrics.json"
        metrics.write_text(json.dumps({"critical_vulnerabilities": 1}))

        exit_code = check_command(REPO, SHA, str(metrics), output_format="json")

        gate = json.loads(capsys.readouterr().out)
        assert exit_code == 2
        assert gate["repository_id"] == REPO
        assert gate["commit_sha"] == SHA
        assert gate["status"] == "BLOCKED"

    def test_policy_file_overrides_builtin(self, write_yaml):
        metrics = write_yaml("metrics.yaml", {"critical_vulnerabilities": 2})
        policies = write_yaml(
            "policies.yaml",
            {
                "policies": [
                    {
                        "id": "critical-vulns",
                        "name": "Critical Vulnerability Policy",
                        "enabled": False,
                        "rules": [
                            {
                                "id": "crit-vuln-threshold",
                                "condition": "critical_vulnerabilities",
                                "operator": "GT",
                                "value": 0,
                            }
                        ],
                        "enforcement": {"type": "BLOCK"},
                    }
                ]
            },
        )

        assert check_command(REPO, SHA, metrics, policies_file=policies) == 0

    def test_missing_metrics_file(self, tmp_path):
        exit_code = check_command(REPO, SHA, str(tmp_path / "missing.yaml"))
        assert exit_code == ExitCode.CONFIG_ERROR

    def test_invalid_rule_in_policy_file(self, write_yaml):
        metrics = write_yaml("metrics.yaml", {"critical_vulnerabilities": 0})
        policies = write_yaml(
            "policies.yaml",
            [{"id": "bad", "rules": [{"condition": "x", "operator": "MATCHES", "value": "("}]}],
        )

        exit_code = check_command(REPO, SHA, metrics, policies_file=policies)

        assert exit_code == ExitCode.VALIDATION_ERROR


class TestPoliciesCommand:
    def test_lists_builtins(self, capsys):
        assert policies_command() == 0
        output = capsys.readouterr().out
        assert "critical-vulns" in output
        assert "code-quality" in output

    def test_json_enabled_only(self, write_yaml, capsys):
        policies = write_yaml("policies.yaml", [{"id": "outdated-deps", "enabled": False}])

        assert policies_command(policies, output_format="json", enabled_only=True) == 0

        ids = [p["id"] for p in json.loads(capsys.readouterr().out)]
        assert "outdated-deps" not in ids
        assert "critical-vulns" in ids


class TestLoaders:
    def test_snapshot_must_be_mapping(self, write_yaml):
        with pytest.raises(ConfigurationError):
            load_snapshot(write_yaml("metrics.yaml", [1, 2]))

    def test_policy_file_must_be_list(self, write_yaml):
        with pytest.raises(ConfigurationError):
            load_policy_records(write_yaml("policies.yaml", {"name": "oops"}))

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "metrics.yaml"
        path.write_text("critical_vulnerabilities: [unclosed")

        with pytest.raises(ConfigurationError):
            load_snapshot(path)


class TestMain:
    @pytest.fixture(autouse=True)
    def keep_test_logging(self, monkeypatch):
        monkeypatch.setattr("secgate.cli.configure_logging", lambda *args, **kwargs: None)

    def test_parser_wires_check(self):
        args = build_parser().parse_args(["check", REPO, SHA, "-m", "metrics.yaml", "-f", "json"])

        assert args.command == "check"
        assert args.metrics_file == "metrics.yaml"
        assert args.output_format == "json"

    def test_main_exits_with_gate_code(self, write_yaml):
        metrics = write_yaml("metrics.yaml", {"critical_vulnerabilities": 3})

        with pytest.raises(SystemExit) as exc_info:
            main(["check", REPO, SHA, "--metrics", metrics])

        assert exc_info.value.code == 2

    def test_main_without_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 0
        assert "secgate" in capsys.readouterr().out
