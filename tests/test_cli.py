"""Tests for the causal-gov command-line interface."""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from aumos_causal_governance.cli.main import cli
from aumos_causal_governance.model.allowance import Allowance, Grant, TraceHop
from aumos_causal_governance.storage.codec import AllowanceCodec

_POLICIES = str(Path(__file__).parent / "fixtures" / "causal_policies.yaml")


def _deployment(generation: int, observed: int | None, replicas: int) -> dict[str, object]:
    obj: dict[str, object] = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "web", "namespace": "default", "generation": generation},
        "spec": {"replicas": replicas},
    }
    if observed is not None:
        obj["status"] = {"observedGeneration": observed}
    return obj


def _write(path: Path, data: object) -> str:
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return str(path)


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


# ---------------------------------------------------------------------------
# version / validate
# ---------------------------------------------------------------------------


class TestVersionCommand:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert "aumos-causal-governance" in result.output


class TestValidateCommand:
    def test_valid_policies(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["validate", _POLICIES])
        assert result.exit_code == 0
        assert "3 policies" in result.output
        assert "1 upgrade allowances" in result.output

    def test_invalid_policy_exits_one(self, runner: CliRunner, tmp_path: Path) -> None:
        bad = _write(tmp_path / "bad.yaml", {"kind": "AllowancePolicy", "spec": {"forKind": {}}})
        result = runner.invoke(cli, ["validate", bad])
        assert result.exit_code == 1

    def test_missing_file_is_usage_error(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["validate", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


class TestCheckCommand:
    def test_initiator_accepted(self, runner: CliRunner, tmp_path: Path) -> None:
        request = _write(
            tmp_path / "request.yaml",
            {
                "uid": "r-1",
                "operation": "UPDATE",
                "subject": "alice",
                "object": _deployment(7, 6, 5),
                "oldObject": _deployment(6, 6, 3),
            },
        )
        result = runner.invoke(cli, ["check", "-p", _POLICIES, "-r", request])
        assert result.exit_code == 0
        assert "ACCEPT" in result.output
        assert "initiated" in result.output

    def test_non_initiator_rejected(self, runner: CliRunner, tmp_path: Path) -> None:
        request = _write(
            tmp_path / "request.yaml",
            {
                "operation": "update",
                "subject": {"username": "bob", "groups": ["dev"]},
                "object": _deployment(7, 6, 5),
                "oldObject": _deployment(6, 6, 3),
            },
        )
        result = runner.invoke(cli, ["check", "-p", _POLICIES, "-r", request])
        assert result.exit_code == 1
        assert "REJECT" in result.output

    def test_parent_looked_up_in_objects_file(self, runner: CliRunner, tmp_path: Path) -> None:
        objects = _write(tmp_path / "objects.yaml", [_deployment(1, None, 3)])
        replicaset = {
            "apiVersion": "apps/v1",
            "kind": "ReplicaSet",
            "metadata": {
                "name": "web-1",
                "namespace": "default",
                "ownerReferences": [
                    {"apiVersion": "apps/v1", "kind": "Deployment", "name": "web", "controller": True}
                ],
            },
            "spec": {"replicas": 3},
        }
        request = _write(
            tmp_path / "request.yaml",
            {
                "operation": "CREATE",
                "subject": "system:serviceaccount:kube-system:deployment-controller",
                "object": replicaset,
            },
        )
        result = runner.invoke(cli, ["check", "-p", _POLICIES, "-r", request, "-o", objects])
        assert result.exit_code == 0
        assert "phase" in result.output

    def test_external_request(self, runner: CliRunner, tmp_path: Path) -> None:
        instance = {
            "apiVersion": "db.example.com/v1alpha1",
            "kind": "RDSInstance",
            "metadata": {
                "name": "orders-db",
                "namespace": "shop",
                "generation": 2,
                "deletionTimestamp": "2026-03-01T12:00:00Z",
            },
        }
        request = _write(
            tmp_path / "request.yaml",
            {
                "subject": "system:serviceaccount:ack-system:rds-controller",
                "object": instance,
                "external": {"system": {"system": "aws", "service": "rds"}, "verb": "delete"},
            },
        )
        result = runner.invoke(cli, ["check", "-p", _POLICIES, "-r", request])
        assert result.exit_code == 1
        assert "Deleting" in result.output

    def test_warn_mode_config(self, runner: CliRunner, tmp_path: Path) -> None:
        config = _write(tmp_path / "config.yaml", {"mode": "warn", "policy_files": [_POLICIES]})
        request = _write(
            tmp_path / "request.yaml",
            {
                "operation": "UPDATE",
                "subject": "bob",
                "object": _deployment(7, 6, 5),
                "oldObject": _deployment(6, 6, 3),
            },
        )
        result = runner.invoke(cli, ["check", "-c", config, "-r", request])
        assert result.exit_code == 0
        assert "warn mode" in result.output

    def test_invalid_request_exits_two(self, runner: CliRunner, tmp_path: Path) -> None:
        request = _write(tmp_path / "request.yaml", {"operation": "PATCH", "subject": "alice"})
        result = runner.invoke(cli, ["check", "-p", _POLICIES, "-r", request])
        assert result.exit_code == 2

    def test_invalid_policy_exits_two(self, runner: CliRunner, tmp_path: Path) -> None:
        bad = _write(tmp_path / "bad.yaml", {"kind": "Mystery", "spec": {}})
        request = _write(tmp_path / "request.yaml", {"operation": "CREATE", "subject": "alice"})
        result = runner.invoke(cli, ["check", "-p", bad, "-r", request])
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# trace
# ---------------------------------------------------------------------------


class TestTraceCommand:
    def test_lists_allowances(self, runner: CliRunner, tmp_path: Path) -> None:
        allowance = Allowance(
            "apps/ReplicaSet",
            Grant(verbs=frozenset({"update"}), any_field=True),
            7,
            "alice",
            (TraceHop("Deployment", "web", 7, "spec.replicas"),),
        )
        obj = AllowanceCodec().write_annotations(_deployment(7, 6, 5), [allowance], "fp-1")
        path = _write(tmp_path / "deployment.yaml", obj)
        result = runner.invoke(cli, ["trace", path])
        assert result.exit_code == 0
        assert "alice" in result.output
        assert "active" in result.output
        assert "fp-1" in result.output

    def test_no_allowances(self, runner: CliRunner, tmp_path: Path) -> None:
        path = _write(tmp_path / "deployment.yaml", _deployment(1, None, 1))
        result = runner.invoke(cli, ["trace", path])
        assert result.exit_code == 0
        assert "No allowances." in result.output

    def test_custom_prefix(self, runner: CliRunner, tmp_path: Path) -> None:
        path = _write(tmp_path / "deployment.yaml", _deployment(1, None, 1))
        result = runner.invoke(cli, ["trace", path, "--annotation-prefix", "example.com"])
        assert result.exit_code == 0
