import json
from typer.testing import CliRunner

from budget_planner.cli import app

runner = CliRunner()


def test_cli_validate_json_success():
    r = runner.invoke(app, ["validate", "examples/basic-plan.yaml", "--format", "json"])
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["tool"] == "budget-planner"
    assert payload["command"] == "validate"
    assert payload["schema_version"] == "0.1.0"
    assert payload["ok"] is True
    assert payload["error_count"] == 0
    assert payload["errors"] == []
    assert payload["summary"]["node_count"] == 10
    assert payload["summary"]["kind_counts"] == {"budget_head": 2, "prd": 3, "task": 5}
    assert payload["summary"]["roots"] == ["BH-PLAT", "BH-RES"]
    assert payload["summary"]["developers"] == ["alice", "bob", "carol"]


def test_cli_validate_json_failure_contains_codes():
    r = runner.invoke(app, ["validate", "examples/invalid-dangling-dev.yaml", "--format", "json"])
    assert r.exit_code == 2
    payload = json.loads(r.stdout)
    assert payload["ok"] is False
    assert payload["error_count"] == 1
    err = payload["errors"][0]
    assert err["code"] == "DanglingDeveloperRef"
    assert err["node_id"] == "T-2"
    assert err["source"] == "validate"


def test_cli_validate_json_load_error():
    r = runner.invoke(app, ["validate", "examples/does-not-exist.yaml", "--format", "json"])
    assert r.exit_code == 1
    payload = json.loads(r.stdout)
    assert payload["schema_version"] is None
    assert payload["errors"][0]["code"] == "E_FILE_NOT_FOUND"
    assert payload["errors"][0]["source"] == "load"
