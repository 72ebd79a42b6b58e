import json
from typer.testing import CliRunner

from budget_planner.cli import app

runner = CliRunner()


def test_cli_phase_json():
    r = runner.invoke(app, ["phase", "examples/basic-plan.yaml", "-d", "alice", "--format", "json"])
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["command"] == "phase"
    assert payload["developer"] == "alice"
    assert payload["allocations"] == [
        {"task": "T-SYNC-BUILD", "week": 9, "effort": 5.0},
        {"task": "T-SYNC-BUILD", "week": 10, "effort": 5.0},
        {"task": "T-SYNC-DESIGN", "week": 1, "effort": 2.0},
        {"task": "T-SYNC-DESIGN", "week": 2, "effort": 3.0},
        {"task": "T-SYNC-DESIGN", "week": 3, "effort": 1.0},
    ]
    assert payload["overflow"] == {}
    # bank holiday in week 4, hackathon in week 6
    assert payload["remaining"]["4"] == 4.0
    assert payload["remaining"]["6"] == 0.0


def test_cli_phase_text_table():
    r = runner.invoke(app, ["phase", "examples/basic-plan.yaml", "--developer", "alice"])
    assert r.exit_code == 0
    assert "alice: phased allocation" in r.stdout
    assert "T-SYNC-DESIGN" in r.stdout
    # weeks are labelled by date when the plan has a start date
    assert "19/01/26" in r.stdout


def test_cli_phase_settings_file_moves_now():
    r = runner.invoke(
        app,
        ["phase", "examples/basic-plan.yaml", "-d", "alice", "--format", "json", "--settings-file", "examples/settings.yaml"],
    )
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    # now_week 1: the design effort not yet done lands in week 1 beside the done effort
    assert payload["allocations"][-2:] == [
        {"task": "T-SYNC-DESIGN", "week": 1, "effort": 3.0},
        {"task": "T-SYNC-DESIGN", "week": 2, "effort": 3.0},
    ]


def test_cli_phase_overflow_warns(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text("now_week: 11\n", encoding="utf-8")
    r = runner.invoke(app, ["phase", "examples/basic-plan.yaml", "-d", "alice", "--settings-file", str(p)])
    assert r.exit_code == 0
    # the build deadline (week 10) is already behind us
    assert "WARN: T-SYNC-BUILD: 10 unphased" in r.output


def test_cli_phase_unknown_developer():
    r = runner.invoke(app, ["phase", "examples/basic-plan.yaml", "-d", "zed"])
    assert r.exit_code == 2
    assert "E_PHASE_UNKNOWN_DEVELOPER" in r.output


def test_cli_phase_invalid_input(tmp_path):
    p = tmp_path / "plan.yaml"
    p.write_text(
        "\n".join(
            [
                'schema_version: "0.1.0"',
                "developers:",
                "  - id: alice",
                "    weekly_capacity: 5",
                "nodes:",
                "  - id: T-1",
                "    kind: task",
                "    dev: alice",
                "    plan: 3",
            ]
        ),
        encoding="utf-8",
    )
    r = runner.invoke(app, ["phase", str(p), "-d", "alice", "--format", "json"])
    assert r.exit_code == 2
    payload = json.loads(r.stdout)
    assert payload["errors"][0]["code"] == "E_INVALID_INPUT"
    assert payload["errors"][0]["node_id"] == "T-1"
    assert payload["errors"][0]["source"] == "phase"
