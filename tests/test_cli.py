import json

import pytest
import yaml

from querymesh.cli.main import app

from .conftest import CATALOG_DESCRIPTIONS


@pytest.fixture
def plan_file(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(json.dumps({
        "query": "How many deposits and bets?",
        "steps": [
            {"service": "wallet", "sqlQuery": 'SELECT id FROM "Transaction"'},
            {"service": "bets-history", "sqlQuery": 'SELECT id FROM "Bet"'},
        ],
        "requiredServices": ["wallet", "bets-history"],
    }))
    return path


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "catalog.yaml"
    path.write_text(yaml.safe_dump(CATALOG_DESCRIPTIONS))
    return path


def test_plan_command_uses_query_from_file(plan_file, tmp_path, capsys):
    code = app(["--config", str(tmp_path / "none.yaml"), "plan", str(plan_file)])
    assert code == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["finalStepId"] == "aggregate_count"
    assert [s["id"] for s in printed["steps"]] == ["step_1", "step_2", "aggregate_count"]


def test_plan_command_query_flag_wins(plan_file, tmp_path, capsys):
    code = app(["--config", str(tmp_path / "none.yaml"), "plan", str(plan_file), "-q", "Show them"])
    assert code == 0
    assert json.loads(capsys.readouterr().out)["finalStepId"] == "join_1"


def test_conflicts_command(plan_file, catalog_file, tmp_path, capsys):
    code = app([
        "--config", str(tmp_path / "none.yaml"),
        "--catalog", str(catalog_file),
        "conflicts", str(plan_file),
    ])
    captured = capsys.readouterr()
    assert code == 0
    assert json.loads(captured.out)["errorProbability"] == "medium"
    assert "Conflict resolution suggestions" in captured.err


def test_conflicts_command_needs_catalog(plan_file, tmp_path, capsys):
    code = app(["--config", str(tmp_path / "none.yaml"), "conflicts", str(plan_file)])
    assert code == 1
    assert "catalog" in capsys.readouterr().err


def test_invalid_plan_file_is_reported(tmp_path, capsys):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"steps": [{"service": "nowhere", "sqlQuery": "SELECT 1"}]}))
    code = app(["--config", str(tmp_path / "none.yaml"), "plan", str(bad)])
    assert code == 1
    captured = capsys.readouterr()
    assert "Error:" in captured.err
    assert captured.out == ""


def test_no_command_prints_help(capsys):
    assert app([]) == 0
    assert "usage" in capsys.readouterr().out
