import pytest

from querymesh.core.conflicts import ConflictDetector
from querymesh.core.plan_types import QueryPlan


@pytest.fixture
def detector(catalog) -> ConflictDetector:
    return ConflictDetector(catalog)


def _plan(sql_by_service: list[tuple[str, str]], required: list[str]) -> QueryPlan:
    return QueryPlan.model_validate({
        "steps": [{"service": svc, "description": "", "sqlQuery": sql} for svc, sql in sql_by_service],
        "requiredServices": required,
    })


def test_single_owner_table_is_not_a_conflict(detector):
    """Table owned by exactly one service is not reported"""
    assert detector.detect_table_conflicts("Bet") is None


def test_unknown_table_is_not_a_conflict(detector):
    """Table absent from the catalog is never flagged"""
    assert detector.detect_table_conflicts("Nowhere") is None


def test_duplicated_table_lists_all_owners(detector):
    conflict = detector.detect_table_conflicts("Transaction")
    assert conflict is not None
    assert conflict.table_name == "Transaction"
    assert conflict.services == ["wallet", "financial-history"]
    assert set(conflict.schemas) == {"wallet", "financial-history"}


def test_plan_without_conflicts_is_low_risk(detector):
    plan = _plan([("bets-history", 'SELECT * FROM "Bet"')], ["bets-history"])
    result = detector.detect_plan_conflicts(plan)
    assert result.has_conflicts is False
    assert result.conflicts == []
    assert result.error_probability == "low"
    assert result.suggested_resolution is None


def test_one_required_owner_is_medium_risk(detector):
    """Only one of the owners is required, so the planner probably picked it"""
    plan = _plan([("wallet", 'SELECT amount FROM "Transaction" WHERE type = \'DEPOSIT\'')], ["wallet"])
    result = detector.detect_plan_conflicts(plan)
    assert result.has_conflicts is True
    assert result.error_probability == "medium"
    assert [c.table_name for c in result.conflicts] == ["Transaction"]
    assert 'service "wallet"' in result.suggested_resolution
    assert "schemas differ" in result.suggested_resolution


def test_two_required_owners_is_high_risk(detector):
    plan = _plan(
        [
            ("wallet", 'SELECT * FROM "Transaction"'),
            ("financial-history", 'SELECT * FROM "Transaction" t JOIN "Bet" b ON b.id = t.id'),
        ],
        ["wallet", "financial-history"],
    )
    result = detector.detect_plan_conflicts(plan)
    assert result.error_probability == "high"
    assert len(result.conflicts) == 1
    assert 'service "wallet"' in result.suggested_resolution


def test_no_required_owner_suggests_first_owner(detector):
    plan = _plan([("pam", 'SELECT * FROM "Transaction"')], ["pam"])
    result = detector.detect_plan_conflicts(plan)
    assert result.error_probability == "medium"
    assert 'service "wallet"' in result.suggested_resolution


def test_commented_out_tables_are_ignored(detector):
    plan = _plan([("wallet", 'SELECT * FROM "Balance" -- JOIN "Transaction"')], ["wallet"])
    assert detector.detect_plan_conflicts(plan).has_conflicts is False


def test_identical_schemas_do_not_mention_difference():
    from querymesh.core.catalog import SchemaCatalog

    same = SchemaCatalog.from_descriptions([
        {"name": "a", "service": "wallet", "tables": [{"name": "Log", "columns": [{"name": "id"}]}]},
        {"name": "b", "service": "traffic", "tables": [{"name": "Log", "columns": [{"name": "id"}]}]},
    ])
    result = ConflictDetector(same).detect_plan_conflicts(
        _plan([("wallet", "SELECT * FROM Log")], ["wallet"])
    )
    assert result.has_conflicts is True
    assert "schemas differ" not in result.suggested_resolution


def test_suggestion_prefers_first_required_owner():
    """The first listed owner is not required, so the first required one is named"""
    from querymesh.core.catalog import SchemaCatalog

    def db(service: str) -> dict:
        return {"name": f"{service}_db", "service": service, "tables": [{"name": "Transaction", "columns": [{"name": "id"}]}]}

    catalog = SchemaCatalog.from_descriptions([db("affiliate"), db("wallet"), db("financial-history")])
    result = ConflictDetector(catalog).detect_plan_conflicts(
        _plan([("wallet", 'SELECT * FROM "Transaction"')], ["wallet", "financial-history"])
    )
    assert result.error_probability == "high"
    assert 'service "wallet"' in result.suggested_resolution
    assert 'service "affiliate"' not in result.suggested_resolution
