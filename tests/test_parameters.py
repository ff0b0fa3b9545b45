from datetime import date, datetime
from decimal import Decimal

import pytest

from querymesh.core.errors import ParameterResolutionWarning
from querymesh.runtime.parameters import (
    find_parameter_value,
    format_sql_value,
    substitute_parameters,
)


@pytest.mark.parametrize("value,expected", [
    (None, "NULL"),
    (True, "true"),
    (False, "false"),
    (42, "42"),
    (1.5, "1.5"),
    (Decimal("10.25"), "10.25"),
    ("plain", "'plain'"),
    ("O'Brien", "'O''Brien'"),
    (date(2024, 1, 31), "'2024-01-31'"),
    (datetime(2024, 1, 31, 12, 30), "'2024-01-31T12:30:00'"),
    ({"a": 1}, "'{\"a\": 1}'"),
    ([1, 2], "'[1, 2]'"),
])
def test_format_sql_value(value, expected):
    assert format_sql_value(value) == expected


def test_find_parameter_value_first_dependency_wins():
    inputs = [("s1", []), ("s2", [{"UserId": 7}]), ("s3", [{"userId": 8}])]
    assert find_parameter_value("userid", inputs) == (True, 7, "s2")
    assert find_parameter_value("missing", inputs) == (False, None, None)


def test_only_first_row_is_consulted():
    inputs = [("s1", [{"id": 1}, {"userId": 2}])]
    assert find_parameter_value("userId", inputs)[0] is False


def test_named_parameter_substituted():
    sql, unresolved = substitute_parameters(
        'SELECT * FROM "Bet" WHERE "userId" = :userId',
        ["userId"],
        [("step_1", [{"userId": 42}])],
    )
    assert sql == 'SELECT * FROM "Bet" WHERE "userId" = 42'
    assert unresolved == []


def test_parameter_keys_match_case_insensitively():
    sql, _ = substitute_parameters(
        "SELECT * FROM t WHERE a = :USERID", ["userId"], [("s", [{"userid": 5}])]
    )
    assert sql == "SELECT * FROM t WHERE a = 5"


def test_every_named_form_is_replaced():
    sql = "SELECT * FROM t WHERE a = :name AND b = :\"name\" AND c = ${name} AND d = @name"
    out, _ = substitute_parameters(sql, ["name"], [("s", [{"name": "x"}])])
    assert out == "SELECT * FROM t WHERE a = 'x' AND b = 'x' AND c = 'x' AND d = 'x'"


def test_positional_placeholders_follow_declared_order():
    """The k-th ? takes the k-th declared name"""
    out, unresolved = substitute_parameters(
        "SELECT * FROM t WHERE a = ? AND b = ?",
        ["userId", "currency"],
        [("s", [{"userId": 3, "currency": "EUR"}])],
    )
    assert out == "SELECT * FROM t WHERE a = 3 AND b = 'EUR'"
    assert unresolved == []


def test_numbered_placeholders():
    out, _ = substitute_parameters(
        "SELECT * FROM t WHERE b = $2 OR a = $1 OR c = $3",
        ["userId", "currency"],
        [("s", [{"userId": 3, "currency": "EUR"}])],
    )
    assert out == "SELECT * FROM t WHERE b = 'EUR' OR a = 3 OR c = 'EUR'"


def test_extra_positional_placeholders_reuse_last_name():
    """A ? beyond the declared names binds to the last one"""
    out, unresolved = substitute_parameters(
        'SELECT * FROM "Transaction" WHERE "userId" = ? OR "referrerId" = ?',
        ["userId"],
        [("step_1", [{"userId": 42}])],
    )
    assert out == 'SELECT * FROM "Transaction" WHERE "userId" = 42 OR "referrerId" = 42'
    assert unresolved == []


def test_values_are_escaped():
    out, _ = substitute_parameters(
        "SELECT * FROM t WHERE name = :name", ["name"], [("s", [{"name": "it's"}])]
    )
    assert out == "SELECT * FROM t WHERE name = 'it''s'"


def test_casts_and_literals_untouched():
    sql = "SELECT ':userId' FROM t WHERE \"createdAt\"::date = :day -- :userId"
    out, _ = substitute_parameters(sql, ["day", "userId"], [("s", [{"day": "2024-01-01", "userId": 1}])])
    assert out == "SELECT ':userId' FROM t WHERE \"createdAt\"::date = '2024-01-01' -- :userId"


def test_no_declared_parameters_returns_sql_unchanged():
    sql = "SELECT * FROM t WHERE a = :x"
    assert substitute_parameters(sql, [], [("s", [{"x": 1}])]) == (sql, [])


def test_unresolved_parameter_warns_and_stays():
    with pytest.warns(ParameterResolutionWarning, match="userId"):
        out, unresolved = substitute_parameters(
            "SELECT * FROM t WHERE a = :userId", ["userId"], [("s", [{"other": 1}])], step_id="step_2"
        )
    assert out == "SELECT * FROM t WHERE a = :userId"
    assert unresolved == ["userId"]
