from querymesh.core.sql_text import (
    cte_names,
    extract_table_names,
    find_parameters,
    fix_identifier_case,
    mentions_identifier,
    parameter_names,
    quote_identifiers,
    references_table,
    render,
    strip_comments,
    tokenize,
)


def test_tokenize_round_trips_text():
    """Token texts concatenate back to the input"""
    sql = "SELECT \"userId\", amount::text FROM t -- note\nWHERE a = 'it''s' AND b = :p /* x */"
    assert render(tokenize(sql)) == sql


def test_named_parameter_forms():
    """Every named placeholder form records its name"""
    sql = 'SELECT * FROM t WHERE a = :first AND b = :"second" AND c = ${third} AND d = @fourth'
    assert parameter_names(sql) == ["first", "second", "third", "fourth"]


def test_cast_is_not_a_parameter():
    """PostgreSQL ::type casts never count as named parameters"""
    sql = 'SELECT * FROM "Transaction" WHERE "createdAt"::date = CURRENT_DATE'
    assert parameter_names(sql) == []
    assert find_parameters(sql) == []


def test_cast_next_to_parameter():
    sql = 'SELECT * FROM t WHERE "createdAt"::date = :day::date'
    assert parameter_names(sql) == ["day"]


def test_positional_placeholders_use_conventional_name():
    assert parameter_names("SELECT * FROM t WHERE id = ?") == ["userId"]
    assert parameter_names("SELECT * FROM t WHERE id = $1 OR id = $2") == ["userId"]
    assert parameter_names("SELECT * FROM t WHERE id = ?", positional_name="id") == ["id"]


def test_positional_name_not_added_when_named_present():
    assert parameter_names("SELECT * FROM t WHERE a = :accountId AND b = ?") == ["accountId"]


def test_placeholders_inside_literals_and_comments_are_ignored():
    sql = "SELECT ':fake', '?' FROM t -- WHERE x = :other\nWHERE y = 1"
    assert parameter_names(sql) == []


def test_duplicate_named_parameters_recorded_once():
    assert parameter_names("SELECT * FROM t WHERE a = :userId OR b = :userId") == ["userId"]


def test_strip_comments():
    sql = "SELECT 1 -- trailing\nFROM /* block\ncomment */ t"
    assert "trailing" not in strip_comments(sql)
    assert "block" not in strip_comments(sql)


def test_extract_table_names():
    """Tables after FROM/JOIN, quoted or not, deduplicated in order"""
    sql = """
        SELECT * FROM "Transaction" t
        JOIN `Balance` b ON b."userId" = t."userId"
        -- FROM Hidden
        WHERE t.id IN (SELECT id FROM Transaction)
    """
    assert extract_table_names(sql) == ["Transaction", "Balance"]


def test_cte_names():
    sql = 'WITH deposits AS (SELECT * FROM "Transaction"), "Top" AS (SELECT 1) SELECT * FROM deposits'
    assert cte_names(sql) == ["deposits", "Top"]
    assert cte_names('SELECT id, amount AS total FROM "Transaction"') == []


def test_references_table_case_insensitive():
    assert references_table('SELECT * FROM "Transaction"', "transaction")
    assert not references_table('SELECT "Transaction" FROM other', "Transaction")


def test_quote_identifiers():
    sql = 'SELECT userId, amount FROM "Transaction" WHERE userId = :userId GROUP BY userId'
    assert quote_identifiers(sql, ["userId"]) == (
        'SELECT "userId", amount FROM "Transaction" WHERE "userId" = :userId GROUP BY "userId"'
    )


def test_quote_identifiers_leaves_quoted_literals_and_other_case():
    sql = "SELECT \"userId\", userid, 'userId' FROM t"
    assert quote_identifiers(sql, ["userId"]) == sql


def test_fix_identifier_case():
    sql = 'SELECT "createdat", "userid", "Other" FROM "transaction"'
    known = {"createdat": "createdAt", "userid": "userId", "transaction": "Transaction"}
    assert fix_identifier_case(sql, known) == 'SELECT "createdAt", "userId", "Other" FROM "Transaction"'


def test_mentions_identifier():
    assert mentions_identifier('SELECT * FROM t WHERE "userId" = 1', "userid")
    assert mentions_identifier("SELECT * FROM t WHERE id = :userId", "userId")
    assert not mentions_identifier("SELECT 'userId' FROM t", "userId")
    assert not mentions_identifier("SELECT userIds FROM t", "userId")
