"""
Cross-step parameter substitution.

A SQL step declares the parameter names it needs; their values come from the
first row of its dependencies' results. Values are rendered as SQL literals
and written over every placeholder form the tokenizer recognizes:

    ?            k-th declared name (k-th `?` in the text)
    :name        named
    :"name"      named
    ${name}      named
    @name        named
    $N           N-th declared name

A `?` or `$N` past the end of the declared names takes the last one.

Unresolved parameters stay in place and are reported, not raised; the
database call that follows is expected to surface the problem.
"""

from __future__ import annotations

import json
import logging
import warnings
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional

from ..core.errors import ParameterResolutionWarning
from ..core.plan_types import Row
from ..core.sql_text import Token, replace_tokens

logger = logging.getLogger(__name__)


def _quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def format_sql_value(value: Any) -> str:
    """
    Render a Python value as a SQL literal.

    Examples:
        None          -> NULL
        True          -> true
        42            -> 42
        "O'Brien"     -> 'O''Brien'
        {"a": 1}      -> '{"a": 1}'
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, (datetime, date, time)):
        return _quote(value.isoformat())
    if isinstance(value, (dict, list, tuple)):
        return _quote(json.dumps(value, ensure_ascii=False, default=str))
    return _quote(str(value))


def find_parameter_value(name: str, inputs: list[tuple[str, list[Row]]]) -> tuple[bool, Any, Optional[str]]:
    """
    Look a parameter up in the first row of each dependency, in order.

    Returns:
        (found, value, supplying step id)
    """
    wanted = name.lower()
    for step_id, rows in inputs:
        if not rows:
            continue
        for key, value in rows[0].items():
            if key.lower() == wanted:
                return True, value, step_id
    return False, None, None


def substitute_parameters(
    sql: str,
    parameters: list[str],
    inputs: list[tuple[str, list[Row]]],
    step_id: Optional[str] = None,
) -> tuple[str, list[str]]:
    """
    Replace parameter placeholders with literal values from dependency rows.

    Args:
        sql: SQL text with placeholders
        parameters: Declared parameter names, in order
        inputs: (dependency step id, rows) pairs in depends_on order
        step_id: Used in log and warning messages

    Returns:
        (rewritten SQL, names that could not be resolved)
    """
    if not parameters:
        return sql, []

    literals: dict[str, str] = {}
    unresolved: list[str] = []
    for name in parameters:
        found, value, source = find_parameter_value(name, inputs)
        if found:
            literals[name.lower()] = format_sql_value(value)
            logger.debug(f"Parameter {name} = {literals[name.lower()]} (from {source})")
        elif name not in unresolved:
            unresolved.append(name)

    positional_index = 0

    def replacer(token: Token) -> Optional[str]:
        nonlocal positional_index
        if token.kind == "named":
            return literals.get(token.name.lower())
        if token.kind == "positional":
            index = min(positional_index, len(parameters) - 1)
            positional_index += 1
            return literals.get(parameters[index].lower())
        if token.kind == "numbered":
            index = int(token.name) - 1
            if index < 0:
                return None
            return literals.get(parameters[min(index, len(parameters) - 1)].lower())
        return None

    rewritten = replace_tokens(sql, replacer)

    where = f" for step {step_id}" if step_id else ""
    for name in unresolved:
        message = f"Value for parameter {name}{where} not found in any dependency result"
        logger.warning(message)
        warnings.warn(message, ParameterResolutionWarning, stacklevel=2)

    return rewritten, unresolved
