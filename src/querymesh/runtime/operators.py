"""
In-memory relational operators.

Synthetic plan steps combine rows returned by several services. Each
operator takes the rows of the step's dependencies (in depends_on order)
and returns a new list of rows; inputs are never mutated.

Rows are plain dicts, so numeric and string coercion is done explicitly:
- to_number() for ordered comparisons and aggregation
- loose_equals() for = / != filters
- join keys are compared as strings
"""

from __future__ import annotations

import functools
import logging
import math
import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

from ..core.plan_types import QueryStep, Row

logger = logging.getLogger(__name__)

StepInputs = list[tuple[str, list[Row]]]  # (dependency step id, rows)

_REFERENCE_PATTERN = re.compile(r"^\$\{(\w+)\}$")

FILTER_OPERATORS = ("=", "==", "!=", ">", ">=", "<", "<=", "in", "like")
AGGREGATE_FUNCTIONS = ("max", "min", "sum", "avg", "count")


# =============================================================================
# Coercion helpers
# =============================================================================


def to_number(value: Any) -> float:
    """
    Coerce a value to a float; NaN when it has no numeric reading.

    Numeric strings are parsed, datetimes become epoch milliseconds.
    """
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, datetime):
        return value.timestamp() * 1000
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return math.nan


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def loose_equals(left: Any, right: Any) -> bool:
    """
    Equality across representations: 10 == "10" == 10.0.

    None only equals None.
    """
    if left is None or right is None:
        return left is None and right is None
    if left == right:
        return True
    a, b = to_number(left), to_number(right)
    if not math.isnan(a) and not math.isnan(b):
        return a == b
    return str(left) == str(right)


def join_key(value: Any) -> Optional[str]:
    """String form of a join key; None for missing or empty keys."""
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
        return str(int(value))
    key = str(value)
    return key or None


def resolve_reference(value: Any, inputs: StepInputs) -> tuple[Any, Optional[str]]:
    """
    Resolve a `${name}` argument from the dependencies' first rows.

    Keys match case-insensitively; the first dependency holding the name wins.

    Returns:
        (resolved value, id of the supplying dependency) or the value
        unchanged and None when it is not a reference or has no match
    """
    if not isinstance(value, str):
        return value, None
    match = _REFERENCE_PATTERN.match(value)
    if not match:
        return value, None

    name = match.group(1).lower()
    for step_id, rows in inputs:
        if not rows:
            continue
        for key, found in rows[0].items():
            if key.lower() == name:
                return found, step_id

    logger.warning(f"Reference {value} not found in any dependency result")
    return value, None


def concat_rows(inputs: StepInputs, exclude: Optional[set[str]] = None) -> list[Row]:
    """Concatenate dependency rows in depends_on order."""
    rows: list[Row] = []
    for step_id, dep_rows in inputs:
        if exclude and step_id in exclude:
            continue
        rows.extend(dep_rows)
    return rows


# =============================================================================
# Operators
# =============================================================================


def hash_join(left: list[Row], right: list[Row], key: str) -> list[Row]:
    """
    Inner equi-join on `key`.

    Every matching pair emits one merged row: right-hand fields are added or
    override, the key is kept once with the left-hand value.
    """
    if not left or not right:
        return []

    lookup: dict[str, list[Row]] = {}
    for row in right:
        k = join_key(row.get(key))
        if k is None:
            continue
        lookup.setdefault(k, []).append(row)

    joined: list[Row] = []
    for row in left:
        k = join_key(row.get(key))
        if k is None:
            continue
        for match in lookup.get(k, []):
            merged = {**row, **match}
            merged[key] = row[key]
            joined.append(merged)
    return joined


def join_rows(sources: list[list[Row]], key: str) -> list[Row]:
    """Fold hash_join left to right over two or more row sets."""
    if len(sources) < 2:
        raise ValueError("JOIN operation requires at least 2 dependencies")
    result = sources[0]
    for rows in sources[1:]:
        result = hash_join(result, rows, key)
    return result


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op in ("=", "=="):
        return loose_equals(actual, expected)
    if op == "!=":
        return not loose_equals(actual, expected)
    if op in (">", ">=", "<", "<="):
        a, b = to_number(actual), to_number(expected)
        if math.isnan(a) or math.isnan(b):
            return False
        if op == ">":
            return a > b
        if op == ">=":
            return a >= b
        if op == "<":
            return a < b
        return a <= b
    if op == "in":
        return isinstance(expected, (list, tuple)) and any(loose_equals(actual, v) for v in expected)
    if op == "like":
        return str(expected) in ("" if actual is None else str(actual))
    return True


def filter_rows(rows: list[Row], field: str, op: str, value: Any) -> list[Row]:
    """
    Keep rows where `row[field] <op> value`.

    Unknown operators keep every row. `like` is case-sensitive substring
    containment, not SQL wildcard matching.
    """
    if op not in FILTER_OPERATORS:
        logger.warning(f"Unknown filter operator '{op}', passing all rows through")
        return list(rows)
    return [row for row in rows if _compare(op, row.get(field), value)]


def _sort_cmp(field: str, direction: int) -> Callable[[Row, Row], int]:
    def cmp(a: Row, b: Row) -> int:
        x, y = a.get(field), b.get(field)
        if x == y:
            return 0
        if is_number(x) and is_number(y):
            return direction * (1 if x > y else -1)
        return direction * (1 if str(x) > str(y) else -1)
    return cmp


def sort_rows(rows: list[Row], field: str, direction: str = "desc") -> list[Row]:
    """Stable sort; numbers compare numerically, everything else as strings."""
    sign = -1 if str(direction).lower() == "desc" else 1
    return sorted(rows, key=functools.cmp_to_key(_sort_cmp(field, sign)))


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid {name} parameter: {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValueError(f"Invalid {name} parameter: {value!r}")


def limit_rows(rows: list[Row], limit: Any, offset: Any = 0) -> list[Row]:
    """rows[offset:offset + limit]; non-integer arguments raise ValueError."""
    n = _parse_int(limit, "limit")
    start = _parse_int(offset, "offset")
    return rows[start:start + n]


def _aggregate_value(value: Any) -> float | int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = to_number(value or 0)
    return 0 if math.isnan(number) else number


def aggregate_rows(rows: list[Row], fn: str, field: str) -> list[Row]:
    """
    Reduce rows to a single `{fn: value, "field": field}` row.

    An empty input gives an empty result for every function.
    """
    fn = str(fn).lower()
    if fn not in AGGREGATE_FUNCTIONS:
        raise ValueError(f"Unsupported aggregate function: {fn}")
    if not rows:
        return []

    if fn == "count":
        result: float | int = len(rows)
    else:
        values = [_aggregate_value(row.get(field)) for row in rows]
        if fn == "max":
            result = max(values)
        elif fn == "min":
            result = min(values)
        elif fn == "sum":
            result = sum(values)
        else:
            result = sum(values) / len(values)

    return [{fn: result, "field": field}]


# =============================================================================
# Dispatch
# =============================================================================


def _arg(args: list[Any], index: int, default: Any = None) -> Any:
    return args[index] if len(args) > index else default


def execute_operation(step: QueryStep, inputs: StepInputs) -> list[Row]:
    """
    Run an in-memory step over its dependencies' rows.

    Args:
        step: In-memory step with operation and args
        inputs: (dependency id, rows) pairs in depends_on order

    Raises:
        ValueError: Missing operation, bad arguments or unknown function
        NotImplementedError: For group, map and reduce
    """
    op = step.operation
    args = step.args
    if not op:
        raise ValueError(f"In-memory step {step.id} has no operation defined")
    if not inputs:
        raise ValueError(f"{op.upper()} operation requires at least 1 dependency")

    logger.debug(f"Executing {op} for step {step.id} with args {args}")

    if op == "join":
        return join_rows([rows for _, rows in inputs], str(_arg(args, 0, "id")))

    if op == "filter":
        if len(args) < 2:
            raise ValueError("FILTER operation requires field and operator arguments")
        value, supplier = resolve_reference(_arg(args, 2), inputs)
        source = concat_rows(inputs, exclude={supplier} if supplier else None)
        return filter_rows(source, str(args[0]), str(args[1]), value)

    if op == "sort":
        if len(args) < 1:
            raise ValueError("SORT operation requires a field argument")
        return sort_rows(concat_rows(inputs), str(args[0]), str(_arg(args, 1, "desc")))

    if op == "limit":
        if len(args) < 1:
            raise ValueError("LIMIT operation requires a limit argument")
        return limit_rows(concat_rows(inputs), args[0], _arg(args, 1, 0))

    if op == "aggregate":
        if len(args) < 2:
            raise ValueError("AGGREGATE operation requires function and field arguments")
        return aggregate_rows(concat_rows(inputs), str(args[0]), str(args[1]))

    raise NotImplementedError(f"Unsupported in-memory operation: {op}")
