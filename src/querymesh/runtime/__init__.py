"""
Runtime module - plan building and execution pipeline.
"""

from __future__ import annotations

from .operators import aggregate_rows, execute_operation, filter_rows, join_rows, limit_rows, sort_rows
from .parameters import format_sql_value, substitute_parameters
from .plan_builder import DistributedPlanBuilder, classify_query
from .processor import DistributedQueryProcessor
from .sql_executor import ConnectionPool, HttpSqlExecutor, PooledSqlExecutor, RoutingSqlExecutor, SqlExecutor

__all__ = [
    "DistributedPlanBuilder",
    "classify_query",
    "DistributedQueryProcessor",
    "SqlExecutor",
    "ConnectionPool",
    "PooledSqlExecutor",
    "HttpSqlExecutor",
    "RoutingSqlExecutor",
    "execute_operation",
    "join_rows",
    "filter_rows",
    "sort_rows",
    "limit_rows",
    "aggregate_rows",
    "format_sql_value",
    "substitute_parameters",
]
