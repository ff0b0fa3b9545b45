"""
Distributed plan builder - turns a flat per-service plan into an execution DAG.

The upstream planner sends one SQL query per service with no dependency
information. The builder:
1. Creates leaf steps (step_1..n) and records their parameter placeholders
2. Wires parameterized leaves to the preceding leaf
3. Rewrites cross-service "WHERE id = (SELECT ... FROM Transaction ...)"
   subqueries into a parameter fed by an earlier step
4. Appends synthetic in-memory steps chosen from the wording of the
   natural-language question (count / max / sort-limit / join)
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Optional

from ..core.catalog import SchemaCatalog
from ..core.plan_types import (
    SERVICE_IDENTIFIERS,
    CrossServiceReference,
    DistributedQueryPlan,
    QueryPlan,
    QueryStep,
)
from ..core.sql_text import extract_table_names, parameter_names, references_table, tokenize

logger = logging.getLogger(__name__)


# --- Question classification (word-start anchored, English and Russian) ---

_COUNT_QUERY = re.compile(r"\b(?:count|how many|сколько)", re.IGNORECASE)
_MAX_QUERY = re.compile(
    r"\b(?:max|maximum|highest|biggest|largest|most|самый большой|максимальный)",
    re.IGNORECASE,
)
_SORT_LIMIT_QUERY = re.compile(
    r"\b(?:sort|order|limit|top|best|sorted|сортировка|порядок|лучший|топ)",
    re.IGNORECASE,
)
_ASCENDING = re.compile(r"\b(?:asc|least|smallest|минимал|наимен)", re.IGNORECASE)

# --- Candidate fields ---

_AMOUNT_WORDS = re.compile(r"amount|sum|deposit|money|сумм|деньг|депозит", re.IGNORECASE)
_COUNT_WORDS = re.compile(r"count|number|quantity|число|количество", re.IGNORECASE)
_DATE_WORDS = re.compile(r"date|time|when|дат|время|когда", re.IGNORECASE)
_NAME_WORDS = re.compile(r"name|user|имя|пользовате", re.IGNORECASE)

DATE_FIELDS = ["createdAt", "created_at", "date"]

# --- Cross-service subquery rewrite ---

_USER_TABLE = re.compile(r"^users?$", re.IGNORECASE)
_TRANSACTION_TABLE = re.compile(r"^transactions?$", re.IGNORECASE)
_ID_SUBQUERY = re.compile(r"\bWHERE\s+\"?id\"?\s*=\s*(\()\s*SELECT\b", re.IGNORECASE)

JOIN_KEY = "id"
TOP_LIMIT = 3


def classify_query(query: str) -> str:
    """Aggregation strategy for a question: count, max, sort_limit or join."""
    if _COUNT_QUERY.search(query):
        return "count"
    if _MAX_QUERY.search(query):
        return "max"
    if _SORT_LIMIT_QUERY.search(query):
        return "sort_limit"
    return "join"


def max_candidate_fields(query: str) -> list[str]:
    """Fields that may hold the value a "maximum" question is about."""
    fields: list[str] = []
    if _AMOUNT_WORDS.search(query):
        fields.append("amount")
    if _COUNT_WORDS.search(query):
        fields.append("count")
    if _DATE_WORDS.search(query):
        fields.extend(DATE_FIELDS)
    return fields or ["amount", "count", "id"]


def sort_candidate_fields(query: str) -> tuple[list[str], bool]:
    """
    Sort fields for a sort/limit question.

    Returns:
        (fields, descending)
    """
    fields: list[str] = []
    if _AMOUNT_WORDS.search(query):
        fields.append("amount")
    if _DATE_WORDS.search(query):
        fields.extend(DATE_FIELDS)
    if _NAME_WORDS.search(query):
        fields.extend(["name", "username", "user_name"])
    descending = not _ASCENDING.search(query)
    return (fields or ["id", "amount", "createdAt", "created_at"]), descending


def find_closing_paren(sql: str, open_index: int) -> Optional[int]:
    """Index of the parenthesis closing the one at open_index, skipping literals."""
    depth = 0
    position = open_index
    for token in tokenize(sql[open_index:]):
        if token.kind == "other" and token.text == "(":
            depth += 1
        elif token.kind == "other" and token.text == ")":
            depth -= 1
            if depth == 0:
                return position
        position += len(token.text)
    return None


class DistributedPlanBuilder:
    """
    Builds DistributedQueryPlan graphs from flat plans.

    Usage:
        builder = DistributedPlanBuilder(catalog)
        plan = builder.build(flat_plan, "Show deposits and bets for yesterday")
    """

    def __init__(self, catalog: Optional[SchemaCatalog] = None, positional_name: str = "userId"):
        """
        Initialize builder.

        Args:
            catalog: Schema catalog for ownership checks and annotations (optional)
            positional_name: Parameter name recorded for ? and $N placeholders
        """
        self.catalog = catalog
        self.positional_name = positional_name

    def build(self, plan: QueryPlan, query: str) -> DistributedQueryPlan:
        """
        Convert a flat plan into a distributed plan.

        Args:
            plan: Flat per-service plan
            query: Original natural-language question

        Returns:
            DistributedQueryPlan with a fresh UUID4 id

        Raises:
            ValueError: If no step carries SQL
        """
        logger.info(
            f"Converting flat plan with {len(plan.steps)} steps "
            f"(services: {', '.join(plan.required_services)})"
        )

        leaves = self._create_leaf_steps(plan)
        if not leaves:
            raise ValueError("Flat plan has no steps with SQL queries")

        self._link_parameterized_steps(leaves)
        for index, step in enumerate(leaves):
            self._rewrite_cross_service_subquery(step, leaves[:index])
        if self.catalog:
            for step in leaves:
                self._annotate_cross_service_tables(step)

        steps = list(leaves)
        if len(leaves) == 1:
            final_step_id = leaves[0].id
        else:
            final_step_id = self._build_aggregation_steps(steps, [s.id for s in leaves], query)

        distributed = DistributedQueryPlan(
            id=str(uuid.uuid4()),
            steps=steps,
            required_services=list(plan.required_services),
            final_step_id=final_step_id,
        )
        logger.info(f"Built distributed plan {distributed.id}: {len(steps)} steps, final step {final_step_id}")
        return distributed

    # --- Leaf steps ---

    def _create_leaf_steps(self, plan: QueryPlan) -> list[QueryStep]:
        leaves: list[QueryStep] = []
        for flat in plan.steps:
            if not flat.sql_query:
                logger.debug(f"Skipping step without SQL for service {flat.service}")
                continue
            step_id = f"step_{len(leaves) + 1}"
            parameters = parameter_names(flat.sql_query, self.positional_name)
            if parameters:
                logger.info(f"Step {step_id} declares parameters: {', '.join(parameters)}")
            leaves.append(QueryStep(
                id=step_id,
                service=flat.service,
                description=flat.description,
                sql_query=flat.sql_query,
                parameters=parameters,
            ))
        return leaves

    def _link_parameterized_steps(self, leaves: list[QueryStep]) -> None:
        """
        A parameterized leaf depends on the leaf right before it.

        Parameters sourced from an earlier leaf, or from two leaves at once,
        are not traced.
        """
        for previous, step in zip(leaves, leaves[1:]):
            if step.parameters:
                logger.info(f"Step {step.id} has parameters, depending on {previous.id}")
                step.depends_on = [previous.id]

    def _rewrite_cross_service_subquery(self, step: QueryStep, earlier: list[QueryStep]) -> None:
        """
        Replace `WHERE id = (SELECT ... FROM Transaction ...)` with `WHERE id = $1`.

        Applies when the step reads a user table and the subquery reads a
        transaction table owned by another service; the step then depends on
        the latest earlier leaf of another service that reads that table.
        """
        sql = step.sql_query or ""
        if not any(_USER_TABLE.match(name) for name in extract_table_names(sql)):
            return
        match = _ID_SUBQUERY.search(sql)
        if not match:
            return
        open_index = match.start(1)
        close_index = find_closing_paren(sql, open_index)
        if close_index is None:
            return

        subquery = sql[open_index:close_index + 1]
        table = next((t for t in extract_table_names(subquery) if _TRANSACTION_TABLE.match(t)), None)
        if not table:
            return

        providers = [
            other for other in earlier
            if other.service != step.service and references_table(other.sql_query or "", table)
        ]
        foreign = bool(providers) or bool(
            self.catalog and self.catalog.foreign_owners(step.service, table)
        )
        if not foreign:
            return
        if not providers:
            logger.warning(
                f"Step {step.id} reads {table} from another service but no earlier step retrieves it"
            )
            return

        source = providers[-1]
        step.sql_query = sql[:open_index] + "$1" + sql[close_index + 1:]
        step.parameters = [self.positional_name]
        step.depends_on = [source.id]
        logger.info(f"Rewrote subquery on {table} in step {step.id} to use {self.positional_name} from {source.id}")

    def _annotate_cross_service_tables(self, step: QueryStep) -> None:
        references: list[CrossServiceReference] = []
        for table in extract_table_names(step.sql_query or ""):
            for owner in self.catalog.foreign_owners(step.service, table):
                if owner in SERVICE_IDENTIFIERS:
                    references.append(CrossServiceReference(table_name=table, service=owner))
        step.cross_service_references = references

    # --- Synthetic steps ---

    def _build_aggregation_steps(self, steps: list[QueryStep], leaf_ids: list[str], query: str) -> str:
        strategy = classify_query(query)
        logger.info(f"Aggregation strategy for question: {strategy}")

        if strategy == "count":
            return self._build_count_steps(steps, leaf_ids)
        if strategy == "max":
            return self._build_max_steps(steps, leaf_ids, max_candidate_fields(query))
        if strategy == "sort_limit":
            fields, descending = sort_candidate_fields(query)
            return self._build_sort_limit_steps(steps, leaf_ids, fields, descending)
        return self._build_join_steps(steps, leaf_ids)

    @staticmethod
    def _in_memory(step_id: str, description: str, operation: str, depends_on: list[str], args: list) -> QueryStep:
        return QueryStep(
            id=step_id,
            description=description,
            depends_on=depends_on,
            is_in_memory=True,
            operation=operation,
            args=args,
        )

    def _build_count_steps(self, steps: list[QueryStep], leaf_ids: list[str]) -> str:
        steps.append(self._in_memory(
            "aggregate_count",
            "Aggregate count results from all services",
            "aggregate",
            list(leaf_ids),
            ["count", "*"],
        ))
        return "aggregate_count"

    def _build_max_steps(self, steps: list[QueryStep], leaf_ids: list[str], fields: list[str]) -> str:
        max_ids: list[str] = []
        for index, leaf_id in enumerate(leaf_ids, start=1):
            for field in fields:
                step_id = f"max_{field}_{index}"
                steps.append(self._in_memory(
                    step_id,
                    f"Find maximum {field} in results from step {leaf_id}",
                    "aggregate",
                    [leaf_id],
                    ["max", field],
                ))
                max_ids.append(step_id)

        steps.append(self._in_memory(
            "global_max",
            "Find global maximum from all services",
            "aggregate",
            max_ids,
            ["max", "max"],
        ))
        steps.append(self._in_memory(
            "filter_by_max",
            "Filter results to records with the maximum value",
            "filter",
            [*leaf_ids, "global_max"],
            [fields[0], "=", "${max}"],
        ))
        return "filter_by_max"

    def _build_sort_limit_steps(
        self,
        steps: list[QueryStep],
        leaf_ids: list[str],
        fields: list[str],
        descending: bool,
    ) -> str:
        direction = "desc" if descending else "asc"
        steps.append(self._in_memory(
            "join_all",
            "Combine results from all services",
            "join",
            list(leaf_ids),
            [JOIN_KEY],
        ))

        current = "join_all"
        for field in fields:
            step_id = f"sort_by_{field}"
            steps.append(self._in_memory(
                step_id,
                f"Sort results by {field} {direction}",
                "sort",
                [current],
                [field, direction],
            ))
            current = step_id

        limit_id = f"limit_{fields[0]}"
        steps.append(self._in_memory(
            limit_id,
            f"Take top {TOP_LIMIT} rows from {current}",
            "limit",
            [current],
            [TOP_LIMIT],
        ))
        return limit_id

    def _build_join_steps(self, steps: list[QueryStep], leaf_ids: list[str]) -> str:
        current = leaf_ids[0]
        for index, leaf_id in enumerate(leaf_ids[1:], start=1):
            step_id = f"join_{index}"
            steps.append(self._in_memory(
                step_id,
                f"Join results from step {current} and {leaf_id}",
                "join",
                [current, leaf_id],
                [JOIN_KEY],
            ))
            current = step_id
        return current
