"""
Distributed query processor - executes DistributedQueryPlans.

Handles:
- Pre-run validation (plan structure and service boundaries)
- Topological sorting of steps by dependencies, with cycle detection
- Executing SQL steps via a SqlExecutor and in-memory steps via operators
- Substituting dependency values into SQL parameters
- Caching step results and deciding which failures abort the run

Steps run strictly one at a time in topological order.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional, Sequence

from ..core.catalog import SchemaCatalog
from ..core.errors import (
    CycleError,
    DependencyUnmetError,
    QueryMeshError,
    StepExecutionError,
    ValidationError,
)
from ..core.plan_types import DistributedQueryPlan, ExecutionResult, QueryStep, Row
from ..core.sql_text import (
    cte_names,
    extract_table_names,
    fix_identifier_case,
    mentions_identifier,
    quote_identifiers,
    references_table,
)
from ..messaging.result_store import InMemoryResultStore, ResultStore, result_key
from .operators import StepInputs, execute_operation
from .parameters import substitute_parameters
from .sql_executor import SqlExecutor

logger = logging.getLogger(__name__)

DEFAULT_CASE_SENSITIVE_IDENTIFIERS = ("userId",)


class DistributedQueryProcessor:
    """
    Executes a distributed plan against backend services.

    Usage:
        processor = DistributedQueryProcessor(executor, store, catalog)
        result = await processor.execute(plan)
        if result.succeeded:
            rows = result.final_results
    """

    def __init__(
        self,
        executor: SqlExecutor,
        store: Optional[ResultStore] = None,
        catalog: Optional[SchemaCatalog] = None,
        case_sensitive_identifiers: Sequence[str] = DEFAULT_CASE_SENSITIVE_IDENTIFIERS,
    ):
        """
        Initialize processor.

        Args:
            executor: Runs SQL against a service
            store: Result cache (defaults to an in-process store)
            catalog: Schema catalog for boundary checks and identifier casing
            case_sensitive_identifiers: Bare identifiers to double-quote in SQL
        """
        self.executor = executor
        self.store = store if store is not None else InMemoryResultStore()
        self.catalog = catalog
        self.case_sensitive_identifiers = tuple(case_sensitive_identifiers)

    # =========================================================================
    # Entry point
    # =========================================================================

    async def execute(self, plan: DistributedQueryPlan) -> ExecutionResult:
        """
        Execute all steps and return the collected results.

        Args:
            plan: Distributed plan to run

        Returns:
            ExecutionResult; status "failed" with a "global" error when a
            critical step fails

        Raises:
            ValidationError: If the plan is malformed or crosses service boundaries
            CycleError: If the dependency graph has a cycle
        """
        result = ExecutionResult(plan_id=plan.id, status="initializing")
        logger.info(
            f"Starting plan {plan.id}: steps {', '.join(s.id for s in plan.steps)}, "
            f"final step {plan.final_step_id}"
        )

        await self._prepare_store(plan.id)

        self.validate(plan)
        ordered = self.topological_sort(plan.steps)
        result.status = "scheduled"
        logger.info(f"Execution order: {' -> '.join(s.id for s in ordered)}")

        results: dict[str, list[Row]] = {}
        result.status = "executing"
        try:
            for step in ordered:
                await self._run_step(plan, step, results, result)
        except QueryMeshError as e:
            message = f"Error executing distributed query plan: {e}"
            logger.error(message)
            result.status = "failed"
            result.final_results = []
            result.intermediate_results = results
            result.errors["global"] = message
            return result

        result.intermediate_results = results
        result.final_results = await self._dependency_rows(plan.id, plan.final_step_id, results)
        result.status = "completed"
        logger.info(
            f"Plan {plan.id} completed: {len(result.executed_steps)} steps executed, "
            f"{len(result.final_results)} final rows"
        )
        return result

    def create_plan(
        self,
        steps: list[QueryStep],
        required_services: Sequence[str] = (),
        final_step_id: Optional[str] = None,
    ) -> DistributedQueryPlan:
        """
        Wrap hand-built steps into a plan; the final step defaults to the last one.

        Raises:
            ValueError: If no steps are given
        """
        if not steps:
            raise ValueError("No steps provided for query plan")
        return DistributedQueryPlan(
            id=str(uuid.uuid4()),
            steps=list(steps),
            required_services=list(required_services),
            final_step_id=final_step_id or steps[-1].id,
        )

    # =========================================================================
    # Validation and scheduling
    # =========================================================================

    def validate(self, plan: DistributedQueryPlan) -> None:
        """
        Check plan structure, then service boundaries.

        Raises:
            ValidationError: With every problem found
        """
        errors = self._structural_errors(plan)
        if not errors:
            errors = self._boundary_errors(plan)
        if errors:
            for error in errors:
                logger.error(f"Plan validation failed: {error}")
            raise ValidationError(errors)

    def _structural_errors(self, plan: DistributedQueryPlan) -> list[str]:
        errors: list[str] = []
        ids: set[str] = set()
        for step in plan.steps:
            if step.id in ids:
                errors.append(f"Duplicate step id {step.id}")
            ids.add(step.id)

        for step in plan.steps:
            for dep in step.depends_on:
                if dep not in ids:
                    errors.append(f"Step {step.id} depends on unknown step {dep}")
            if step.is_in_memory and step.sql_query:
                errors.append(f"In-memory step {step.id} must not carry SQL")
            if not step.is_in_memory and step.sql_query and not step.service:
                errors.append(f"SQL step {step.id} has no service")

        if plan.final_step_id not in ids:
            errors.append(f"Final step {plan.final_step_id} not found in plan")
        return errors

    def _table_references(self, step: QueryStep) -> list[tuple[str, str]]:
        """Foreign (table, service) pairs from annotations and the catalog."""
        references = [(ref.table_name, ref.service) for ref in step.cross_service_references]
        if self.catalog and step.service:
            for table in extract_table_names(step.sql_query or ""):
                for owner in self.catalog.foreign_owners(step.service, table):
                    if (table, owner) not in references:
                        references.append((table, owner))
        return references

    def _boundary_errors(self, plan: DistributedQueryPlan) -> list[str]:
        """
        A SQL step may use another service's data only through a dependency.

        Column annotations require a dependency on a step of the source
        service that reads the source table, plus the column declared as a
        parameter. Reading another service's table directly is never allowed.
        """
        errors: list[str] = []
        for step in plan.steps:
            if step.is_in_memory or not step.sql_query:
                continue
            sql = step.sql_query

            for column in step.cross_service_columns:
                if not mentions_identifier(sql, column.column_name):
                    continue
                has_source = any(
                    other.id in step.depends_on
                    and other.service == column.source_service
                    and other.sql_query
                    and column.source_table in other.sql_query
                    for other in plan.steps
                )
                if not has_source:
                    errors.append(
                        f"Step {step.id} directly references column {column.column_name} from service "
                        f"{column.source_service} without a dependent step retrieving it"
                    )
                elif not any(p.lower() == column.column_name.lower() for p in step.parameters):
                    errors.append(
                        f"Step {step.id} uses cross-service column {column.column_name} "
                        f"without listing it as a parameter"
                    )

            for table, service in self._table_references(step):
                if service != step.service and references_table(sql, table):
                    errors.append(
                        f"Step {step.id} directly references table {table} from service {service}"
                    )
        return errors

    def topological_sort(self, steps: list[QueryStep]) -> list[QueryStep]:
        """
        Sort steps by dependency order (dependencies before dependents).

        Raises:
            CycleError: If a step is reached again while its own
                dependencies are being visited
        """
        step_map = {step.id: step for step in steps}
        visited: set[str] = set()
        visiting: set[str] = set()
        result: list[QueryStep] = []

        def visit(step_id: str):
            if step_id in visiting:
                raise CycleError(step_id)
            if step_id in visited:
                return
            visiting.add(step_id)
            step = step_map.get(step_id)
            for dep in step.depends_on if step else []:
                visit(dep)
            visiting.discard(step_id)
            visited.add(step_id)
            if step:
                result.append(step)

        for step in steps:
            visit(step.id)

        return result

    @staticmethod
    def is_step_critical(step_id: str, plan: DistributedQueryPlan) -> bool:
        """The final step, and any step another step depends on, is critical."""
        if step_id == plan.final_step_id:
            return True
        return any(step_id in step.depends_on for step in plan.steps)

    # =========================================================================
    # Step execution
    # =========================================================================

    async def _run_step(
        self,
        plan: DistributedQueryPlan,
        step: QueryStep,
        results: dict[str, list[Row]],
        result: ExecutionResult,
    ) -> None:
        """Execute one step and record its outcome; raise to abort the run."""
        missing = [dep for dep in step.depends_on if dep not in result.executed_steps]
        if missing:
            raise DependencyUnmetError(step.id, missing)

        logger.info(
            f"Executing step {step.id} ({step.operation if step.is_in_memory else step.service}): "
            f"{step.description}"
        )
        started = time.perf_counter()
        try:
            rows = await self._execute_step(plan, step, results, result)
        except Exception as e:
            error = e if isinstance(e, StepExecutionError) else StepExecutionError(str(e), step_id=step.id)
            result.errors[step.id] = str(error)
            logger.error(str(error))
            if self.is_step_critical(step.id, plan):
                logger.error(f"Critical step {step.id} failed, aborting plan execution")
                raise error
            logger.warning(f"Non-critical step {step.id} failed, continuing with plan execution")
            return

        result.durations_ms[step.id] = round((time.perf_counter() - started) * 1000, 3)
        await self._store_rows(result_key(plan.id, step.id), rows)
        results[step.id] = rows
        result.executed_steps.append(step.id)
        logger.info(f"Step {step.id} returned {len(rows)} rows in {result.durations_ms[step.id]} ms")

    async def _execute_step(
        self,
        plan: DistributedQueryPlan,
        step: QueryStep,
        results: dict[str, list[Row]],
        result: ExecutionResult,
    ) -> list[Row]:
        inputs: StepInputs = [
            (dep, await self._dependency_rows(plan.id, dep, results))
            for dep in step.depends_on
        ]

        if step.is_in_memory:
            return execute_operation(step, inputs)

        if not step.sql_query:
            logger.warning(f"Step {step.id} has neither SQL nor an in-memory operation")
            return []

        sql = self.normalize_sql(step)
        self.check_tables_exist(step, sql)
        sql, unresolved = substitute_parameters(sql, step.parameters, inputs, step_id=step.id)
        if unresolved:
            result.warnings[step.id] = [f"Unresolved parameter {name}" for name in unresolved]

        logger.debug(f"SQL for step {step.id} on {step.service}: {sql}")
        return await self.executor.execute(step.service, sql)

    def normalize_sql(self, step: QueryStep) -> str:
        """
        Identifier normalization before parameter substitution.

        Quotes bare case-sensitive identifiers (userId -> "userId") and
        re-cases quoted identifiers to the catalog spelling of the step's service.
        """
        sql = quote_identifiers(step.sql_query or "", self.case_sensitive_identifiers)
        if self.catalog and step.service:
            sql = fix_identifier_case(sql, self.catalog.known_identifiers(step.service))
        if sql != step.sql_query:
            logger.debug(f"Normalized identifiers in step {step.id}")
        return sql

    def check_tables_exist(self, step: QueryStep, sql: str) -> None:
        """
        Every FROM/JOIN table must exist in the catalog schema of the step's service.

        Skipped when there is no catalog or the catalog does not describe the service.

        Raises:
            StepExecutionError: On the first unknown table
        """
        if not self.catalog or not step.service:
            return
        if self.catalog.get_database(step.service) is None:
            logger.warning(f"No schema information for service {step.service}, skipping table check")
            return

        local = {name.lower() for name in cte_names(sql)}
        for table in extract_table_names(sql):
            if table.lower() in local:
                continue
            if not self.catalog.has_table(step.service, table):
                raise StepExecutionError(
                    f'Table "{table}" not found in service "{step.service}" schema',
                    step_id=step.id,
                )

    # =========================================================================
    # Result store
    # =========================================================================

    async def _prepare_store(self, plan_id: str) -> None:
        try:
            if not self.store.is_connected():
                await self.store.connect()
        except Exception as e:
            logger.warning(f"Could not connect result store: {e}. Continuing with in-run results only.")

        try:
            await self.store.clear(plan_id)
        except Exception as e:
            logger.warning(f"Failed to clear previous results for plan {plan_id}: {e}")

    async def _store_rows(self, key: str, rows: list[Row]) -> None:
        try:
            await self.store.store(key, rows)
        except Exception as e:
            logger.warning(f"Failed to cache results for {key}: {e}")

    async def _dependency_rows(self, plan_id: str, step_id: str, results: dict[str, list[Row]]) -> list[Row]:
        """In-run rows first, then the cache; a miss is an empty result."""
        if step_id in results:
            return results[step_id]
        try:
            return await self.store.get(result_key(plan_id, step_id))
        except Exception as e:
            logger.warning(f"Failed to read cached results for {step_id}: {e}")
            return []
