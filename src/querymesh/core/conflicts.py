"""
Conflict detector - finds tables that exist under the same name in several services.

A plan that reads such a table is ambiguous: the upstream planner may have
sent the SQL to the wrong service. The detector rates that risk and suggests
which owner was most likely meant.

Usage:
    detector = ConflictDetector(catalog)
    result = detector.detect_plan_conflicts(plan)
    if result.error_probability == "high":
        ...
"""

from __future__ import annotations

import logging
from typing import Optional

from .catalog import SchemaCatalog, TableSchema
from .plan_types import ConflictDetectionResult, ErrorProbability, QueryPlan, TableConflict
from .sql_text import extract_table_names

logger = logging.getLogger(__name__)


class ConflictDetector:
    """
    Detects duplicated table names across services.

    Table names are matched exactly as written in the catalog and the SQL.
    """

    def __init__(self, catalog: SchemaCatalog):
        self.catalog = catalog
        self._table_services: dict[str, list[str]] = {}
        self._table_schemas: dict[str, dict[str, TableSchema]] = {}
        self._build_table_maps()
        logger.info(f"ConflictDetector initialized with {len(catalog.services)} database services")

    def _build_table_maps(self) -> None:
        for db in self.catalog.all_databases():
            for table in db.tables:
                services = self._table_services.setdefault(table.name, [])
                if db.service not in services:
                    services.append(db.service)
                self._table_schemas.setdefault(table.name, {})[db.service] = table

        logger.debug(f"Built table maps with {len(self._table_services)} unique table names")

    def detect_table_conflicts(self, table_name: str) -> Optional[TableConflict]:
        """
        Check a single table name.

        Returns:
            TableConflict listing every owner, or None if the table has
            zero or one owner
        """
        services = self._table_services.get(table_name)
        if not services or len(services) <= 1:
            return None

        logger.info(f'Detected conflict for table "{table_name}" across services: {", ".join(services)}')
        return TableConflict(
            table_name=table_name,
            services=list(services),
            schemas=dict(self._table_schemas.get(table_name, {})),
        )

    def detect_plan_conflicts(self, plan: QueryPlan) -> ConflictDetectionResult:
        """Check every table read by a flat plan and rate the risk."""
        tables_in_plan: list[str] = []
        for step in plan.steps:
            if not step.sql_query:
                continue
            for name in extract_table_names(step.sql_query):
                if name not in tables_in_plan:
                    tables_in_plan.append(name)

        conflicts = [
            conflict
            for conflict in (self.detect_table_conflicts(name) for name in tables_in_plan)
            if conflict
        ]

        if not conflicts:
            return ConflictDetectionResult(conflicts=[], has_conflicts=False, error_probability="low")

        required = set(plan.required_services)
        probability: ErrorProbability = "medium"
        if any(len(self._required_owners(c, required)) > 1 for c in conflicts):
            probability = "high"

        return ConflictDetectionResult(
            conflicts=conflicts,
            has_conflicts=True,
            suggested_resolution=self._build_suggestion(conflicts, required),
            error_probability=probability,
        )

    # --- Helpers ---

    @staticmethod
    def _required_owners(conflict: TableConflict, required: set[str]) -> list[str]:
        return [s for s in conflict.services if s in required]

    def _build_suggestion(self, conflicts: list[TableConflict], required: set[str]) -> str:
        lines = ["Conflict resolution suggestions:", ""]
        for conflict in conflicts:
            lines.append(
                f'* Table "{conflict.table_name}" exists in several services: '
                f'{", ".join(conflict.services)}.'
            )
            if not self._schemas_match(list(conflict.schemas.values())):
                lines.append("  - The table schemas differ, which raises the risk of a wrong query.")
            lines.append("  - Name the service explicitly or use fully qualified table names.")
            service = self._suggest_service(conflict, required)
            if service:
                lines.append(
                    f'  - Based on the plan, the "{conflict.table_name}" table of '
                    f'service "{service}" is the most likely target.'
                )
            lines.append("")
        return "\n".join(lines)

    @staticmethod
    def _schemas_match(schemas: list[TableSchema]) -> bool:
        """True if every schema has exactly the same column names."""
        if len(schemas) <= 1:
            return True
        reference = schemas[0].column_names()
        return all(schema.column_names() == reference for schema in schemas[1:])

    def _suggest_service(self, conflict: TableConflict, required: set[str]) -> Optional[str]:
        owners = self._required_owners(conflict, required)
        if owners:
            return owners[0]
        return conflict.services[0] if conflict.services else None
