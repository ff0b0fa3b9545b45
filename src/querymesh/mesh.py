"""
QueryMesh - main entry point wiring catalog, builder, processor and collaborators.

Usage:
    from querymesh import QueryMesh

    async with QueryMesh.from_file("querymesh.yaml") as mesh:
        result = await mesh.run(flat_plan, "Show deposits and bets for yesterday")
        print(result.final_results)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Union

from .config import QueryMeshConfig, load_config
from .core.catalog import SchemaCatalog, load_catalog
from .core.conflicts import ConflictDetector
from .core.errors import ConfigError
from .core.plan_types import ConflictDetectionResult, DistributedQueryPlan, ExecutionResult, QueryPlan
from .messaging.result_store import InMemoryResultStore, RedisResultStore, ResultStore
from .runtime.plan_builder import DistributedPlanBuilder
from .runtime.processor import DistributedQueryProcessor
from .runtime.sql_executor import (
    ConnectionPool,
    HttpSqlExecutor,
    PooledSqlExecutor,
    RoutingSqlExecutor,
    SqlExecutor,
)

logger = logging.getLogger(__name__)

PlanInput = Union[QueryPlan, dict[str, Any]]


def build_executor(config: QueryMeshConfig) -> SqlExecutor:
    """
    SQL executor for the configured services.

    Services with a DSN go through a ConnectionPool, services with only a
    URL go over HTTP.
    """
    dsns = config.dsns
    urls = {name: url for name, url in config.urls.items() if name not in dsns}

    pooled = PooledSqlExecutor(ConnectionPool(dsns, timeout=config.sql_timeout)) if dsns else None
    http = HttpSqlExecutor(urls, timeout=config.sql_timeout) if urls else None

    if pooled and not http:
        return pooled
    if http and not pooled:
        return http

    routes: dict[str, SqlExecutor] = {}
    for name in dsns:
        routes[name] = pooled
    for name in urls:
        routes[name] = http
    return RoutingSqlExecutor(routes)


def build_store(config: QueryMeshConfig) -> ResultStore:
    """Redis store when a Redis URL is configured, in-process store otherwise."""
    if config.cache.redis_url:
        return RedisResultStore(config.cache.redis_url, prefix=config.cache.prefix, ttl=config.cache.ttl)
    return InMemoryResultStore(ttl=config.cache.ttl)


class QueryMesh:
    """
    Facade over the distributed query execution core.

    Features:
    - Checks flat plans for ambiguous tables (conflicts)
    - Builds distributed plans from flat plans (build)
    - Executes distributed plans (execute) or both in one go (run)
    """

    def __init__(
        self,
        config: Optional[QueryMeshConfig] = None,
        *,
        catalog: Optional[SchemaCatalog] = None,
        executor: Optional[SqlExecutor] = None,
        store: Optional[ResultStore] = None,
    ):
        """
        Initialize mesh.

        Args:
            config: Configuration (default: empty config)
            catalog: Schema catalog (default: loaded from config.catalog, if set)
            executor: SQL executor (default: built from configured services)
            store: Result store (default: built from cache config)
        """
        self.config = config or QueryMeshConfig()

        if catalog is None and self.config.catalog:
            catalog = load_catalog(self.config.catalog)
        self.catalog = catalog

        self.executor = executor or build_executor(self.config)
        self.store = store or build_store(self.config)

        self.detector = ConflictDetector(catalog) if catalog else None
        self.builder = DistributedPlanBuilder(catalog)
        self.processor = DistributedQueryProcessor(
            self.executor,
            self.store,
            catalog,
            case_sensitive_identifiers=self.config.case_sensitive_identifiers,
        )

    @classmethod
    def from_file(cls, path: Path | str = "querymesh.yaml", **kwargs) -> QueryMesh:
        """
        Create mesh from a YAML config file.

        Raises:
            ConfigError: If the file does not exist or is invalid
        """
        config = load_config(path)
        if config is None:
            raise ConfigError(f"Configuration file not found: {path}")
        config.validate()
        return cls(config, **kwargs)

    @staticmethod
    def _flat_plan(plan: PlanInput) -> QueryPlan:
        if isinstance(plan, QueryPlan):
            return plan
        return QueryPlan.model_validate(plan)

    def conflicts(self, plan: PlanInput) -> ConflictDetectionResult:
        """Check a flat plan for tables owned by several services."""
        if self.detector is None:
            logger.warning("No schema catalog configured, skipping conflict detection")
            return ConflictDetectionResult()
        return self.detector.detect_plan_conflicts(self._flat_plan(plan))

    def build(self, plan: PlanInput, query: str) -> DistributedQueryPlan:
        """Build a distributed plan from a flat plan and the original question."""
        return self.builder.build(self._flat_plan(plan), query)

    async def execute(self, plan: DistributedQueryPlan) -> ExecutionResult:
        return await self.processor.execute(plan)

    async def run(self, plan: PlanInput, query: str) -> ExecutionResult:
        """
        Check conflicts, build and execute.

        High conflict risk is logged, not fatal.
        """
        flat = self._flat_plan(plan)
        detection = self.conflicts(flat)
        if detection.has_conflicts:
            logger.warning(
                f"Plan reads tables owned by several services "
                f"(risk: {detection.error_probability}): "
                f"{', '.join(c.table_name for c in detection.conflicts)}"
            )
        distributed = self.build(flat, query)
        return await self.execute(distributed)

    async def close(self):
        """Release database engines, HTTP clients and the cache connection."""
        close = getattr(self.executor, "close", None)
        if close is not None:
            await close()
        try:
            await self.store.disconnect()
        except Exception as e:
            logger.warning(f"Error disconnecting result store: {e}")

    async def __aenter__(self) -> QueryMesh:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
