"""
querymesh - distributed SQL execution core for independently-owned services.

Answers a question that spans several databases without cross-service joins:
- Detects tables that exist under the same name in several services
- Turns a flat per-service SQL plan into a dependency graph with
  in-memory join / filter / sort / limit / aggregate steps
- Executes the graph, feeding values from earlier steps into later SQL

Usage:
    from querymesh import QueryMesh

    async with QueryMesh.from_file("querymesh.yaml") as mesh:
        result = await mesh.run(flat_plan, "How many deposits were made yesterday?")
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import CacheConfig, QueryMeshConfig, ServiceConfig, load_config
from .core import (
    ConfigError,
    ConflictDetectionResult,
    ConflictDetector,
    CrossServiceColumn,
    CrossServiceReference,
    CycleError,
    DependencyUnmetError,
    DistributedQueryPlan,
    ExecutionResult,
    FlatStep,
    ParameterResolutionWarning,
    QueryMeshError,
    QueryPlan,
    QueryStep,
    SchemaCatalog,
    ServiceError,
    StepExecutionError,
    TableConflict,
    ValidationError,
    load_catalog,
)
from .mesh import QueryMesh
from .messaging import InMemoryResultStore, RedisResultStore, ResultStore
from .runtime import (
    ConnectionPool,
    DistributedPlanBuilder,
    DistributedQueryProcessor,
    HttpSqlExecutor,
    PooledSqlExecutor,
    RoutingSqlExecutor,
    SqlExecutor,
)

__all__ = [
    # Facade
    "QueryMesh",
    # Config
    "QueryMeshConfig",
    "ServiceConfig",
    "CacheConfig",
    "load_config",
    # Catalog
    "SchemaCatalog",
    "load_catalog",
    # Plan types
    "FlatStep",
    "QueryPlan",
    "QueryStep",
    "DistributedQueryPlan",
    "CrossServiceReference",
    "CrossServiceColumn",
    "ExecutionResult",
    "TableConflict",
    "ConflictDetectionResult",
    # Components
    "ConflictDetector",
    "DistributedPlanBuilder",
    "DistributedQueryProcessor",
    # Collaborators
    "SqlExecutor",
    "ConnectionPool",
    "PooledSqlExecutor",
    "HttpSqlExecutor",
    "RoutingSqlExecutor",
    "ResultStore",
    "RedisResultStore",
    "InMemoryResultStore",
    # Errors
    "QueryMeshError",
    "ValidationError",
    "CycleError",
    "DependencyUnmetError",
    "StepExecutionError",
    "ServiceError",
    "ConfigError",
    "ParameterResolutionWarning",
]
