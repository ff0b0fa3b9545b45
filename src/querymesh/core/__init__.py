"""
Core: plan models, schema catalog, SQL text utilities and conflict detection.
"""

from .catalog import (
    ColumnSchema,
    DatabaseSchema,
    SchemaCatalog,
    TableSchema,
    load_catalog,
)
from .conflicts import ConflictDetector
from .errors import (
    ConfigError,
    CycleError,
    DependencyUnmetError,
    ParameterResolutionWarning,
    QueryMeshError,
    ServiceError,
    StepExecutionError,
    ValidationError,
)
from .plan_types import (
    ConflictDetectionResult,
    CrossServiceColumn,
    CrossServiceReference,
    DistributedQueryPlan,
    ExecutionResult,
    FlatStep,
    QueryPlan,
    QueryStep,
    Row,
    TableConflict,
)

__all__ = [
    # Catalog
    "ColumnSchema",
    "DatabaseSchema",
    "SchemaCatalog",
    "TableSchema",
    "load_catalog",
    # Conflicts
    "ConflictDetector",
    # Errors
    "ConfigError",
    "CycleError",
    "DependencyUnmetError",
    "ParameterResolutionWarning",
    "QueryMeshError",
    "ServiceError",
    "StepExecutionError",
    "ValidationError",
    # Plan types
    "ConflictDetectionResult",
    "CrossServiceColumn",
    "CrossServiceReference",
    "DistributedQueryPlan",
    "ExecutionResult",
    "FlatStep",
    "QueryPlan",
    "QueryStep",
    "Row",
    "TableConflict",
]
