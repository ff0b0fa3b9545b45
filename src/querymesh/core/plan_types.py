"""
Pydantic models for query plans and execution results.

Upstream planners send flat per-service plans (QueryPlan). The plan builder
turns them into DistributedQueryPlan graphs that the processor executes.
Every model accepts both camelCase aliases and snake_case field names.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ServiceIdentifier = Literal[
    "wallet",
    "bets-history",
    "user-activities",
    "financial-history",
    "affiliate",
    "casino-st8",
    "geolocation",
    "kyc",
    "notification",
    "optimove",
    "pam",
    "payment-gateway",
    "traffic",
]

SERVICE_IDENTIFIERS: tuple[str, ...] = get_args(ServiceIdentifier)

InMemoryOperation = Literal[
    "join",
    "filter",
    "group",
    "sort",
    "aggregate",
    "limit",
    "map",
    "reduce",
]

ErrorProbability = Literal["low", "medium", "high"]

ExecutionStatus = Literal["initializing", "scheduled", "executing", "completed", "failed"]

Row = dict[str, Any]


class PlanModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Flat plan (from the upstream planner) ---

class FlatStep(PlanModel):
    """
    One per-service step of a flat plan.

    Example:
        {"service": "wallet", "description": "Deposits", "sqlQuery": "SELECT ..."}
    """
    service: ServiceIdentifier
    description: str = ""
    sql_query: Optional[str] = None


class QueryPlan(PlanModel):
    """Flat plan: ordered steps, no dependency information."""
    steps: list[FlatStep] = Field(default_factory=list)
    required_services: list[ServiceIdentifier] = Field(default_factory=list)


# --- Distributed plan ---

class CrossServiceReference(PlanModel):
    """A table read by a step that belongs to another service."""
    table_name: str
    service: ServiceIdentifier


class CrossServiceColumn(PlanModel):
    """A column used by a step that is sourced from another service's table."""
    column_name: str
    source_service: ServiceIdentifier
    source_table: str


class QueryStep(PlanModel):
    """
    A single node of the distributed execution graph.

    SQL steps carry sql_query and declared parameter names.
    In-memory steps carry an operation and its args, never SQL.
    """
    id: str
    service: Optional[ServiceIdentifier] = None  # None for in-memory steps
    description: str = ""
    sql_query: Optional[str] = None
    depends_on: list[str] = Field(default_factory=list)
    parameters: list[str] = Field(default_factory=list)  # Names resolved from dependency rows
    is_in_memory: bool = False
    operation: Optional[InMemoryOperation] = None
    args: list[Any] = Field(default_factory=list)  # Operator arguments (in-memory only)
    cross_service_references: list[CrossServiceReference] = Field(default_factory=list)
    cross_service_columns: list[CrossServiceColumn] = Field(default_factory=list)


class DistributedQueryPlan(PlanModel):
    """Dependency graph of steps plus the id of the step whose rows are the answer."""
    id: str
    steps: list[QueryStep]
    required_services: list[ServiceIdentifier] = Field(default_factory=list)
    final_step_id: str

    def get_step(self, step_id: str) -> Optional[QueryStep]:
        """Get step by id."""
        return next((s for s in self.steps if s.id == step_id), None)


# --- Conflict detection ---

class TableConflict(PlanModel):
    """A table name that exists in more than one service's schema."""
    table_name: str
    services: list[str]
    schemas: dict[str, Any] = Field(default_factory=dict)  # service -> TableSchema


class ConflictDetectionResult(PlanModel):
    """Outcome of checking a flat plan for ambiguous table names."""
    conflicts: list[TableConflict] = Field(default_factory=list)
    has_conflicts: bool = False
    suggested_resolution: Optional[str] = None
    error_probability: ErrorProbability = "low"


# --- Execution ---

class ExecutionResult(PlanModel):
    """Result of executing a distributed plan."""
    plan_id: str
    status: ExecutionStatus = "initializing"
    final_results: list[Row] = Field(default_factory=list)
    intermediate_results: dict[str, list[Row]] = Field(default_factory=dict)
    executed_steps: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)  # step_id | "global" -> message
    warnings: dict[str, list[str]] = Field(default_factory=dict)
    durations_ms: dict[str, float] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"
