"""
Custom exceptions for the querymesh system.
"""

from __future__ import annotations

from typing import Optional


class QueryMeshError(Exception):
    """Base exception for all querymesh errors."""
    pass


class ValidationError(QueryMeshError):
    """Raised when a distributed plan fails pre-execution validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Validation failed: {errors}")


class CycleError(QueryMeshError):
    """Raised when the step dependency graph contains a cycle."""

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Circular dependency detected for step {step_id}")


class DependencyUnmetError(QueryMeshError):
    """Raised when a step is reached before all of its dependencies executed."""

    def __init__(self, step_id: str, missing: list[str]):
        self.step_id = step_id
        self.missing = missing
        super().__init__(
            f"Dependencies not met for step {step_id}. Missing: {', '.join(missing)}"
        )


class StepExecutionError(QueryMeshError):
    """Raised when a single step (SQL or in-memory) fails."""

    def __init__(self, message: str, step_id: Optional[str] = None):
        self.step_id = step_id
        super().__init__(f"Execution failed{f' at step {step_id}' if step_id else ''}: {message}")


class ServiceError(QueryMeshError):
    """Raised when a database service call fails."""

    def __init__(self, service: str, status_code: int, message: str):
        self.service = service
        self.status_code = status_code
        super().__init__(f"Service '{service}' returned {status_code}: {message}")


class ConfigError(QueryMeshError):
    """Raised when configuration or catalog files are invalid."""
    pass


class ParameterResolutionWarning(UserWarning):
    """Issued when a declared SQL parameter has no value in dependency results."""
    pass
