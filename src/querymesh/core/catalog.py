"""
Schema catalog - read-only knowledge about every service's tables.

The catalog is consumed by the conflict detector, the plan builder (for
cross-service annotations) and the processor (boundary validation and
identifier case fixing).

Usage:
    catalog = load_catalog("catalog.yaml")
    catalog.owners("Transaction")          # ["wallet", "financial-history"]
    catalog.get_table("wallet", "transaction")
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ConfigError

logger = logging.getLogger(__name__)


class CatalogModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ColumnReference(CatalogModel):
    table: str
    column: str


class ColumnSchema(CatalogModel):
    """Column description with key/constraint flags."""
    name: str
    type: str = ""
    description: str = ""
    is_primary_key: bool = False
    is_unique: bool = False
    is_nullable: bool = False
    is_foreign_key: bool = False
    references: Optional[ColumnReference] = None


class TableRelation(CatalogModel):
    type: str  # oneToOne | oneToMany | manyToOne | manyToMany
    table: str
    source_column: str
    target_column: str
    description: str = ""


class ExampleQuery(CatalogModel):
    description: str = ""
    query: str


class TableSchema(CatalogModel):
    """Table description owned by a single service."""
    name: str
    description: str = ""
    columns: list[ColumnSchema] = Field(default_factory=list)
    relations: list[TableRelation] = Field(default_factory=list)
    examples: list[ExampleQuery] = Field(default_factory=list)

    def column_names(self) -> set[str]:
        return {col.name for col in self.columns}


class DatabaseSchema(CatalogModel):
    """All tables of one service's database."""
    name: str
    service: str
    description: str = ""
    tables: list[TableSchema] = Field(default_factory=list)
    common_queries: list[ExampleQuery] = Field(default_factory=list)


class SchemaCatalog:
    """
    Cross-service schema knowledge.

    Lookups by table name are case-insensitive; the catalog keeps the
    original casing for identifier fixing.
    """

    def __init__(self, databases: Optional[list[DatabaseSchema]] = None):
        self._databases: dict[str, DatabaseSchema] = {}
        self._tables: dict[tuple[str, str], TableSchema] = {}
        for db in databases or []:
            self._databases[db.service] = db
            for table in db.tables:
                self._tables[(db.service, table.name.lower())] = table

    @classmethod
    def from_descriptions(cls, descriptions: list[dict[str, Any]]) -> SchemaCatalog:
        """Build catalog from raw description dicts (camelCase or snake_case)."""
        try:
            databases = [DatabaseSchema.model_validate(d) for d in descriptions]
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid schema catalog: {e}") from e
        return cls(databases)

    @property
    def services(self) -> list[str]:
        return list(self._databases)

    def all_databases(self) -> list[DatabaseSchema]:
        return list(self._databases.values())

    def get_database(self, service: str) -> Optional[DatabaseSchema]:
        return self._databases.get(service)

    def get_table(self, service: str, table_name: str) -> Optional[TableSchema]:
        return self._tables.get((service, table_name.lower()))

    def has_table(self, service: str, table_name: str) -> bool:
        return (service, table_name.lower()) in self._tables

    def owners(self, table_name: str) -> list[str]:
        """Services whose schema contains the table, in catalog order."""
        key = table_name.lower()
        return [service for (service, name) in self._tables if name == key]

    def foreign_owners(self, service: str, table_name: str) -> list[str]:
        """
        Other services owning a table that `service` itself does not own.

        Returns an empty list for tables the service owns and for tables
        absent from the catalog.
        """
        if self.has_table(service, table_name):
            return []
        return [owner for owner in self.owners(table_name) if owner != service]

    def known_identifiers(self, service: str) -> dict[str, str]:
        """Map lowercased table/column names of a service to their exact casing."""
        identifiers: dict[str, str] = {}
        db = self._databases.get(service)
        if not db:
            return identifiers
        for table in db.tables:
            identifiers.setdefault(table.name.lower(), table.name)
            for col in table.columns:
                identifiers.setdefault(col.name.lower(), col.name)
        return identifiers


def load_catalog(path: Path | str) -> SchemaCatalog:
    """
    Load catalog from a JSON or YAML file holding a list of database descriptions.

    Raises:
        ConfigError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Schema catalog not found: {path}")

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not parse schema catalog {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("databases", [])
    if not isinstance(data, list):
        raise ConfigError(f"Schema catalog {path} must contain a list of databases")

    catalog = SchemaCatalog.from_descriptions(data)
    logger.info(f"Loaded schema catalog from {path}: {len(catalog.services)} databases")
    return catalog
