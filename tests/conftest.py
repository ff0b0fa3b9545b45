from typing import Optional

import pytest

from querymesh.core.catalog import SchemaCatalog
from querymesh.core.plan_types import Row
from querymesh.messaging.result_store import InMemoryResultStore


class FakeSqlExecutor:
    """SQL executor returning canned rows per service and recording every call."""

    def __init__(
        self,
        responses: Optional[dict[str, list[Row]]] = None,
        failures: Optional[dict[str, Exception]] = None,
    ):
        self.responses = responses or {}
        self.failures = failures or {}
        self.calls: list[tuple[str, str]] = []

    async def execute(self, service: str, sql: str) -> list[Row]:
        self.calls.append((service, sql))
        if service in self.failures:
            raise self.failures[service]
        return [dict(row) for row in self.responses.get(service, [])]

    def sql_for(self, service: str) -> list[str]:
        return [sql for svc, sql in self.calls if svc == service]


CATALOG_DESCRIPTIONS = [
    {
        "name": "wallet_db",
        "service": "wallet",
        "description": "Wallet balances and transactions",
        "tables": [
            {
                "name": "Transaction",
                "columns": [
                    {"name": "id", "type": "integer", "isPrimaryKey": True},
                    {"name": "userId", "type": "integer"},
                    {"name": "amount", "type": "numeric"},
                    {"name": "type", "type": "text"},
                    {"name": "createdAt", "type": "timestamp"},
                ],
            },
            {
                "name": "Balance",
                "columns": [
                    {"name": "id", "type": "integer", "isPrimaryKey": True},
                    {"name": "userId", "type": "integer"},
                    {"name": "amount", "type": "numeric"},
                ],
            },
        ],
    },
    {
        "name": "pam_db",
        "service": "pam",
        "tables": [
            {
                "name": "User",
                "columns": [
                    {"name": "id", "type": "integer", "isPrimaryKey": True},
                    {"name": "name", "type": "text"},
                    {"name": "email", "type": "text", "isUnique": True},
                    {"name": "createdAt", "type": "timestamp"},
                ],
            },
        ],
    },
    {
        "name": "bets_db",
        "service": "bets-history",
        "tables": [
            {
                "name": "Bet",
                "columns": [
                    {"name": "id", "type": "integer", "isPrimaryKey": True},
                    {"name": "userId", "type": "integer"},
                    {"name": "amount", "type": "numeric"},
                    {"name": "createdAt", "type": "timestamp"},
                ],
            },
        ],
    },
    {
        "name": "financial_db",
        "service": "financial-history",
        "tables": [
            {
                "name": "Transaction",
                "columns": [
                    {"name": "id", "type": "integer", "isPrimaryKey": True},
                    {"name": "userId", "type": "integer"},
                    {"name": "amount", "type": "numeric"},
                    {"name": "currency", "type": "text"},
                ],
            },
        ],
    },
]


@pytest.fixture
def catalog() -> SchemaCatalog:
    return SchemaCatalog.from_descriptions(CATALOG_DESCRIPTIONS)


@pytest.fixture
def store() -> InMemoryResultStore:
    return InMemoryResultStore()


@pytest.fixture
def executor() -> FakeSqlExecutor:
    return FakeSqlExecutor()
