import pytest

from querymesh.config import QueryMeshConfig
from querymesh.core.errors import ConfigError
from querymesh.mesh import QueryMesh, build_executor, build_store
from querymesh.messaging.result_store import InMemoryResultStore, RedisResultStore
from querymesh.runtime.sql_executor import HttpSqlExecutor, PooledSqlExecutor, RoutingSqlExecutor

from .conftest import FakeSqlExecutor

FLAT_PLAN = {
    "steps": [
        {"service": "wallet", "description": "Deposits", "sqlQuery": 'SELECT id, amount FROM "Transaction"'},
        {"service": "bets-history", "description": "Bets", "sqlQuery": 'SELECT id, amount FROM "Bet"'},
    ],
    "requiredServices": ["wallet", "bets-history"],
}


@pytest.mark.asyncio
async def test_run_end_to_end(catalog, store):
    executor = FakeSqlExecutor({
        "wallet": [{"id": 1, "amount": 50}, {"id": 2, "amount": 80}],
        "bets-history": [{"id": 3, "amount": 80}],
    })
    async with QueryMesh(catalog=catalog, executor=executor, store=store) as mesh:
        result = await mesh.run(FLAT_PLAN, "Which deposit or bet had the biggest amount?")

    assert result.succeeded
    assert result.final_results == [{"id": 2, "amount": 80}, {"id": 3, "amount": 80}]
    assert "filter_by_max" in result.executed_steps


def test_conflicts_through_mesh(catalog, executor, store):
    mesh = QueryMesh(catalog=catalog, executor=executor, store=store)
    result = mesh.conflicts(FLAT_PLAN)
    assert result.has_conflicts
    assert result.error_probability == "medium"


def test_conflicts_without_catalog_is_low_risk(executor, store):
    mesh = QueryMesh(executor=executor, store=store)
    result = mesh.conflicts(FLAT_PLAN)
    assert result.has_conflicts is False
    assert result.error_probability == "low"


def test_build_accepts_dict_plans(executor, store):
    plan = QueryMesh(executor=executor, store=store).build(FLAT_PLAN, "count them")
    assert plan.final_step_id == "aggregate_count"


def test_build_executor_picks_transport():
    pooled = build_executor(QueryMeshConfig.from_dict({"services": {"wallet": {"dsn": "sqlite+aiosqlite:///w.db"}}}))
    assert isinstance(pooled, PooledSqlExecutor)

    http = build_executor(QueryMeshConfig.from_dict({"services": {"pam": {"url": "http://pam:8000"}}}))
    assert isinstance(http, HttpSqlExecutor)

    mixed = build_executor(QueryMeshConfig.from_dict({
        "services": {
            "wallet": {"dsn": "sqlite+aiosqlite:///w.db", "url": "http://wallet:8000"},
            "pam": {"url": "http://pam:8000"},
        },
    }))
    assert isinstance(mixed, RoutingSqlExecutor)
    assert isinstance(mixed.routes["wallet"], PooledSqlExecutor)
    assert isinstance(mixed.routes["pam"], HttpSqlExecutor)


def test_build_store_picks_backend():
    assert isinstance(build_store(QueryMeshConfig()), InMemoryResultStore)
    redis_config = QueryMeshConfig.from_dict({"cache": {"redis_url": "redis://cache:6379", "prefix": "q"}})
    store = build_store(redis_config)
    assert isinstance(store, RedisResultStore)
    assert store.prefix == "q"


def test_from_file_requires_existing_file(tmp_path):
    with pytest.raises(ConfigError):
        QueryMesh.from_file(tmp_path / "querymesh.yaml")


@pytest.mark.asyncio
async def test_routing_executor_unknown_service():
    from querymesh.core.errors import ServiceError

    routing = RoutingSqlExecutor({"wallet": FakeSqlExecutor({"wallet": [{"id": 1}]})})
    assert await routing.execute("wallet", "SELECT 1") == [{"id": 1}]
    with pytest.raises(ServiceError):
        await routing.execute("pam", "SELECT 1")
