from contextlib import asynccontextmanager

import asyncpg
import pytest

from app.infra import postgres
from app.obs import health


class _FakeConn:
    def __init__(self, missing=(), applied=("0001",)):
        self.missing = set(missing)
        self.applied = set(applied)
        self.statements = []

    async def execute(self, sql):
        self.statements.append(sql)
        table = sql.split(" FROM ", 1)[1].split()[0]
        if table in self.missing:
            raise asyncpg.UndefinedTableError(f'relation "{table}" does not exist')
        return "SELECT 1"

    async def fetchval(self, sql, version):
        if "schema_migrations" in self.missing:
            raise asyncpg.UndefinedTableError('relation "schema_migrations" does not exist')
        return version if version in self.applied else None


class _FakePool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.fixture
def use_pool(monkeypatch):
    def _install(conn):
        async def _get_pool():
            return _FakePool(conn)

        monkeypatch.setattr(postgres, "get_pool", _get_pool)
        return conn

    return _install


@pytest.mark.asyncio
async def test_ready_when_room_tables_and_schema_present(use_pool):
    conn = use_pool(_FakeConn())
    status_code, body = await health.readiness()
    assert status_code == 200
    assert body["status"] == "ok"
    assert body["checks"]["migrations"] == {"ok": True, "required": "0001_group_shopping"}
    assert [s.split(" FROM ")[1].split()[0] for s in conn.statements] == list(health.ROOM_TABLES)


@pytest.mark.asyncio
async def test_unreadable_room_table_is_reported(use_pool):
    use_pool(_FakeConn(missing={"cart_items"}))
    status_code, body = await health.readiness()
    assert status_code == 503
    assert body["checks"]["postgres"]["ok"] is False
    assert body["checks"]["postgres"]["unreadable_tables"] == ["cart_items"]


@pytest.mark.asyncio
async def test_missing_room_schema_migration_is_not_ready(use_pool):
    use_pool(_FakeConn(missing={"schema_migrations"}))
    status_code, body = await health.readiness()
    assert status_code == 503
    assert body["checks"]["postgres"]["ok"] is True
    assert body["checks"]["migrations"]["ok"] is False

    use_pool(_FakeConn(applied=()))
    status_code, _ = await health.readiness()
    assert status_code == 503
