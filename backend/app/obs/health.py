"""Liveness and readiness checks for the rooms service.

Readiness needs Redis (daily create limit, room event stream), a Postgres
connection that can read every room table, and the room schema migration
recorded in ``schema_migrations``.
"""

from __future__ import annotations

import asyncio
from time import perf_counter
from typing import Any, Dict, List, Tuple

import asyncpg

from app.infra import postgres
from app.infra.redis import redis_client
from app.obs import logging as obs_logging
from app.obs import metrics

LOGGER = obs_logging.get_logger("health")

ROOM_TABLES = ("shopping_groups", "group_members", "cart_items")
ROOM_SCHEMA_MIGRATION = "0001_group_shopping"
ROOM_SCHEMA_VERSION = ROOM_SCHEMA_MIGRATION.split("_", 1)[0]


async def _redis_status(timeout: float = 0.2) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
	except Exception as exc:  # pragma: no cover - depends on runtime
		metrics.mark_redis(False)
		LOGGER.warning("redis_not_ready", exc_info=True)
		return {"ok": False, "error": str(exc)}
	latency = perf_counter() - start
	metrics.mark_redis(True, latency_seconds=latency)
	return {"ok": True, "latency_ms": round(latency * 1000, 2)}


async def _unreadable_tables(conn: asyncpg.Connection, timeout: float) -> List[str]:
	unreadable: List[str] = []
	for table in ROOM_TABLES:
		try:
			await asyncio.wait_for(conn.execute(f"SELECT 1 FROM {table} LIMIT 1"), timeout=timeout)
		except asyncpg.PostgresError:
			unreadable.append(table)
	return unreadable


async def _schema_applied(conn: asyncpg.Connection) -> bool:
	try:
		version = await conn.fetchval(
			"SELECT version FROM schema_migrations WHERE version=$1",
			ROOM_SCHEMA_VERSION,
		)
	except asyncpg.UndefinedTableError:
		return False
	return version is not None


async def _room_store_status(timeout: float = 0.3) -> Tuple[Dict[str, Any], Dict[str, Any]]:
	"""Return the ``postgres`` and ``migrations`` checks, sharing one connection."""
	required = {"required": ROOM_SCHEMA_MIGRATION}
	try:
		pool = await postgres.get_pool()
	except Exception as exc:
		metrics.mark_postgres(False)
		LOGGER.warning("postgres_unavailable", exc_info=True)
		return {"ok": False, "error": str(exc)}, {"ok": False, "error": "pool_unavailable", **required}

	start = perf_counter()
	try:
		async with pool.acquire() as conn:
			unreadable = await _unreadable_tables(conn, timeout)
			applied = await _schema_applied(conn)
	except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as exc:
		metrics.mark_postgres(False)
		LOGGER.warning("postgres_not_ready", exc_info=True)
		return {"ok": False, "error": str(exc)}, {"ok": False, "error": "pool_unavailable", **required}
	latency = perf_counter() - start
	metrics.mark_postgres(not unreadable, latency_seconds=latency)
	postgres_state: Dict[str, Any] = {"ok": not unreadable, "latency_ms": round(latency * 1000, 2)}
	if unreadable:
		postgres_state["unreadable_tables"] = unreadable
	return postgres_state, {"ok": applied, **required}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	redis_state = await _redis_status()
	postgres_state, migration_state = await _room_store_status()
	ok = redis_state["ok"] and postgres_state["ok"] and migration_state["ok"]
	return (
		200 if ok else 503,
		{
			"status": "ok" if ok else "degraded",
			"checks": {
				"redis": redis_state,
				"postgres": postgres_state,
				"migrations": migration_state,
			},
		},
	)
