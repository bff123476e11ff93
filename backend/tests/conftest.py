import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from app.domain.rooms import repository
from app.infra import postgres
from app.main import app
from app.settings import settings


PRODUCTS = {
	42: ("Hardcover notebook", 500),
	7: ("Gel pen set", 300),
	9: ("Desk lamp", 1250),
}

USERS = {
	"user-a": ("alice", "alice@example.com"),
	"user-b": ("bob", "bob@example.com"),
	"user-c": ("carol", "carol@example.com"),
	"user-d": ("dave", "dave@example.com"),
}


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from app.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via the X-User-Id header, which is only accepted
	in dev mode.
	"""
	original_env = settings.environment
	original_limit = settings.room_create_daily_limit
	settings.environment = "dev"
	settings.room_create_daily_limit = 1000
	try:
		yield
	finally:
		settings.environment = original_env
		settings.room_create_daily_limit = original_limit


@pytest_asyncio.fixture(autouse=True)
async def memory_catalog():
	await repository.reset_memory_state()
	for product_id, (name, price) in PRODUCTS.items():
		await repository.seed_product(product_id, name, price)
	for user_id, (username, email) in USERS.items():
		await repository.seed_user(user_id, username, email)
	yield
	await repository.reset_memory_state()


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client

