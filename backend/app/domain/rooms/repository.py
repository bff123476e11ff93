"""Persistence for shopping rooms, memberships and cart items.

All service operations run inside ``RoomRepository.transaction()``. With
Postgres the scope is one connection and one transaction, and
``lock_room`` takes a row lock. Without a pool the in-process store holds
its lock for the whole scope and restores its snapshot if the scope raises.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncIterator, Dict, Iterable, List, Optional

import asyncpg

from app.domain.rooms import models
from app.infra.postgres import get_pool
from app.obs import logging as obs_logging

logger = obs_logging.get_logger("rooms.repository")


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.rooms: Dict[str, models.Room] = {}
		self.members: Dict[str, Dict[str, models.RoomMember]] = {}
		self.items: Dict[str, models.CartItem] = {}
		self.products: Dict[int, models.Product] = {}
		self.users: Dict[str, models.DirectoryUser] = {}

	def _snapshot(self) -> tuple:
		return (
			dict(self.rooms),
			{room_id: dict(members) for room_id, members in self.members.items()},
			dict(self.items),
		)

	def _restore(self, snapshot: tuple) -> None:
		self.rooms, self.members, self.items = snapshot

	@asynccontextmanager
	async def transaction(self) -> AsyncIterator["_MemoryTransaction"]:
		async with self._lock:
			snapshot = self._snapshot()
			try:
				yield _MemoryTransaction(self)
			except BaseException:
				self._restore(snapshot)
				raise


_MEMORY = _MemoryStore()


class _MemoryTransaction:
	"""Room operations against the in-process store; caller holds the lock."""

	def __init__(self, store: _MemoryStore) -> None:
		self._store = store

	def _with_aggregates(self, room: models.Room) -> models.Room:
		lines = self._cart_lines(item for item in self._store.items.values() if item.room_id == room.id)
		return replace(
			room,
			members_count=len(self._store.members.get(room.id, {})),
			cart_total=models.cart_total(lines),
		)

	def _cart_lines(self, items: Iterable[models.CartItem]) -> List[models.CartLine]:
		lines: List[models.CartLine] = []
		for item in items:
			product = self._store.products.get(item.product_id)
			lines.append(
				models.CartLine(
					item=replace(item),
					product_name=product.name if product else "",
					unit_price=product.price if product else 0,
				)
			)
		return lines

	async def lock_room(self, room_id: str) -> Optional[models.Room]:
		return await self.get_room(room_id)

	async def get_room(self, room_id: str) -> Optional[models.Room]:
		room = self._store.rooms.get(room_id)
		return self._with_aggregates(room) if room else None

	async def find_active_by_code(self, code: str, *, lock: bool = False) -> Optional[models.Room]:
		for room in self._store.rooms.values():
			if room.active and room.code.upper() == code:
				return self._with_aggregates(room)
		return None

	async def list_rooms(
		self,
		caller_id: str,
		*,
		member_only: bool = True,
	) -> List[tuple[models.Room, Optional[models.RoomRole]]]:
		rooms = [
			room
			for room in self._store.rooms.values()
			if room.active and (not member_only or caller_id in self._store.members.get(room.id, {}))
		]
		# newest first; reversed insertion order breaks timestamp ties
		ordered = sorted(reversed(rooms), key=lambda r: r.created_at, reverse=True)
		result = []
		for room in ordered:
			member = self._store.members.get(room.id, {}).get(caller_id)
			result.append((self._with_aggregates(room), member.role if member else None))
		return result

	async def insert_room(self, room: models.Room) -> bool:
		if await self.find_active_by_code(room.code.upper()) is not None:
			return False
		self._store.rooms[room.id] = replace(room)
		self._store.members[room.id] = {}
		return True

	async def deactivate_room(self, room_id: str) -> None:
		room = self._store.rooms.get(room_id)
		if room is not None:
			self._store.rooms[room_id] = replace(room, active=False)

	async def clear_room(self, room_id: str) -> tuple[int, int]:
		members = self._store.members.pop(room_id, {})
		self._store.members[room_id] = {}
		item_ids = [item.id for item in self._store.items.values() if item.room_id == room_id]
		for item_id in item_ids:
			del self._store.items[item_id]
		return len(members), len(item_ids)

	async def get_member(self, room_id: str, user_id: str) -> Optional[models.RoomMember]:
		member = self._store.members.get(room_id, {}).get(user_id)
		return replace(member) if member else None

	async def list_members(self, room_id: str) -> List[models.RoomMember]:
		members = [replace(m) for m in self._store.members.get(room_id, {}).values()]
		return sorted(members, key=lambda m: m.sort_key())

	async def count_members(self, room_id: str) -> int:
		return len(self._store.members.get(room_id, {}))

	async def insert_member(self, member: models.RoomMember) -> None:
		self._store.members.setdefault(member.room_id, {})[member.user_id] = replace(member)

	async def delete_member(self, room_id: str, user_id: str) -> bool:
		return self._store.members.get(room_id, {}).pop(user_id, None) is not None

	async def set_role(self, room_id: str, user_id: str, role: models.RoomRole) -> None:
		members = self._store.members.get(room_id, {})
		member = members.get(user_id)
		if member is not None:
			members[user_id] = replace(member, role=role)

	async def get_product(self, product_id: int) -> Optional[models.Product]:
		product = self._store.products.get(product_id)
		return replace(product) if product else None

	async def find_user(self, identifier: str) -> Optional[models.DirectoryUser]:
		lowered = identifier.lower()
		for user in self._store.users.values():
			if user.username == identifier or (user.email and user.email.lower() == lowered):
				return replace(user)
		return None

	async def get_users(self, user_ids: Iterable[str]) -> Dict[str, models.DirectoryUser]:
		return {uid: replace(self._store.users[uid]) for uid in user_ids if uid in self._store.users}

	async def insert_item(self, item: models.CartItem) -> None:
		self._store.items[item.id] = replace(item)

	async def get_item(self, item_id: str) -> Optional[models.CartItem]:
		item = self._store.items.get(item_id)
		return replace(item) if item else None

	async def update_item_quantity(self, item_id: str, quantity: int) -> None:
		item = self._store.items.get(item_id)
		if item is not None:
			self._store.items[item_id] = replace(item, quantity=quantity)

	async def delete_item(self, item_id: str) -> bool:
		return self._store.items.pop(item_id, None) is not None

	async def list_cart_lines(self, *, room_id: Optional[str] = None, user_id: Optional[str] = None) -> List[models.CartLine]:
		if room_id is not None:
			items = [item for item in self._store.items.values() if item.room_id == room_id]
		else:
			items = [item for item in self._store.items.values() if item.room_id is None and item.user_id == user_id]
		return self._cart_lines(sorted(items, key=lambda i: i.added_at))

	async def get_cart_line(self, item_id: str) -> Optional[models.CartLine]:
		item = self._store.items.get(item_id)
		if item is None:
			return None
		return self._cart_lines([item])[0]


_ROOM_COLUMNS = """
	g.id, g.name, g.description, g.room_code, g.creator_id, g.is_active, g.max_members, g.created_at,
	(SELECT COUNT(*) FROM group_members m WHERE m.group_id = g.id) AS members_count,
	(
		SELECT COALESCE(SUM(ci.quantity * p.price), 0)
		FROM cart_items ci
		JOIN products p ON p.id = ci.product_id
		WHERE ci.room_id = g.id
	) AS cart_total
"""

_CART_LINE_QUERY = """
	SELECT ci.*, COALESCE(p.name, '') AS product_name, COALESCE(p.price, 0) AS unit_price
	FROM cart_items ci
	LEFT JOIN products p ON p.id = ci.product_id
"""


class _PostgresTransaction:
	def __init__(self, conn: asyncpg.Connection) -> None:
		self._conn = conn

	async def lock_room(self, room_id: str) -> Optional[models.Room]:
		locked = await self._conn.fetchval(
			"SELECT id FROM shopping_groups WHERE id=$1 FOR UPDATE",
			room_id,
		)
		if locked is None:
			return None
		return await self.get_room(room_id)

	async def get_room(self, room_id: str) -> Optional[models.Room]:
		row = await self._conn.fetchrow(
			f"SELECT {_ROOM_COLUMNS} FROM shopping_groups g WHERE g.id=$1",
			room_id,
		)
		return _row_to_room(row) if row else None

	async def find_active_by_code(self, code: str, *, lock: bool = False) -> Optional[models.Room]:
		suffix = " FOR UPDATE" if lock else ""
		room_id = await self._conn.fetchval(
			f"SELECT id FROM shopping_groups WHERE UPPER(room_code)=$1 AND is_active{suffix}",
			code,
		)
		if room_id is None:
			return None
		return await self.get_room(str(room_id))

	async def list_rooms(
		self,
		caller_id: str,
		*,
		member_only: bool = True,
	) -> List[tuple[models.Room, Optional[models.RoomRole]]]:
		rows = await self._conn.fetch(
			f"""
			SELECT {_ROOM_COLUMNS}, cm.role AS caller_role
			FROM shopping_groups g
			LEFT JOIN group_members cm ON cm.group_id = g.id AND cm.user_id = $1
			WHERE g.is_active
			  AND (NOT $2::boolean OR cm.user_id IS NOT NULL)
			ORDER BY g.created_at DESC
			""",
			caller_id,
			member_only,
		)
		return [
			(_row_to_room(row), models.RoomRole(row["caller_role"]) if row["caller_role"] else None)
			for row in rows
		]

	async def insert_room(self, room: models.Room) -> bool:
		try:
			# savepoint so a code collision does not abort the outer transaction
			async with self._conn.transaction():
				await self._conn.execute(
					"""
					INSERT INTO shopping_groups (id, name, description, room_code, creator_id, is_active, max_members, created_at)
					VALUES ($1,$2,$3,$4,$5,TRUE,$6,$7)
					""",
					room.id,
					room.name,
					room.description,
					room.code,
					room.creator_id,
					room.max_members,
					room.created_at,
				)
		except asyncpg.UniqueViolationError:
			return False
		return True

	async def deactivate_room(self, room_id: str) -> None:
		await self._conn.execute(
			"UPDATE shopping_groups SET is_active=FALSE, deleted_at=NOW() WHERE id=$1",
			room_id,
		)

	async def clear_room(self, room_id: str) -> tuple[int, int]:
		items = await self._conn.execute("DELETE FROM cart_items WHERE room_id=$1", room_id)
		members = await self._conn.execute("DELETE FROM group_members WHERE group_id=$1", room_id)
		return _affected(members), _affected(items)

	async def get_member(self, room_id: str, user_id: str) -> Optional[models.RoomMember]:
		row = await self._conn.fetchrow(
			"SELECT * FROM group_members WHERE group_id=$1 AND user_id=$2",
			room_id,
			user_id,
		)
		return _row_to_member(row) if row else None

	async def list_members(self, room_id: str) -> List[models.RoomMember]:
		rows = await self._conn.fetch(
			"""
			SELECT * FROM group_members
			WHERE group_id=$1
			ORDER BY (role = 'admin') DESC, joined_at ASC
			""",
			room_id,
		)
		return [_row_to_member(row) for row in rows]

	async def count_members(self, room_id: str) -> int:
		return int(await self._conn.fetchval("SELECT COUNT(*) FROM group_members WHERE group_id=$1", room_id))

	async def insert_member(self, member: models.RoomMember) -> None:
		await self._conn.execute(
			"""
			INSERT INTO group_members (group_id, user_id, role, joined_at)
			VALUES ($1,$2,$3,$4)
			""",
			member.room_id,
			member.user_id,
			member.role.value,
			member.joined_at,
		)

	async def delete_member(self, room_id: str, user_id: str) -> bool:
		status = await self._conn.execute(
			"DELETE FROM group_members WHERE group_id=$1 AND user_id=$2",
			room_id,
			user_id,
		)
		return _affected(status) > 0

	async def set_role(self, room_id: str, user_id: str, role: models.RoomRole) -> None:
		await self._conn.execute(
			"UPDATE group_members SET role=$3 WHERE group_id=$1 AND user_id=$2",
			room_id,
			user_id,
			role.value,
		)

	async def get_product(self, product_id: int) -> Optional[models.Product]:
		row = await self._conn.fetchrow("SELECT id, name, price FROM products WHERE id=$1", product_id)
		if not row:
			return None
		return models.Product(id=int(row["id"]), name=row["name"], price=int(row["price"]))

	async def find_user(self, identifier: str) -> Optional[models.DirectoryUser]:
		row = await self._conn.fetchrow(
			"""
			SELECT id, username, email FROM users
			WHERE username=$1 OR LOWER(email)=LOWER($1)
			LIMIT 1
			""",
			identifier,
		)
		return _row_to_user(row) if row else None

	async def get_users(self, user_ids: Iterable[str]) -> Dict[str, models.DirectoryUser]:
		ids = list(user_ids)
		if not ids:
			return {}
		rows = await self._conn.fetch("SELECT id, username, email FROM users WHERE id = ANY($1::text[])", ids)
		return {str(row["id"]): _row_to_user(row) for row in rows}

	async def insert_item(self, item: models.CartItem) -> None:
		await self._conn.execute(
			"""
			INSERT INTO cart_items (id, room_id, user_id, product_id, quantity, added_at)
			VALUES ($1,$2,$3,$4,$5,$6)
			""",
			item.id,
			item.room_id,
			item.user_id,
			item.product_id,
			item.quantity,
			item.added_at,
		)

	async def get_item(self, item_id: str) -> Optional[models.CartItem]:
		row = await self._conn.fetchrow("SELECT * FROM cart_items WHERE id=$1", item_id)
		return _row_to_item(row) if row else None

	async def update_item_quantity(self, item_id: str, quantity: int) -> None:
		await self._conn.execute("UPDATE cart_items SET quantity=$2 WHERE id=$1", item_id, quantity)

	async def delete_item(self, item_id: str) -> bool:
		status = await self._conn.execute("DELETE FROM cart_items WHERE id=$1", item_id)
		return _affected(status) > 0

	async def list_cart_lines(self, *, room_id: Optional[str] = None, user_id: Optional[str] = None) -> List[models.CartLine]:
		if room_id is not None:
			rows = await self._conn.fetch(
				f"{_CART_LINE_QUERY} WHERE ci.room_id=$1 ORDER BY ci.added_at",
				room_id,
			)
		else:
			rows = await self._conn.fetch(
				f"{_CART_LINE_QUERY} WHERE ci.room_id IS NULL AND ci.user_id=$1 ORDER BY ci.added_at",
				user_id,
			)
		return [_row_to_line(row) for row in rows]

	async def get_cart_line(self, item_id: str) -> Optional[models.CartLine]:
		row = await self._conn.fetchrow(f"{_CART_LINE_QUERY} WHERE ci.id=$1", item_id)
		return _row_to_line(row) if row else None


def _affected(status: str) -> int:
	# asyncpg returns command tags such as "DELETE 3"
	try:
		return int(status.rsplit(" ", 1)[-1])
	except (ValueError, AttributeError):
		return 0


def _row_to_room(row: asyncpg.Record) -> models.Room:
	return models.Room(
		id=str(row["id"]),
		name=row["name"],
		description=row["description"] or "",
		code=row["room_code"],
		creator_id=str(row["creator_id"]),
		active=bool(row["is_active"]),
		max_members=int(row["max_members"]),
		created_at=row["created_at"],
		members_count=int(row["members_count"]),
		cart_total=int(row["cart_total"]),
	)


def _row_to_member(row: asyncpg.Record) -> models.RoomMember:
	return models.RoomMember(
		room_id=str(row["group_id"]),
		user_id=str(row["user_id"]),
		role=models.RoomRole(row["role"]),
		joined_at=row["joined_at"],
	)


def _row_to_item(row: asyncpg.Record) -> models.CartItem:
	return models.CartItem(
		id=str(row["id"]),
		room_id=str(row["room_id"]) if row["room_id"] is not None else None,
		user_id=str(row["user_id"]),
		product_id=int(row["product_id"]),
		quantity=int(row["quantity"]),
		added_at=row["added_at"],
	)


def _row_to_line(row: asyncpg.Record) -> models.CartLine:
	return models.CartLine(
		item=_row_to_item(row),
		product_name=row["product_name"],
		unit_price=int(row["unit_price"]),
	)


def _row_to_user(row: asyncpg.Record) -> models.DirectoryUser:
	return models.DirectoryUser(id=str(row["id"]), username=row["username"], email=row["email"])


class RoomRepository:
	def __init__(self) -> None:
		self._pool_checked = False
		self._pool_instance: Optional[asyncpg.Pool] = None

	async def _get_pool(self) -> Optional[asyncpg.Pool]:
		if self._pool_checked:
			return self._pool_instance
		self._pool_checked = True
		try:
			pool = await get_pool()
		except Exception:
			logger.warning("postgres_unavailable_using_memory_store", exc_info=True)
			pool = None
		self._pool_instance = pool
		return pool

	@asynccontextmanager
	async def transaction(self) -> AsyncIterator[_MemoryTransaction | _PostgresTransaction]:
		pool = await self._get_pool()
		if pool is None:
			async with _MEMORY.transaction() as tx:
				yield tx
			return
		async with pool.acquire() as conn:
			async with conn.transaction():
				yield _PostgresTransaction(conn)


async def seed_product(product_id: int, name: str, price: int) -> models.Product:
	"""Register a catalogue product in the in-memory store."""
	product = models.Product(id=product_id, name=name, price=price)
	async with _MEMORY._lock:
		_MEMORY.products[product_id] = product
	return product


async def seed_user(user_id: str, username: str, email: str | None = None) -> models.DirectoryUser:
	"""Register a directory user in the in-memory store."""
	user = models.DirectoryUser(id=user_id, username=username, email=email)
	async with _MEMORY._lock:
		_MEMORY.users[user_id] = user
	return user


async def reset_memory_state() -> None:
	"""Test helper to clear in-memory store state."""
	async with _MEMORY._lock:
		_MEMORY.rooms.clear()
		_MEMORY.members.clear()
		_MEMORY.items.clear()
		_MEMORY.products.clear()
		_MEMORY.users.clear()
	# fresh lock so the next event loop does not inherit a bound one
	_MEMORY._lock = asyncio.Lock()
