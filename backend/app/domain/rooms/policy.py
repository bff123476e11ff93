"""Policy helpers for shopping rooms: error taxonomy and access checks."""

from __future__ import annotations

from datetime import datetime, timezone

from app.domain.rooms import models
from app.infra.redis import redis_client
from app.settings import settings


class RoomPolicyError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 400, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code


class RoomValidationError(RoomPolicyError):
	def __init__(self, code: str = "validation_error", *, message: str | None = None) -> None:
		super().__init__(code, status_code=400, message=message)


class RoomNotFound(RoomPolicyError):
	def __init__(self, code: str = "room_not_found") -> None:
		super().__init__(code, status_code=404)


class RoomInactive(RoomPolicyError):
	"""Raised for deleted/closed rooms; callers see it like a 404."""

	def __init__(self) -> None:
		super().__init__("room_inactive", status_code=404)


class NotAMember(RoomPolicyError):
	def __init__(self) -> None:
		super().__init__("not_a_member", status_code=404)


class RoomForbidden(RoomPolicyError):
	def __init__(self, code: str = "forbidden") -> None:
		super().__init__(code, status_code=403)


class RoomConflict(RoomPolicyError):
	def __init__(self, code: str) -> None:
		super().__init__(code, status_code=409)


class AlreadyMember(RoomConflict):
	def __init__(self) -> None:
		super().__init__("already_member")


class AlreadyAdmin(RoomConflict):
	def __init__(self) -> None:
		super().__init__("already_admin")


class RoomFull(RoomConflict):
	def __init__(self) -> None:
		super().__init__("room_full")


async def _touch_limit(key: str, ttl_seconds: int) -> int:
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, ttl_seconds)
		count, _ = await pipe.execute()
	return int(count)


async def enforce_create_limit(user_id: str) -> None:
	now = datetime.now(timezone.utc)
	bucket = now.strftime("%Y%m%d")
	key = f"rl:shoproom:create:{user_id}:{bucket}"
	if await _touch_limit(key, 86_400) > settings.room_create_daily_limit:
		raise RoomPolicyError("rate_limited:create", status_code=429)


def validate_room_name(name: str | None) -> str:
	cleaned = (name or "").strip()
	if not cleaned:
		raise RoomValidationError("name_required")
	return cleaned


def validate_max_members(max_members: int | None) -> int:
	if max_members is None:
		return settings.room_default_max_members
	if max_members < 1 or max_members > settings.room_max_members_limit:
		raise RoomValidationError("invalid_max_members")
	return max_members


def validate_quantity(quantity: int, *, allow_zero: bool = False) -> int:
	floor = 0 if allow_zero else 1
	if quantity < floor:
		raise RoomValidationError("invalid_quantity")
	return quantity


def ensure_room(room: models.Room | None) -> models.Room:
	if room is None:
		raise RoomNotFound()
	return room


def ensure_active(room: models.Room | None) -> models.Room:
	room = ensure_room(room)
	if not room.active:
		raise RoomInactive()
	return room


def ensure_capacity_available(room: models.Room) -> None:
	if room.is_full():
		raise RoomFull()


def require_member(member: models.RoomMember | None) -> models.RoomMember:
	if member is None:
		raise RoomForbidden("not_member")
	return member


def require_admin(member: models.RoomMember | None) -> models.RoomMember:
	member = require_member(member)
	if not member.is_admin():
		raise RoomForbidden("forbidden")
	return member


def ensure_target(member: models.RoomMember | None) -> models.RoomMember:
	if member is None:
		raise NotAMember()
	return member


def ensure_not_member(member: models.RoomMember | None) -> None:
	if member is not None:
		raise AlreadyMember()


def ensure_can_promote(target: models.RoomMember) -> None:
	if target.is_admin():
		raise AlreadyAdmin()


def ensure_item_access(item: models.CartItem, user_id: str, member: models.RoomMember | None) -> None:
	"""Room items are editable by any member; personal items only by their owner."""
	if item.is_personal():
		if item.user_id != user_id:
			raise RoomForbidden("not_item_owner")
		return
	require_member(member)


def successor_admin(members: list[models.RoomMember], leaving_user_id: str) -> models.RoomMember | None:
	"""Return the member to promote when the last admin leaves, or None."""
	remaining = [m for m in members if m.user_id != leaving_user_id]
	if not remaining or any(m.is_admin() for m in remaining):
		return None
	return min(remaining, key=lambda m: m.joined_at)
