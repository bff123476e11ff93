"""Room lifecycle and membership service layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

import ulid

from app.domain.rooms import codes, models, outbox, policy, schemas
from app.domain.rooms.repository import RoomRepository
from app.infra.auth import AuthenticatedUser
from app.obs import logging as obs_logging
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = obs_logging.get_logger("rooms")


def _member_summary(member: models.RoomMember, users: Dict[str, models.DirectoryUser]) -> schemas.RoomMemberSummary:
	user = users.get(member.user_id)
	return schemas.RoomMemberSummary(
		user_id=member.user_id,
		role=member.role.value,
		joined_at=member.joined_at,
		username=user.username if user else None,
	)


class RoomService:
	def __init__(self, repository: RoomRepository | None = None) -> None:
		self._repo = repository or RoomRepository()

	async def create_room(self, auth_user: AuthenticatedUser, payload: schemas.RoomCreateRequest) -> schemas.RoomCreateResponse:
		name = policy.validate_room_name(payload.name)
		max_members = policy.validate_max_members(payload.max_members)
		await policy.enforce_create_limit(auth_user.id)
		now = datetime.now(timezone.utc)
		async with self._repo.transaction() as tx:
			resolved, skipped = await self._resolve_initial_members(tx, auth_user.id, payload.add_members)
			if len(resolved) + 1 > max_members:
				raise policy.RoomFull()
			room = await self._insert_room(
				tx,
				name=name,
				description=(payload.description or "").strip(),
				creator_id=auth_user.id,
				max_members=max_members,
				created_at=now,
			)
			await tx.insert_member(
				models.RoomMember(room_id=room.id, user_id=auth_user.id, role=models.RoomRole.ADMIN, joined_at=now)
			)
			for user in resolved:
				await tx.insert_member(
					models.RoomMember(room_id=room.id, user_id=user.id, role=models.RoomRole.MEMBER, joined_at=now)
				)
			room = await tx.get_room(room.id)
		obs_metrics.inc_room_created()
		await outbox.append_room_event(
			"room_created",
			room.id,
			user_id=auth_user.id,
			meta={"initial_members": len(resolved)},
		)
		logger.info("room_created", extra={"room_id": room.id, "member_count": room.members_count})
		return schemas.RoomCreateResponse(
			**room.to_summary(models.RoomRole.ADMIN),
			skipped_members=skipped,
		)

	async def get_room(self, auth_user: AuthenticatedUser, room_id: str) -> schemas.RoomDetail:
		async with self._repo.transaction() as tx:
			room = policy.ensure_active(await tx.get_room(room_id))
			member = policy.require_member(await tx.get_member(room_id, auth_user.id))
			members = await tx.list_members(room_id)
			users = await tx.get_users(m.user_id for m in members)
		return schemas.RoomDetail(
			**room.to_summary(member.role),
			members=[_member_summary(m, users) for m in members],
		)

	async def list_rooms(self, auth_user: AuthenticatedUser, scope: str = "mine") -> List[schemas.RoomSummary]:
		if scope not in schemas.SCOPE_VALUES:
			raise policy.RoomValidationError("invalid_scope")
		async with self._repo.transaction() as tx:
			rows = await tx.list_rooms(auth_user.id, member_only=scope == "mine")
		return [schemas.RoomSummary(**room.to_summary(role)) for room, role in rows]

	async def find_by_code(self, code: str) -> models.Room:
		normalized = codes.normalize_code(code)
		if not normalized:
			raise policy.RoomValidationError("room_code_required")
		async with self._repo.transaction() as tx:
			room = await tx.find_active_by_code(normalized)
		if room is None:
			raise policy.RoomNotFound()
		return room

	async def delete_room(self, auth_user: AuthenticatedUser, room_id: str) -> None:
		async with self._repo.transaction() as tx:
			policy.ensure_active(await tx.lock_room(room_id))
			policy.require_admin(await tx.get_member(room_id, auth_user.id))
			members_removed, items_removed = await tx.clear_room(room_id)
			await tx.deactivate_room(room_id)
		obs_metrics.inc_room_deleted("admin")
		await outbox.append_room_event("room_deleted", room_id, user_id=auth_user.id)
		logger.info(
			"room_deleted",
			extra={"room_id": room_id, "members_removed": members_removed, "items_removed": items_removed},
		)

	async def join_by_code(self, auth_user: AuthenticatedUser, payload: schemas.JoinByCodeRequest) -> schemas.RoomSummary:
		code = codes.normalize_code(payload.room_code)
		if not code:
			raise policy.RoomValidationError("room_code_required")
		async with self._repo.transaction() as tx:
			room = await tx.find_active_by_code(code, lock=True)
			if room is None:
				raise policy.RoomNotFound()
			member = await self._admit(tx, room, auth_user.id)
			room = await tx.get_room(room.id)
		obs_metrics.inc_room_join("code")
		await outbox.append_room_event("member_joined", room.id, user_id=auth_user.id)
		return schemas.RoomSummary(**room.to_summary(member.role))

	async def add_member(
		self,
		auth_user: AuthenticatedUser,
		room_id: str,
		payload: schemas.AddMemberRequest,
	) -> schemas.RoomMemberSummary:
		identifier = payload.identifier.strip()
		if not identifier:
			raise policy.RoomValidationError("identifier_required")
		async with self._repo.transaction() as tx:
			room = policy.ensure_active(await tx.lock_room(room_id))
			policy.require_admin(await tx.get_member(room_id, auth_user.id))
			user = await tx.find_user(identifier)
			if user is None:
				raise policy.RoomNotFound("user_not_found")
			member = await self._admit(tx, room, user.id)
		obs_metrics.inc_room_join("admin")
		await outbox.append_room_event("member_added", room_id, user_id=user.id, meta={"by": auth_user.id})
		return _member_summary(member, {user.id: user})

	async def remove_member(self, auth_user: AuthenticatedUser, room_id: str, target_user_id: str) -> None:
		async with self._repo.transaction() as tx:
			policy.ensure_active(await tx.lock_room(room_id))
			policy.require_admin(await tx.get_member(room_id, auth_user.id))
			if target_user_id == auth_user.id:
				# an admin removing themself leaves through the exit path
				promoted, closed = await self._leave(tx, room_id, auth_user.id)
			else:
				policy.ensure_target(await tx.get_member(room_id, target_user_id))
				await tx.delete_member(room_id, target_user_id)
		if target_user_id == auth_user.id:
			await self._after_leave(room_id, auth_user.id, promoted, closed)
			return
		obs_metrics.inc_member_change("removed")
		await outbox.append_room_event("member_removed", room_id, user_id=target_user_id, meta={"by": auth_user.id})

	async def exit_room(self, auth_user: AuthenticatedUser, room_id: str) -> schemas.RoomExitResponse:
		async with self._repo.transaction() as tx:
			policy.ensure_active(await tx.lock_room(room_id))
			policy.require_member(await tx.get_member(room_id, auth_user.id))
			promoted, closed = await self._leave(tx, room_id, auth_user.id)
		await self._after_leave(room_id, auth_user.id, promoted, closed)
		return schemas.RoomExitResponse(
			room_id=room_id,
			room_closed=closed,
			promoted_user_id=promoted.user_id if promoted else None,
		)

	async def _leave(self, tx, room_id: str, user_id: str) -> tuple[Optional[models.RoomMember], bool]:
		members = await tx.list_members(room_id)
		promoted = policy.successor_admin(members, user_id)
		await tx.delete_member(room_id, user_id)
		if promoted is not None:
			await tx.set_role(room_id, promoted.user_id, models.RoomRole.ADMIN)
		closed = len(members) == 1
		if closed:
			await tx.clear_room(room_id)
			await tx.deactivate_room(room_id)
		return promoted, closed

	async def _after_leave(
		self,
		room_id: str,
		user_id: str,
		promoted: Optional[models.RoomMember],
		closed: bool,
	) -> None:
		obs_metrics.inc_member_change("exited")
		await outbox.append_room_event("member_left", room_id, user_id=user_id)
		if promoted is not None:
			obs_metrics.inc_member_change("auto_promoted")
			await outbox.append_room_event("member_promoted", room_id, user_id=promoted.user_id, meta={"auto": True})
			logger.info("room_admin_handoff", extra={"room_id": room_id, "promoted_user_id": promoted.user_id})
		if closed:
			obs_metrics.inc_room_deleted("last_member_left")
			await outbox.append_room_event("room_closed", room_id, user_id=user_id)

	async def promote_member(self, auth_user: AuthenticatedUser, room_id: str, target_user_id: str) -> schemas.RoomMemberSummary:
		async with self._repo.transaction() as tx:
			policy.ensure_active(await tx.lock_room(room_id))
			policy.require_admin(await tx.get_member(room_id, auth_user.id))
			target = policy.ensure_target(await tx.get_member(room_id, target_user_id))
			policy.ensure_can_promote(target)
			await tx.set_role(room_id, target_user_id, models.RoomRole.ADMIN)
			target.role = models.RoomRole.ADMIN
			users = await tx.get_users([target_user_id])
		obs_metrics.inc_member_change("promoted")
		await outbox.append_room_event("member_promoted", room_id, user_id=target_user_id, meta={"by": auth_user.id})
		return _member_summary(target, users)

	async def list_members(self, auth_user: AuthenticatedUser, room_id: str) -> List[schemas.RoomMemberSummary]:
		async with self._repo.transaction() as tx:
			policy.ensure_active(await tx.get_room(room_id))
			policy.require_member(await tx.get_member(room_id, auth_user.id))
			members = await tx.list_members(room_id)
			users = await tx.get_users(m.user_id for m in members)
		return [_member_summary(m, users) for m in members]

	async def _admit(self, tx, room: models.Room, user_id: str) -> models.RoomMember:
		# caller holds the room lock, so the capacity check and insert are atomic
		policy.ensure_not_member(await tx.get_member(room.id, user_id))
		room.members_count = await tx.count_members(room.id)
		policy.ensure_capacity_available(room)
		member = models.RoomMember(
			room_id=room.id,
			user_id=user_id,
			role=models.RoomRole.MEMBER,
			joined_at=datetime.now(timezone.utc),
		)
		await tx.insert_member(member)
		return member

	async def _resolve_initial_members(
		self,
		tx,
		creator_id: str,
		identifiers: List[str],
	) -> tuple[List[models.DirectoryUser], List[str]]:
		resolved: Dict[str, models.DirectoryUser] = {}
		skipped: List[str] = []
		for raw in identifiers:
			identifier = (raw or "").strip()
			if not identifier:
				continue
			user = await tx.find_user(identifier)
			if user is None or user.id == creator_id:
				skipped.append(identifier)
				continue
			resolved.setdefault(user.id, user)
		return list(resolved.values()), skipped

	async def _insert_room(
		self,
		tx,
		*,
		name: str,
		description: str,
		creator_id: str,
		max_members: int,
		created_at: datetime,
	) -> models.Room:
		for attempt in range(1, settings.room_code_attempts + 1):
			room = models.Room(
				id=str(ulid.new()),
				name=name,
				description=description,
				code=codes.generate_code(),
				creator_id=creator_id,
				active=True,
				max_members=max_members,
				created_at=created_at,
			)
			if await tx.insert_room(room):
				return room
			obs_metrics.inc_code_collision()
			logger.info("room_code_collision", extra={"attempt": attempt})
		logger.error("room_code_exhausted", extra={"attempts": settings.room_code_attempts})
		raise policy.RoomPolicyError("room_code_exhausted", status_code=503)
