"""Outbox helpers for room-domain events.

Every room mutation appends one entry to a Redis stream so that a push
fan-out can subscribe per room; clients that poll never read it.
"""

from __future__ import annotations

from typing import Any, Mapping

from redis.exceptions import RedisError

from app.infra.redis import redis_client
from app.obs import logging as obs_logging
from app.settings import settings

ROOM_EVENT_STREAM = "x:rooms.events"
ROOM_EVENT_MAXLEN = 10_000

logger = obs_logging.get_logger("rooms.outbox")


async def append_room_event(event: str, room_id: str | None, *, user_id: str | None = None, meta: Mapping[str, Any] | None = None) -> None:
	if not settings.room_events_enabled:
		return
	fields: dict[str, Any] = {
		"event": event,
		"room_id": room_id or "",
	}
	if user_id:
		fields["user_id"] = str(user_id)
	if meta:
		for key, value in meta.items():
			fields[f"meta_{key}"] = str(value)
	try:
		await redis_client.xadd(ROOM_EVENT_STREAM, fields, maxlen=ROOM_EVENT_MAXLEN, approximate=True)
	except (RedisError, OSError):
		# the mutation is already committed
		logger.warning("room_event_append_failed", extra={"event": event, "room_id": room_id}, exc_info=True)
