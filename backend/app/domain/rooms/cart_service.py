"""Shared and personal cart operations.

Room carts are editable by any member of an active room; personal carts
(``room_id`` of ``None``) belong to a single user. Totals are always
computed from the items present at read time.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import ulid

from app.domain.rooms import models, outbox, policy, schemas
from app.domain.rooms.repository import RoomRepository
from app.infra.auth import AuthenticatedUser
from app.obs import logging as obs_logging
from app.obs import metrics as obs_metrics

logger = obs_logging.get_logger("rooms.cart")


def _scope(room_id: Optional[str]) -> str:
	return "personal" if room_id is None else "room"


def _line_view(line: models.CartLine) -> schemas.CartItemView:
	return schemas.CartItemView(
		id=line.item.id,
		room_id=line.item.room_id,
		user_id=line.item.user_id,
		product_id=line.item.product_id,
		product_name=line.product_name,
		unit_price=line.unit_price,
		quantity=line.item.quantity,
		line_total=line.line_total,
		added_at=line.item.added_at,
	)


class RoomCartService:
	def __init__(self, repository: RoomRepository | None = None) -> None:
		self._repo = repository or RoomRepository()

	async def add_item(
		self,
		auth_user: AuthenticatedUser,
		room_id: Optional[str],
		payload: schemas.CartItemAddRequest,
	) -> schemas.CartItemView:
		quantity = policy.validate_quantity(payload.quantity)
		async with self._repo.transaction() as tx:
			if room_id is not None:
				# room lock orders this insert against a concurrent delete
				policy.ensure_active(await tx.lock_room(room_id))
				policy.require_member(await tx.get_member(room_id, auth_user.id))
			product = await tx.get_product(payload.product_id)
			if product is None:
				raise policy.RoomNotFound("product_not_found")
			item = models.CartItem(
				id=str(ulid.new()),
				room_id=room_id,
				user_id=auth_user.id,
				product_id=product.id,
				quantity=quantity,
				added_at=datetime.now(timezone.utc),
			)
			await tx.insert_item(item)
		obs_metrics.inc_cart_mutation(_scope(room_id), "added")
		if room_id is not None:
			await outbox.append_room_event(
				"cart_item_added",
				room_id,
				user_id=auth_user.id,
				meta={"item_id": item.id, "product_id": product.id, "quantity": quantity},
			)
		return _line_view(models.CartLine(item=item, product_name=product.name, unit_price=product.price))

	async def update_quantity(self, auth_user: AuthenticatedUser, item_id: str, quantity: int) -> schemas.CartItemUpdateResponse:
		quantity = policy.validate_quantity(quantity, allow_zero=True)
		async with self._repo.transaction() as tx:
			item = await self._authorize_item(tx, auth_user, item_id)
			if quantity == 0:
				await tx.delete_item(item_id)
				line = None
			else:
				await tx.update_item_quantity(item_id, quantity)
				line = await tx.get_cart_line(item_id)
		action = "removed" if line is None else "updated"
		obs_metrics.inc_cart_mutation(_scope(item.room_id), action)
		if item.room_id is not None:
			await outbox.append_room_event(
				f"cart_item_{action}",
				item.room_id,
				user_id=auth_user.id,
				meta={"item_id": item_id, "quantity": quantity},
			)
		return schemas.CartItemUpdateResponse(
			removed=line is None,
			item=_line_view(line) if line is not None else None,
		)

	async def remove_item(self, auth_user: AuthenticatedUser, item_id: str) -> None:
		async with self._repo.transaction() as tx:
			item = await self._authorize_item(tx, auth_user, item_id)
			await tx.delete_item(item_id)
		obs_metrics.inc_cart_mutation(_scope(item.room_id), "removed")
		if item.room_id is not None:
			await outbox.append_room_event(
				"cart_item_removed",
				item.room_id,
				user_id=auth_user.id,
				meta={"item_id": item_id},
			)

	async def list_items(self, auth_user: AuthenticatedUser, room_id: Optional[str] = None) -> schemas.CartView:
		async with self._repo.transaction() as tx:
			if room_id is not None:
				policy.ensure_active(await tx.get_room(room_id))
				policy.require_member(await tx.get_member(room_id, auth_user.id))
				lines = await tx.list_cart_lines(room_id=room_id)
			else:
				lines = await tx.list_cart_lines(user_id=auth_user.id)
		return schemas.CartView(
			room_id=room_id,
			items=[_line_view(line) for line in lines],
			item_count=sum(line.item.quantity for line in lines),
			cart_total=models.cart_total(lines),
		)

	async def cart_total(self, room_id: str) -> int:
		async with self._repo.transaction() as tx:
			policy.ensure_active(await tx.get_room(room_id))
			lines = await tx.list_cart_lines(room_id=room_id)
		return models.cart_total(lines)

	async def _authorize_item(self, tx, auth_user: AuthenticatedUser, item_id: str) -> models.CartItem:
		item = await tx.get_item(item_id)
		if item is None:
			raise policy.RoomNotFound("item_not_found")
		if item.room_id is not None:
			policy.ensure_active(await tx.lock_room(item.room_id))
			# re-read under the room lock; a racing delete may have cleared it
			item = await tx.get_item(item_id)
			if item is None:
				raise policy.RoomNotFound("item_not_found")
		member = await tx.get_member(item.room_id, auth_user.id) if item.room_id is not None else None
		policy.ensure_item_access(item, auth_user.id, member)
		return item
