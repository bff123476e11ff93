"""FastAPI routes for personal carts and individual cart items."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from app.api.rooms import NO_STORE, _as_http_error
from app.domain.rooms import RoomCartService, policy, schemas
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/cart", tags=["cart"])

_cart_service = RoomCartService()


@router.get("", response_model=schemas.CartView)
async def personal_cart_endpoint(
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.CartView:
	response.headers["Cache-Control"] = NO_STORE
	try:
		return await _cart_service.list_items(auth_user, None)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.post("", response_model=schemas.CartItemView, status_code=status.HTTP_201_CREATED)
async def add_personal_item_endpoint(
	payload: schemas.CartItemAddRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.CartItemView:
	try:
		return await _cart_service.add_item(auth_user, None, payload)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.patch("/items/{item_id}", response_model=schemas.CartItemUpdateResponse)
async def update_item_endpoint(
	item_id: str,
	payload: schemas.CartItemUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.CartItemUpdateResponse:
	try:
		return await _cart_service.update_quantity(auth_user, item_id, payload.quantity)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.delete("/items/{item_id}", status_code=status.HTTP_200_OK)
async def remove_item_endpoint(
	item_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	try:
		await _cart_service.remove_item(auth_user, item_id)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"ok": True}
