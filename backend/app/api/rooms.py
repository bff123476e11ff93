"""FastAPI routes for shopping rooms and their members."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.domain.rooms import RoomCartService, RoomService, policy, schemas
from app.infra.auth import AuthenticatedUser, get_current_user
from app.obs import metrics as obs_metrics

router = APIRouter(prefix="/rooms", tags=["rooms"])

_room_service = RoomService()
_cart_service = RoomCartService()

NO_STORE = "no-store"


def _as_http_error(exc: policy.RoomPolicyError) -> HTTPException:
	obs_metrics.inc_policy_reject(exc.code)
	return HTTPException(status_code=exc.status_code, detail=exc.detail)


@router.post("", response_model=schemas.RoomCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_room_endpoint(
	payload: schemas.RoomCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomCreateResponse:
	try:
		return await _room_service.create_room(auth_user, payload)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.get("", response_model=list[schemas.RoomSummary])
async def list_rooms_endpoint(
	response: Response,
	scope: str = Query(default="mine", pattern="^(mine|all)$"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> list[schemas.RoomSummary]:
	response.headers["Cache-Control"] = NO_STORE
	try:
		return await _room_service.list_rooms(auth_user, scope)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.post("/join", response_model=schemas.RoomSummary)
async def join_by_code_endpoint(
	payload: schemas.JoinByCodeRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomSummary:
	try:
		return await _room_service.join_by_code(auth_user, payload)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.get("/{room_id}", response_model=schemas.RoomDetail)
async def get_room_endpoint(
	room_id: str,
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomDetail:
	response.headers["Cache-Control"] = NO_STORE
	try:
		return await _room_service.get_room(auth_user, room_id)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.delete("/{room_id}", status_code=status.HTTP_200_OK)
async def delete_room_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	try:
		await _room_service.delete_room(auth_user, room_id)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"ok": True}


@router.post("/{room_id}/exit", response_model=schemas.RoomExitResponse)
async def exit_room_endpoint(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomExitResponse:
	try:
		return await _room_service.exit_room(auth_user, room_id)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.get("/{room_id}/members", response_model=schemas.RoomMembersResponse)
async def list_members_endpoint(
	room_id: str,
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomMembersResponse:
	response.headers["Cache-Control"] = NO_STORE
	try:
		items = await _room_service.list_members(auth_user, room_id)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc
	return schemas.RoomMembersResponse(items=items)


@router.post("/{room_id}/members", response_model=schemas.RoomMemberSummary, status_code=status.HTTP_201_CREATED)
async def add_member_endpoint(
	room_id: str,
	payload: schemas.AddMemberRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomMemberSummary:
	try:
		return await _room_service.add_member(auth_user, room_id, payload)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.delete("/{room_id}/members/{user_id}", status_code=status.HTTP_200_OK)
async def remove_member_endpoint(
	room_id: str,
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	try:
		await _room_service.remove_member(auth_user, room_id, user_id)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"ok": True}


@router.post("/{room_id}/members/{user_id}/promote", response_model=schemas.RoomMemberSummary)
async def promote_member_endpoint(
	room_id: str,
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.RoomMemberSummary:
	try:
		return await _room_service.promote_member(auth_user, room_id, user_id)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.get("/{room_id}/cart", response_model=schemas.CartView)
async def room_cart_endpoint(
	room_id: str,
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.CartView:
	response.headers["Cache-Control"] = NO_STORE
	try:
		return await _cart_service.list_items(auth_user, room_id)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc


@router.post("/{room_id}/cart", response_model=schemas.CartItemView, status_code=status.HTTP_201_CREATED)
async def add_room_cart_item_endpoint(
	room_id: str,
	payload: schemas.CartItemAddRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.CartItemView:
	try:
		return await _cart_service.add_item(auth_user, room_id, payload)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc
