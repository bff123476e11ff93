"""Pydantic schemas for the shopping rooms and cart API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

SCOPE_VALUES = ("mine", "all")


class RoomCreateRequest(BaseModel):
    name: str = Field(..., max_length=120)
    description: str = Field(default="", max_length=1000)
    max_members: Optional[int] = Field(default=None, ge=1)
    add_members: List[str] = Field(default_factory=list, max_length=100)


class RoomSummary(BaseModel):
    id: str
    name: str
    description: str
    room_code: str
    creator_id: str
    is_active: bool
    max_members: int
    member_count: int
    cart_total: int
    created_at: datetime
    role: Optional[str] = None


class RoomCreateResponse(RoomSummary):
    skipped_members: List[str] = Field(default_factory=list)


class RoomMemberSummary(BaseModel):
    user_id: str
    role: str
    joined_at: datetime
    username: Optional[str] = None


class RoomDetail(RoomSummary):
    members: List[RoomMemberSummary] = Field(default_factory=list)


class RoomMembersResponse(BaseModel):
    items: List[RoomMemberSummary]


class RoomExitResponse(BaseModel):
    room_id: str
    room_closed: bool = False
    promoted_user_id: Optional[str] = None


class JoinByCodeRequest(BaseModel):
    room_code: str = Field(..., min_length=1, max_length=32)


class AddMemberRequest(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=255, description="Username or email")


class CartItemAddRequest(BaseModel):
    product_id: int = Field(..., ge=1)
    quantity: int = Field(default=1, ge=1, le=999)


class CartItemUpdateRequest(BaseModel):
    quantity: int = Field(..., ge=0, le=999)


class CartItemView(BaseModel):
    id: str
    room_id: Optional[str] = None
    user_id: str
    product_id: int
    product_name: str
    unit_price: int
    quantity: int
    line_total: int
    added_at: datetime


class CartView(BaseModel):
    room_id: Optional[str] = None
    items: List[CartItemView]
    item_count: int
    cart_total: int


class CartItemUpdateResponse(BaseModel):
    removed: bool
    item: Optional[CartItemView] = None
