"""Domain models for shopping rooms, memberships and shared carts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class RoomRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


@dataclass(slots=True)
class Room:
    """Persisted representation of a shopping room.

    ``members_count`` and ``cart_total`` are filled in by the repository at
    read time and never written back.
    """

    id: str
    name: str
    description: str
    code: str
    creator_id: str
    active: bool
    max_members: int
    created_at: datetime
    members_count: int = 0
    cart_total: int = 0

    def is_full(self) -> bool:
        return self.members_count >= self.max_members

    def to_summary(self, role: Optional[RoomRole] = None) -> dict:
        """Return a dictionary payload suitable for the RoomSummary schema."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "room_code": self.code,
            "creator_id": self.creator_id,
            "is_active": self.active,
            "max_members": self.max_members,
            "member_count": self.members_count,
            "cart_total": self.cart_total,
            "created_at": self.created_at,
            "role": role.value if role is not None else None,
        }


@dataclass(slots=True)
class RoomMember:
    room_id: str
    user_id: str
    role: RoomRole
    joined_at: datetime

    def is_admin(self) -> bool:
        return self.role is RoomRole.ADMIN

    def sort_key(self) -> tuple:
        # admins first, then by join time
        return (0 if self.is_admin() else 1, self.joined_at)


@dataclass(slots=True)
class CartItem:
    id: str
    room_id: Optional[str]
    user_id: str
    product_id: int
    quantity: int
    added_at: datetime

    def is_personal(self) -> bool:
        return self.room_id is None


@dataclass(slots=True)
class Product:
    id: int
    name: str
    price: int


@dataclass(slots=True)
class DirectoryUser:
    id: str
    username: str
    email: Optional[str] = None


@dataclass(slots=True)
class CartLine:
    """A cart item joined with its product for display."""

    item: CartItem
    product_name: str
    unit_price: int

    @property
    def line_total(self) -> int:
        return self.item.quantity * self.unit_price


def cart_total(lines: list[CartLine]) -> int:
    return sum(line.line_total for line in lines)
