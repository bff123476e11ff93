"""Rooms domain exports."""

from .cart_service import RoomCartService
from .service import RoomService

__all__ = ["RoomService", "RoomCartService"]
