import pytest

from app.domain.rooms import policy
from app.domain.rooms.cart_service import RoomCartService
from app.domain.rooms.schemas import CartItemAddRequest, JoinByCodeRequest, RoomCreateRequest
from app.domain.rooms.service import RoomService
from app.infra.auth import AuthenticatedUser


ALICE = AuthenticatedUser(id="user-a")
BOB = AuthenticatedUser(id="user-b")
CAROL = AuthenticatedUser(id="user-c")


async def _room_with_bob(rooms: RoomService):
    room = await rooms.create_room(ALICE, RoomCreateRequest(name="Book Club", max_members=4))
    await rooms.join_by_code(BOB, JoinByCodeRequest(room_code=room.room_code))
    return room


@pytest.mark.asyncio
async def test_shared_cart_total_tracks_every_change():
    rooms = RoomService()
    carts = RoomCartService()
    room = await _room_with_bob(rooms)

    alice_item = await carts.add_item(ALICE, room.id, CartItemAddRequest(product_id=42, quantity=2))
    bob_item = await carts.add_item(BOB, room.id, CartItemAddRequest(product_id=7, quantity=1))
    assert alice_item.line_total == 1000
    assert await carts.cart_total(room.id) == 1300

    updated = await carts.update_quantity(BOB, bob_item.id, 3)
    assert updated.removed is False
    assert updated.item.quantity == 3
    assert updated.item.line_total == 900
    assert await carts.cart_total(room.id) == 1900

    await carts.remove_item(ALICE, alice_item.id)
    view = await carts.list_items(BOB, room.id)
    assert view.cart_total == 900
    assert [item.id for item in view.items] == [bob_item.id]
    assert view.item_count == 3

    summary = (await rooms.list_rooms(ALICE))[0]
    assert summary.cart_total == 900


@pytest.mark.asyncio
async def test_cart_total_after_mixed_sequence():
    rooms = RoomService()
    carts = RoomCartService()
    room = await _room_with_bob(rooms)
    first = await carts.add_item(ALICE, room.id, CartItemAddRequest(product_id=42, quantity=1))
    second = await carts.add_item(BOB, room.id, CartItemAddRequest(product_id=7, quantity=2))
    third = await carts.add_item(BOB, room.id, CartItemAddRequest(product_id=9, quantity=1))
    await carts.remove_item(BOB, first.id)
    await carts.update_quantity(ALICE, second.id, 5)

    view = await carts.list_items(ALICE, room.id)
    assert view.cart_total == sum(item.quantity * item.unit_price for item in view.items)
    assert view.cart_total == 5 * 300 + 1250
    assert {item.id for item in view.items} == {second.id, third.id}


@pytest.mark.asyncio
async def test_update_to_zero_removes_item():
    rooms = RoomService()
    carts = RoomCartService()
    room = await _room_with_bob(rooms)
    item = await carts.add_item(ALICE, room.id, CartItemAddRequest(product_id=42, quantity=2))
    result = await carts.update_quantity(ALICE, item.id, 0)
    assert result.removed is True
    assert result.item is None
    assert (await carts.list_items(ALICE, room.id)).items == []
    with pytest.raises(policy.RoomValidationError):
        await carts.update_quantity(ALICE, item.id, -1)


@pytest.mark.asyncio
async def test_non_member_cannot_touch_room_cart():
    rooms = RoomService()
    carts = RoomCartService()
    room = await _room_with_bob(rooms)
    item = await carts.add_item(BOB, room.id, CartItemAddRequest(product_id=7, quantity=1))

    with pytest.raises(policy.RoomForbidden):
        await carts.add_item(CAROL, room.id, CartItemAddRequest(product_id=42, quantity=1))
    with pytest.raises(policy.RoomForbidden):
        await carts.update_quantity(CAROL, item.id, 4)
    with pytest.raises(policy.RoomForbidden):
        await carts.remove_item(CAROL, item.id)
    with pytest.raises(policy.RoomForbidden):
        await carts.list_items(CAROL, room.id)
    assert await carts.cart_total(room.id) == 300


@pytest.mark.asyncio
async def test_add_item_validation_and_missing_references():
    rooms = RoomService()
    carts = RoomCartService()
    room = await _room_with_bob(rooms)
    with pytest.raises(policy.RoomNotFound) as exc:
        await carts.add_item(ALICE, room.id, CartItemAddRequest(product_id=999, quantity=1))
    assert exc.value.code == "product_not_found"
    with pytest.raises(policy.RoomNotFound):
        await carts.add_item(ALICE, "missing-room", CartItemAddRequest(product_id=42, quantity=1))
    with pytest.raises(policy.RoomNotFound) as exc:
        await carts.remove_item(ALICE, "missing-item")
    assert exc.value.code == "item_not_found"


@pytest.mark.asyncio
async def test_adding_to_deleted_room_fails():
    rooms = RoomService()
    carts = RoomCartService()
    room = await _room_with_bob(rooms)
    item = await carts.add_item(BOB, room.id, CartItemAddRequest(product_id=7, quantity=1))
    await rooms.delete_room(ALICE, room.id)
    with pytest.raises(policy.RoomInactive):
        await carts.add_item(BOB, room.id, CartItemAddRequest(product_id=7, quantity=1))
    with pytest.raises(policy.RoomNotFound):
        await carts.update_quantity(BOB, item.id, 2)


@pytest.mark.asyncio
async def test_personal_cart_is_isolated():
    rooms = RoomService()
    carts = RoomCartService()
    room = await _room_with_bob(rooms)
    await carts.add_item(ALICE, room.id, CartItemAddRequest(product_id=42, quantity=1))
    mine = await carts.add_item(ALICE, None, CartItemAddRequest(product_id=9, quantity=2))
    assert mine.room_id is None

    alice_cart = await carts.list_items(ALICE)
    assert alice_cart.room_id is None
    assert [item.id for item in alice_cart.items] == [mine.id]
    assert alice_cart.cart_total == 2500

    assert (await carts.list_items(BOB)).items == []
    assert await carts.cart_total(room.id) == 500

    with pytest.raises(policy.RoomForbidden) as exc:
        await carts.update_quantity(BOB, mine.id, 1)
    assert exc.value.code == "not_item_owner"
    with pytest.raises(policy.RoomForbidden):
        await carts.remove_item(BOB, mine.id)

    await carts.remove_item(ALICE, mine.id)
    assert (await carts.list_items(ALICE)).items == []
