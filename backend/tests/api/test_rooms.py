import pytest


ALICE = {"X-User-Id": "user-a"}
BOB = {"X-User-Id": "user-b"}
CAROL = {"X-User-Id": "user-c"}


async def _create_room(api_client, headers=ALICE, **payload):
    body = {"name": "Book Club", **payload}
    response = await api_client.post("/rooms", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_join_and_capacity_flow(api_client):
    room = await _create_room(api_client, description="Monthly picks", max_members=2)
    assert len(room["room_code"]) == 6
    assert room["member_count"] == 1
    assert room["role"] == "admin"
    assert room["is_active"] is True

    join_response = await api_client.post("/rooms/join", json={"room_code": room["room_code"].lower()}, headers=BOB)
    assert join_response.status_code == 200
    assert join_response.json()["member_count"] == 2

    full_response = await api_client.post("/rooms/join", json={"room_code": room["room_code"]}, headers=CAROL)
    assert full_response.status_code == 409
    assert full_response.json()["detail"] == "room_full"

    again = await api_client.post("/rooms/join", json={"room_code": room["room_code"]}, headers=BOB)
    assert again.status_code == 409
    assert again.json()["detail"] == "already_member"


@pytest.mark.asyncio
async def test_create_room_validation(api_client):
    blank = await api_client.post("/rooms", json={"name": "   "}, headers=ALICE)
    assert blank.status_code == 400
    assert blank.json()["detail"] == "name_required"
    assert blank.json()["request_id"]

    too_big = await api_client.post("/rooms", json={"name": "Big", "max_members": 500}, headers=ALICE)
    assert too_big.status_code == 400
    assert too_big.json()["detail"] == "invalid_max_members"

    missing = await api_client.post("/rooms", json={}, headers=ALICE)
    assert missing.status_code == 422
    assert missing.json()["detail"] == "validation_error"


@pytest.mark.asyncio
async def test_requests_without_identity_are_rejected(api_client):
    response = await api_client.get("/rooms")
    assert response.status_code == 401
    assert response.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_list_rooms_is_not_cached_and_scoped(api_client):
    mine = await _create_room(api_client, name="Mine")
    theirs = await _create_room(api_client, headers=BOB, name="Theirs")

    response = await api_client.get("/rooms", headers=ALICE)
    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    assert [r["id"] for r in response.json()] == [mine["id"]]

    everything = await api_client.get("/rooms", params={"scope": "all"}, headers=ALICE)
    assert [r["id"] for r in everything.json()] == [theirs["id"], mine["id"]]

    invalid = await api_client.get("/rooms", params={"scope": "archived"}, headers=ALICE)
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_room_detail_and_members_require_membership(api_client):
    room = await _create_room(api_client, add_members=["bob", "nobody"])
    assert room["skipped_members"] == ["nobody"]
    assert room["member_count"] == 2

    detail = await api_client.get(f"/rooms/{room['id']}", headers=BOB)
    assert detail.status_code == 200
    assert detail.headers["cache-control"] == "no-store"
    body = detail.json()
    assert body["role"] == "member"
    assert [m["username"] for m in body["members"]] == ["alice", "bob"]

    outsider = await api_client.get(f"/rooms/{room['id']}", headers=CAROL)
    assert outsider.status_code == 403

    members = await api_client.get(f"/rooms/{room['id']}/members", headers=ALICE)
    assert members.status_code == 200
    assert [m["role"] for m in members.json()["items"]] == ["admin", "member"]

    missing = await api_client.get("/rooms/does-not-exist", headers=ALICE)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "room_not_found"


@pytest.mark.asyncio
async def test_non_admin_delete_is_forbidden_and_harmless(api_client):
    room = await _create_room(api_client)
    await api_client.post("/rooms/join", json={"room_code": room["room_code"]}, headers=BOB)
    await api_client.post(f"/rooms/{room['id']}/cart", json={"product_id": 42, "quantity": 2}, headers=ALICE)

    for _ in range(2):
        response = await api_client.delete(f"/rooms/{room['id']}", headers=BOB)
        assert response.status_code == 403
        assert response.json()["detail"] == "forbidden"

    detail = (await api_client.get(f"/rooms/{room['id']}", headers=ALICE)).json()
    assert detail["member_count"] == 2
    assert detail["cart_total"] == 1000


@pytest.mark.asyncio
async def test_promote_then_remove(api_client):
    room = await _create_room(api_client)
    for headers in (BOB, CAROL):
        await api_client.post("/rooms/join", json={"room_code": room["room_code"]}, headers=headers)

    denied = await api_client.delete(f"/rooms/{room['id']}/members/user-c", headers=BOB)
    assert denied.status_code == 403

    promoted = await api_client.post(f"/rooms/{room['id']}/members/user-b/promote", headers=ALICE)
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "admin"

    again = await api_client.post(f"/rooms/{room['id']}/members/user-b/promote", headers=ALICE)
    assert again.status_code == 409
    assert again.json()["detail"] == "already_admin"

    removed = await api_client.delete(f"/rooms/{room['id']}/members/user-c", headers=BOB)
    assert removed.status_code == 200

    gone = await api_client.delete(f"/rooms/{room['id']}/members/user-c", headers=BOB)
    assert gone.status_code == 404
    assert gone.json()["detail"] == "not_a_member"


@pytest.mark.asyncio
async def test_member_removing_self_is_forbidden(api_client):
    room = await _create_room(api_client)
    await api_client.post("/rooms/join", json={"room_code": room["room_code"]}, headers=BOB)

    denied = await api_client.delete(f"/rooms/{room['id']}/members/user-b", headers=BOB)
    assert denied.status_code == 403
    assert denied.json()["detail"] == "forbidden"

    roster = await api_client.get(f"/rooms/{room['id']}/members", headers=ALICE)
    assert [m["user_id"] for m in roster.json()["items"]] == ["user-a", "user-b"]

    left = await api_client.post(f"/rooms/{room['id']}/exit", headers=BOB)
    assert left.status_code == 200


@pytest.mark.asyncio
async def test_add_member_by_identifier(api_client):
    room = await _create_room(api_client)
    added = await api_client.post(f"/rooms/{room['id']}/members", json={"identifier": "bob@example.com"}, headers=ALICE)
    assert added.status_code == 201
    assert added.json()["user_id"] == "user-b"

    unknown = await api_client.post(f"/rooms/{room['id']}/members", json={"identifier": "ghost"}, headers=ALICE)
    assert unknown.status_code == 404
    assert unknown.json()["detail"] == "user_not_found"

    by_member = await api_client.post(f"/rooms/{room['id']}/members", json={"identifier": "carol"}, headers=BOB)
    assert by_member.status_code == 403


@pytest.mark.asyncio
async def test_exit_hands_off_admin_and_last_exit_closes(api_client):
    room = await _create_room(api_client)
    await api_client.post("/rooms/join", json={"room_code": room["room_code"]}, headers=BOB)

    exited = await api_client.post(f"/rooms/{room['id']}/exit", headers=ALICE)
    assert exited.status_code == 200
    assert exited.json() == {"room_id": room["id"], "room_closed": False, "promoted_user_id": "user-b"}

    members = (await api_client.get(f"/rooms/{room['id']}/members", headers=BOB)).json()["items"]
    assert [(m["user_id"], m["role"]) for m in members] == [("user-b", "admin")]

    closed = await api_client.post(f"/rooms/{room['id']}/exit", headers=BOB)
    assert closed.json()["room_closed"] is True

    after = await api_client.get(f"/rooms/{room['id']}", headers=BOB)
    assert after.status_code == 404
    assert after.json()["detail"] == "room_inactive"


@pytest.mark.asyncio
async def test_delete_room_cascades(api_client):
    room = await _create_room(api_client)
    await api_client.post("/rooms/join", json={"room_code": room["room_code"]}, headers=BOB)
    await api_client.post(f"/rooms/{room['id']}/cart", json={"product_id": 7, "quantity": 1}, headers=BOB)

    deleted = await api_client.delete(f"/rooms/{room['id']}", headers=ALICE)
    assert deleted.status_code == 200

    cart = await api_client.get(f"/rooms/{room['id']}/cart", headers=BOB)
    assert cart.status_code == 404
    add = await api_client.post(f"/rooms/{room['id']}/cart", json={"product_id": 7, "quantity": 1}, headers=ALICE)
    assert add.status_code == 404
    assert add.json()["detail"] == "room_inactive"
    rejoin = await api_client.post("/rooms/join", json={"room_code": room["room_code"]}, headers=CAROL)
    assert rejoin.status_code == 404
    assert (await api_client.get("/rooms", headers=BOB)).json() == []
