import pytest
from fastapi import HTTPException

from app.infra import jwt as jwt_helper
from app.infra.auth import AuthenticatedUser, verify_access_jwt
from app.settings import settings


def test_verify_access_jwt_reads_subject():
    token = jwt_helper.encode_access({"sub": " user-a ", "name": "Alice", "roles": "admin"})
    user = verify_access_jwt(token)
    assert user == AuthenticatedUser(id="user-a")


def test_verify_access_jwt_rejects_expired_and_missing_sub():
    expired = jwt_helper.encode_access({"sub": "user-a"}, ttl_seconds=-60)
    with pytest.raises(HTTPException) as exc:
        verify_access_jwt(expired)
    assert exc.value.status_code == 401
    with pytest.raises(HTTPException):
        verify_access_jwt(jwt_helper.encode_access({"name": "no subject"}))


@pytest.mark.asyncio
async def test_bearer_token_authenticates_api_calls(api_client):
    token = jwt_helper.encode_access({"sub": "user-a"})
    response = await api_client.post(
        "/rooms",
        json={"name": "Token room"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 201
    assert response.json()["creator_id"] == "user-a"


@pytest.mark.asyncio
async def test_dev_header_ignored_outside_dev(api_client, monkeypatch):
    monkeypatch.setattr(settings, "environment", "production")
    response = await api_client.get("/rooms", headers={"X-User-Id": "user-a"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_bearer_token_wins_over_dev_header(api_client):
    token = jwt_helper.encode_access({"sub": "user-b"})
    response = await api_client.post(
        "/rooms",
        json={"name": "Bob's list"},
        headers={"Authorization": f"Bearer {token}", "X-User-Id": "user-a"},
    )
    assert response.status_code == 201
    assert response.json()["creator_id"] == "user-b"
