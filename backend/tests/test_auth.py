"""Tests for JWT claims and the auth dependencies."""

from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import jwt

from app.auth.deps import UserRole, get_current_user, require_role
from app.auth.jwt import ALGORITHM, create_access_token, decode_token
from app.config import settings


@pytest.mark.auth
@pytest.mark.asyncio
class TestTokens:
    async def test_claims_round_trip(self):
        token = create_access_token("user-1", "priya", "admin", "ws-1")
        payload = decode_token(token)
        assert payload["sub"] == "user-1"
        assert payload["username"] == "priya"
        assert payload["role"] == "admin"
        assert payload["workspace_id"] == "ws-1"
        assert payload["type"] == "access"

    async def test_expired_token_decodes_empty(self):
        token = create_access_token(
            "user-1", "priya", "admin", "ws-1", expires_delta=timedelta(seconds=-1)
        )
        assert decode_token(token) == {}

    async def test_current_user_from_claims(self):
        user = await get_current_user(create_access_token("user-1", "priya", "admin", "ws-1"))
        assert user.id == "user-1"
        assert user.workspace_id == "ws-1"

    async def test_token_without_workspace_is_forbidden(self):
        token = jwt.encode(
            {"sub": "user-1", "type": "access", "role": "admin"},
            settings.secret_key,
            algorithm=ALGORITHM,
        )
        with pytest.raises(HTTPException) as exc:
            await get_current_user(token)
        assert exc.value.status_code == 403

    async def test_refresh_type_is_rejected(self):
        token = jwt.encode(
            {"sub": "user-1", "type": "refresh", "workspace_id": "ws-1"},
            settings.secret_key,
            algorithm=ALGORITHM,
        )
        with pytest.raises(HTTPException) as exc:
            await get_current_user(token)
        assert exc.value.status_code == 401

    async def test_require_role(self, admin_user):
        check = require_role(UserRole.ADMIN)
        assert await check(admin_user) is admin_user

        employee = admin_user.__class__(id="u2", username="arun", role="employee", workspace_id="ws")
        with pytest.raises(HTTPException) as exc:
            await check(employee)
        assert exc.value.status_code == 403
