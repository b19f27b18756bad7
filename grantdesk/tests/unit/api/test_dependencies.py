"""Tests for shared FastAPI dependency helpers."""

from __future__ import annotations

from types import SimpleNamespace

import jwt
import pytest
from fastapi import HTTPException

from grantdesk.api import dependencies
from grantdesk.auth import SupabaseAuthManager

JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"


class StubSupabaseAuth:
    def get_user(self, token):
        return None


def _auth_manager() -> SupabaseAuthManager:
    return SupabaseAuthManager(None, None, JWT_SECRET, client=SimpleNamespace(auth=StubSupabaseAuth()))


def _token(**claims) -> str:
    payload = {"sub": "user-1", "email": "ana@example.com", "aud": "authenticated"}
    payload.update(claims)
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def test_get_authenticated_user_requires_header() -> None:
    with pytest.raises(HTTPException) as exc:
        dependencies.get_authenticated_user(authorization=None, auth_manager=_auth_manager())

    assert exc.value.status_code == 401


def test_get_authenticated_user_rejects_missing_bearer_prefix() -> None:
    with pytest.raises(HTTPException) as exc:
        dependencies.get_authenticated_user(authorization=f"Token {_token()}", auth_manager=_auth_manager())

    assert exc.value.status_code == 401


def test_get_authenticated_user_rejects_foreign_signature() -> None:
    forged = jwt.encode(
        {"sub": "user-1", "aud": "authenticated"},
        "another-secret-with-enough-length-for-hs256",
        algorithm="HS256",
    )

    with pytest.raises(HTTPException) as exc:
        dependencies.get_authenticated_user(authorization=f"Bearer {forged}", auth_manager=_auth_manager())

    assert exc.value.status_code == 401


def test_get_authenticated_user_returns_payload() -> None:
    token = _token(user_metadata={"full_name": "Ana"}, app_metadata={"roles": ["admin"]})

    result = dependencies.get_authenticated_user(authorization=f"Bearer {token}", auth_manager=_auth_manager())

    assert result == {
        "id": "user-1",
        "email": "ana@example.com",
        "metadata": {"full_name": "Ana"},
        "app_metadata": {"roles": ["admin"]},
    }


def test_get_current_user_id_returns_value() -> None:
    assert dependencies.get_current_user_id({"id": "user-123"}) == "user-123"


@pytest.mark.parametrize(
    "app_metadata",
    [{"roles": ["Admin"]}, {"role": "admin"}, {"roles": "admin"}],
)
def test_require_admin_accepts_token_roles(memory_db, app_metadata) -> None:
    user = {"id": "user-1", "app_metadata": app_metadata}

    assert dependencies.require_admin(user, memory_db, SimpleNamespace(admin_role="admin")) is user


def test_require_admin_accepts_stored_roles(memory_db) -> None:
    memory_db.roles["user-1"] = ["billing-admin"]
    user = {"id": "user-1", "app_metadata": {}}

    assert dependencies.require_admin(user, memory_db, SimpleNamespace(admin_role="billing-admin")) is user


def test_require_admin_rejects_regular_users(memory_db) -> None:
    memory_db.roles["user-1"] = ["member"]

    with pytest.raises(HTTPException) as exc:
        dependencies.require_admin({"id": "user-1", "app_metadata": {"role": "member"}}, memory_db, SimpleNamespace(admin_role="admin"))

    assert exc.value.status_code == 403
