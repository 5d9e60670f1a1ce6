"""Request authentication helpers shared by the API routes."""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .store import ClanStore


logger = logging.getLogger(__name__)


@dataclass
class ApiKeyResult:
    valid: bool
    reason: str


@dataclass
class AuthResult:
    valid: bool
    user_id: Optional[str] = None
    error: Optional[str] = None
    status_code: int = 200


def constant_time_equal(a: Any, b: Any) -> bool:
    """Compare two secrets without leaking their contents or lengths.

    Both sides are hashed first so the comparison always runs over two
    equal-length digests. Non-string input is treated as an empty string.
    """
    left = a.encode("utf-8") if isinstance(a, str) else b""
    right = b.encode("utf-8") if isinstance(b, str) else b""
    digest_match = hmac.compare_digest(hashlib.sha256(left).digest(), hashlib.sha256(right).digest())
    return digest_match and len(left) == len(right)


def validate_api_key(provided: Optional[str]) -> ApiKeyResult:
    expected = os.getenv("API_KEY") or ""
    if not expected:
        return ApiKeyResult(valid=True, reason="no-key-configured")
    if provided and constant_time_equal(provided, expected):
        return ApiKeyResult(valid=True, reason="valid-api-key")
    return ApiKeyResult(valid=False, reason="invalid-or-missing-api-key")


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


def validate_admin_request(store: ClanStore, authorization: Optional[str]) -> AuthResult:
    """Check that the bearer token belongs to a user with ``is_admin`` set.

    Admin status is read from the users table on every call.
    """
    token = bearer_token(authorization)
    if not token:
        return AuthResult(False, error="Missing or invalid Authorization header", status_code=401)

    if not store.configured:
        logger.error("Admin auth attempted without Supabase configuration")
        return AuthResult(False, error="Server configuration error", status_code=500)

    try:
        auth_user = store.get_auth_user(token)
    except ValueError:
        return AuthResult(False, error="Invalid or expired token", status_code=401)
    except RuntimeError as exc:
        logger.warning("Admin token verification failed (%s)", exc)
        return AuthResult(False, error="Authentication failed", status_code=502)

    user_id = auth_user["id"]
    try:
        user = store.fetch_user(user_id)
    except RuntimeError as exc:
        logger.warning("Admin status lookup failed for %s (%s)", user_id, exc)
        return AuthResult(False, error="Failed to verify admin status", status_code=500)

    if not user or not user.get("is_admin"):
        return AuthResult(False, user_id=user_id, error="User is not an admin", status_code=403)

    return AuthResult(True, user_id=user_id)


def authenticate_user(store: ClanStore, authorization: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return ``{id, username, is_admin}`` for a valid token, otherwise ``None``.

    Upstream failures propagate as ``RuntimeError``.
    """
    token = bearer_token(authorization)
    if not token:
        return None
    try:
        auth_user = store.get_auth_user(token)
    except ValueError:
        return None

    user_id = auth_user["id"]
    record = store.fetch_user(user_id) or {}
    return {
        "id": user_id,
        "username": record.get("username"),
        "is_admin": bool(record.get("is_admin")),
    }


def can_manage_resource(
    store: ClanStore,
    user: Dict[str, Any],
    table: str,
    resource_id: Any,
    creator_field: str = "creator_id",
) -> bool:
    if user.get("is_admin"):
        return True
    owner = store.fetch_resource_owner(table, resource_id, creator_field)
    return owner is not None and owner == str(user.get("id"))
