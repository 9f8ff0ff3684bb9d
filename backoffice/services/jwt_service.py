"""
Access tokens for the back office API (PyJWT, HS256).

A token is a signed snapshot of the caller's assignments, so requests are
authorised without touching the membership tables::

    {"sub": "7", "type": "access", "iat": ..., "exp": ..., "jti": "...",
     "assignments": [{"business_unit_id": 1, "business_unit_name": "Head Office",
                      "role": {"id": 2, "name": "Approver", "level": 2,
                               "permissions": [...]}}]}

The snapshot goes stale when memberships change; callers pick up changes
through POST /api/v1/session/refresh or when the token expires.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
TOKEN_TYPE = "access"


def _signing_key() -> str:
    cfg = current_app.config
    return cfg.get("JWT_SECRET_KEY") or cfg["SECRET_KEY"]


def _lifetime() -> timedelta:
    return timedelta(seconds=int(current_app.config.get("JWT_ACCESS_EXPIRES", 900)))


def generate_access_token(user_id: int, assignments: list[dict]) -> str:
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),  # PyJWT validates sub as a string
        "type": TOKEN_TYPE,
        "assignments": assignments,
        "iat": issued,
        "exp": issued + _lifetime(),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature, expiry and token type; return the claims.

    Raises:
        jwt.ExpiredSignatureError: the token is past ``exp``.
        jwt.InvalidTokenError: bad signature, malformed, or not an access token.
    """
    claims = jwt.decode(token, _signing_key(), algorithms=[ALGORITHM])
    if claims.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"Expected an access token, got {claims.get('type')!r}")
    return claims
