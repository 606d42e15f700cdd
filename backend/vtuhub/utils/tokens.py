"""HS256 bearer tokens for the API.

Tokens carry the user id in ``sub`` and are signed with the app's
``SECRET_KEY``. Lifetime comes from ``TOKEN_TTL_SECONDS``.
"""
from __future__ import annotations

import time
from typing import Any

import jwt
from flask import current_app

ISSUER = "vtuhub"
ALGORITHM = "HS256"


def issue_token(user_id: int) -> str:
    now = int(time.time())
    ttl = int(current_app.config.get("TOKEN_TTL_SECONDS") or 7 * 24 * 3600)
    claims = {"sub": str(user_id), "iss": ISSUER, "iat": now, "exp": now + ttl}
    return jwt.encode(claims, current_app.config["SECRET_KEY"], algorithm=ALGORITHM)


def read_token(token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(
            token,
            current_app.config["SECRET_KEY"],
            algorithms=[ALGORITHM],
            issuer=ISSUER,
            options={"require": ["exp", "sub"]},
        )
    except jwt.PyJWTError:
        return None


def bearer_from_header(header: str | None) -> str | None:
    scheme, _, value = (header or "").strip().partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()
