from __future__ import annotations

from datetime import datetime, timedelta, timezone
import secrets
from typing import Any

import jwt
from jwt import InvalidTokenError


def create_access_token(*, subject: str, ttl_seconds: int, secret: str) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(seconds=ttl_seconds)
    payload: dict[str, Any] = {
        "sub": subject,
        "exp": exp,
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def decode_access_token(token: str, secret: str) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"require": ["exp", "sub"]},
        )
    except InvalidTokenError as e:
        raise ValueError("Invalid token") from e


def create_share_token() -> str:
    # Opaque, random, URL-safe token for public share links.
    return secrets.token_urlsafe(24)
