from __future__ import annotations

from datetime import timedelta
from typing import Any

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fandiag.config import Settings
from fandiag.logging_config import get_logger
from fandiag.results import CurrentUser
from fandiag.store import now_utc

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def issue_token(user: dict[str, Any], settings: Settings) -> str:
    issued_at = now_utc()
    claims = {
        "sub": str(user["id"]),
        "username": user["username"],
        "email": user["email"],
        "role": user["role"],
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.jwt_expire_minutes),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> CurrentUser:
    """Verify a bearer token and return the identity it carries.

    Raises ``jwt.InvalidTokenError`` (including expiry) for anything that does
    not verify against the configured secret.
    """
    claims = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["sub", "exp"]},
    )
    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError) as exc:
        raise jwt.InvalidTokenError("subject is not a user id") from exc
    return CurrentUser(
        id=user_id,
        username=claims.get("username", ""),
        email=claims.get("email", ""),
        role=claims.get("role", "user"),
    )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="token_missing")
    try:
        return decode_token(credentials.credentials, settings)
    except jwt.InvalidTokenError as exc:
        logger.info(
            "token_rejected",
            extra={"correlation_id": getattr(request.state, "correlation_id", "unknown"), "error": str(exc)},
        )
        raise HTTPException(status_code=401, detail="token_invalid") from exc


async def get_admin_user(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="admin_required")
    return user
