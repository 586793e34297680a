import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import HTTPException, Request, Response

from config import get_settings

logger = logging.getLogger(__name__)

COOKIE_NAME = "wadake_jwt_token"
TOKEN_LIFETIME = timedelta(hours=24)
ALGORITHM = "HS256"


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    name: str


class ConfigurationError(RuntimeError):
    pass


class TokenError(ValueError):
    pass


class TokenExpired(TokenError):
    pass


class TokenInvalid(TokenError):
    pass


def _secret() -> str:
    secret = get_settings().jwt_secret
    if not secret:
        raise ConfigurationError("JWT secret is not configured")
    return secret


def issue_token(
    user_id: str, email: str, name: str, now: Optional[datetime] = None
) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "name": name,
        "iat": int(now.timestamp()),
        "exp": int((now + TOKEN_LIFETIME).timestamp()),
    }
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def decode_token(token: str, now: Optional[datetime] = None) -> Identity:
    secret = _secret()
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenExpired("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenInvalid("Invalid token") from exc

    # exp is checked a second time against the caller's clock.
    now = now or datetime.now(timezone.utc)
    if payload["exp"] < now.timestamp():
        raise TokenExpired("Token has expired")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise TokenInvalid("Invalid token")
    return Identity(
        id=subject,
        email=str(payload.get("email") or ""),
        name=str(payload.get("name") or ""),
    )


def extract_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization")
    if header:
        scheme, _, value = header.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return request.cookies.get(COOKIE_NAME) or None


def require_user(request: Request) -> Identity:
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Access token is required")
    try:
        return decode_token(token)
    except ConfigurationError as exc:
        logger.error("auth_rejected: reason=missing_secret")
        raise HTTPException(
            status_code=500, detail="Server configuration error"
        ) from exc
    except TokenExpired as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except TokenInvalid as exc:
        logger.info(f"auth_rejected: reason=invalid_token path={request.url.path}")
        raise HTTPException(status_code=403, detail=str(exc)) from exc


def optional_user(request: Request) -> Optional[Identity]:
    """Like ``require_user`` but yields ``None`` instead of rejecting."""
    token = extract_token(request)
    if not token:
        return None
    try:
        return decode_token(token)
    except (ConfigurationError, TokenError) as exc:
        logger.debug(f"optional_auth_skipped: reason={exc}")
        return None


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=int(TOKEN_LIFETIME.total_seconds()),
        httponly=True,
        samesite="lax",
        secure=get_settings().cookie_secure,
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="lax",
        secure=get_settings().cookie_secure,
    )
