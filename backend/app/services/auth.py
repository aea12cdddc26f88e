from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import ExpiredSignatureError, InvalidTokenError

from app.schemas import PlayerIdentity
from app.settings import get_settings


logger = logging.getLogger(__name__)
_bearer_scheme = HTTPBearer(auto_error=False)

TOKEN_TTL = timedelta(days=30)


def new_player_id() -> str:
    return "player_" + secrets.token_hex(5)


def issue_token(player_id: str, user_id: Optional[str] = None, ttl: timedelta = TOKEN_TTL) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {"sub": player_id, "iat": now, "exp": now + ttl}
    if user_id:
        payload["uid"] = user_id
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> PlayerIdentity:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="token_expired")
    except InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_subject")
    return PlayerIdentity(player_id=subject, user_id=payload.get("uid"))


async def get_current_player(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> PlayerIdentity:
    """Extract and validate the calling player from a bearer token."""

    if credentials is None:
        logger.warning("[get_current_player] No Authorization header or wrong scheme")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="credentials_not_provided")

    try:
        identity = decode_token(credentials.credentials)
    except HTTPException as exc:
        logger.warning("[get_current_player] Token rejected: %s", exc.detail)
        raise

    logger.debug("[get_current_player] Authenticated player id=%s", identity.player_id)
    return identity
