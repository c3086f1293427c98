from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session, sessionmaker

from academy.core.security import decode_token
from academy.core.settings import settings
from academy.db.session import get_db, get_session_factory
from academy.models.academy import User
from academy.services.alimtalk_client import AlimtalkClient, AlimtalkGateway
from academy.services.rate_limit import GatewayRateLimiter, SqlCounterStore

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
logger = logging.getLogger("security")


def _log_auth_event(event: str, *, request: Request, extra: Optional[dict] = None) -> None:
    payload = {
        "event": event,
        "request_id": request.headers.get("x-request-id"),
        "path": request.url.path,
        "method": request.method,
        "client": request.client.host if request.client else None,
    }
    if extra:
        payload.update(extra)
    logger.info(json.dumps(payload, default=str))


def get_current_user(
    request: Request,
    token: str = Security(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token)
        raw_user_id: Optional[int | str] = payload.get("sub")
        if raw_user_id is None:
            _log_auth_event("token_missing_sub", request=request)
            raise credentials_exception
        user_id = int(raw_user_id)
    except (JWTError, ValueError, TypeError):
        _log_auth_event("token_invalid", request=request)
        raise credentials_exception

    user = db.get(User, user_id)
    if not user or not user.is_active:
        _log_auth_event("user_inactive_or_missing", request=request, extra={"user_id": user_id})
        raise credentials_exception

    # A token minted for one academy must not act on another.
    token_academy_id = payload.get("academy_id")
    if token_academy_id is not None and str(token_academy_id) != str(user.academy_id):
        _log_auth_event(
            "token_academy_mismatch",
            request=request,
            extra={"user_id": user.id, "academy_id": user.academy_id, "token_academy_id": token_academy_id},
        )
        raise credentials_exception
    return user


def get_alimtalk_gateway() -> AlimtalkGateway:
    return AlimtalkClient()


def get_rate_limiter(
    session_factory: sessionmaker = Depends(get_session_factory),
) -> GatewayRateLimiter:
    return GatewayRateLimiter(
        SqlCounterStore(session_factory),
        limit=settings.alimtalk_rate_limit_per_minute,
    )
