"""
JWT bearer authentication.

Account management lives outside this service; it only needs to know who
is calling. Tokens carry the user id in ``sub`` and the email address in
``email``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core import get_logger
from app.core.state import AppState, get_app_state
from app.services.datastore.records import normalize_email

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

ACCESS_TOKEN_EXPIRE = timedelta(hours=12)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""
    user_id: str
    email: str


def create_access_token(
    user_id: str,
    email: str,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: Optional[timedelta] = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "iat": now,
        "exp": now + (expires_delta or ACCESS_TOKEN_EXPIRE),
        "type": "access",
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(token: str, secret: str, algorithm: str = "HS256") -> Optional[Principal]:
    """Return the principal for a valid access token, None otherwise."""
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        logger.debug("Access token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug("Invalid access token", error=str(e))
        return None

    if payload.get("type") != "access" or not payload.get("sub") or not payload.get("email"):
        return None
    return Principal(user_id=payload["sub"], email=normalize_email(payload["email"]))


async def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    state: AppState = Depends(get_app_state),
) -> Principal:
    """Dependency: the authenticated caller, or 401."""
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    principal = decode_access_token(
        credentials.credentials,
        state.jwt_secret,
        state.settings.jwt_algorithm,
    )
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal
