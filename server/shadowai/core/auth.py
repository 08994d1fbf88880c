from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

import jwt  # PyJWT
from fastapi import Depends, Request

from shadowai.config import Settings, get_settings
from shadowai.core.errors import AuthError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """Identity of the caller for one request.

    Passed explicitly into every service call; nothing about the caller is
    held in module state.
    """

    user_id: str
    email: Optional[str] = None
    access_token: Optional[str] = None


def verify_supabase_jwt(token: str, settings: Settings) -> AuthContext:
    """
    Verify an access token issued by the identity provider (Supabase, HS256).
    - Signature checked against SUPABASE_JWT_SECRET, audience against JWT_AUDIENCE.
    - The `sub` claim is the user id.
    - Raises AuthError when the token cannot be trusted.
    """
    secret = settings.supabase_jwt_secret
    if not secret:
        raise AuthError("Authentication is not configured")
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthError("Session expired, please sign in again") from e
    except jwt.InvalidTokenError as e:
        raise AuthError("Invalid session") from e

    uid = payload.get("sub")
    if not uid:
        raise AuthError("Invalid session")
    return AuthContext(user_id=str(uid), email=payload.get("email"), access_token=token)


def bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        return None
    token = auth.split(" ", 1)[1].strip()
    return token or None


def get_auth_context(request: Request, settings: Settings = Depends(get_settings)) -> AuthContext:
    """FastAPI dependency resolving the caller or failing with AuthError."""
    token = bearer_token(request)
    if not token:
        raise AuthError("Missing session")
    ctx = verify_supabase_jwt(token, settings)
    logger.debug("Authenticated user=%s path=%s", ctx.user_id, request.url.path)
    return ctx
