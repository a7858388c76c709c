"""Bearer-token authentication backed by Supabase Auth."""

from __future__ import annotations

import logging
from functools import wraps

from flask import g, request

from . import services
from .errors import AuthError

logger = logging.getLogger(__name__)


def bearer_token(header: str | None) -> str:
    if not header:
        raise AuthError("Missing Authorization header")
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authorization header must be 'Bearer <token>'")
    return token.strip()


def resolve_user(header: str | None) -> str:
    """Return the id of the user owning the bearer token in ``header``."""

    token = bearer_token(header)
    client = services.get_supabase()
    try:
        response = client.auth.get_user(token)
    except Exception as exc:
        logger.warning("Token verification failed: %s", exc)
        raise AuthError("Invalid or expired token") from exc
    user = getattr(response, "user", None)
    user_id = getattr(user, "id", None)
    if not user_id:
        raise AuthError("Invalid or expired token")
    return str(user_id)


def require_user(f):
    @wraps(f)
    def _wrapper(*args, **kwargs):
        g.user_id = resolve_user(request.headers.get("Authorization"))
        return f(*args, **kwargs)

    return _wrapper
