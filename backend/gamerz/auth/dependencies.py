"""FastAPI dependencies for authenticated routes.

The credential is read, in order, from the session cookie, an
``Authorization: Bearer`` header, or a ``token`` query parameter (the last
one for WebSocket clients that cannot set headers).
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from starlette.requests import HTTPConnection

from gamerz.chat.errors import AuthenticationError

from .resolver import IdentityResolver
from .schemas import Identity, UserRole
from .service import UserService


def extract_credential(conn: HTTPConnection) -> Optional[str]:
    cookie_name = conn.app.state.config.auth.cookie_name
    token = conn.cookies.get(cookie_name)
    if token:
        return token
    header = conn.headers.get("authorization")
    if header and header.lower().startswith("bearer "):
        return header[7:].strip()
    return conn.query_params.get("token")


def get_user_service(conn: HTTPConnection) -> UserService:
    return conn.app.state.users


def get_resolver(conn: HTTPConnection) -> IdentityResolver:
    return conn.app.state.resolver


def get_current_identity(
    request: Request,
    resolver: IdentityResolver = Depends(get_resolver),
) -> Identity:
    """Resolve the caller's identity or fail with 401."""
    credential = extract_credential(request)
    try:
        if not credential:
            raise AuthenticationError("No token provided")
        return resolver.resolve(credential)
    except AuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message)


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if identity.role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    return identity
