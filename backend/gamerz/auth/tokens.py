"""JWT session tokens (PyJWT).

Payload:
    sub:      user id
    username: display name at issue time
    role:     'player' or 'admin'
    status:   approval status at issue time (informational only; the
              resolver reloads the stored status)
    iat/exp:  issue and expiry times
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

from gamerz.chat.errors import AuthenticationError
from gamerz.config import AppConfig

from .schemas import User


def issue_token(user: User, config: AppConfig) -> str:
    """Sign a session token for *user*."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "username": user.username,
        "role": user.role.value,
        "status": user.status.value,
        "iat": now,
        "exp": now + timedelta(minutes=config.auth.token_expire_minutes),
    }
    return jwt.encode(
        payload,
        config.secrets.jwt.secret_key,
        algorithm=config.secrets.jwt.algorithm,
    )


def decode_token(token: str, config: AppConfig) -> Dict[str, Any]:
    """Verify *token* and return its payload.

    Raises:
        AuthenticationError: Missing, expired, malformed or unsigned token.
    """
    if not token:
        raise AuthenticationError("No token provided")
    if token.startswith("Bearer "):
        token = token[len("Bearer "):]
    try:
        payload = jwt.decode(
            token,
            config.secrets.jwt.secret_key,
            algorithms=[config.secrets.jwt.algorithm],
            options={"require": ["sub", "exp", "iat"]},
        )
    except ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except InvalidTokenError:
        raise AuthenticationError("Invalid token")
    return payload
