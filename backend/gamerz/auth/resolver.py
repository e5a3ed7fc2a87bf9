"""Resolve a bearer credential to a server-side identity.

The token proves who the caller is; the approval status always comes from
the user store, so an approval or ban takes effect on the next request
without waiting for the token to expire.
"""
import asyncio
import logging

from gamerz.chat.errors import AuthenticationError
from gamerz.config import AppConfig

from .schemas import Identity
from .service import UserService
from .tokens import decode_token

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Session Identity Resolver used by HTTP routes and WebSocket connects."""

    def __init__(self, users: UserService, config: AppConfig) -> None:
        self._users = users
        self._config = config

    def resolve(self, credential: str) -> Identity:
        """Return the identity for *credential*.

        Raises:
            AuthenticationError: Bad token or the user no longer exists.
        """
        payload = decode_token(credential, self._config)
        user = self._users.get(payload["sub"])
        if user is None:
            logger.info("Token for unknown user %s rejected", payload["sub"])
            raise AuthenticationError("User not found")
        return user.to_identity()

    async def resolve_async(self, credential: str) -> Identity:
        """Awaitable form used by the connection lifecycle.

        The user lookup hits the database, so it runs in the default executor.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.resolve, credential)
