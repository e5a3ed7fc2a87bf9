"""Connection Registry: live connection → resolved identity.

The registry is the only trusted source of a connection's approval status.
It is populated at authentication time from the identity resolver and is
refreshed only when an administrator changes the account status; nothing a
client sends can change it.
"""
import logging
from typing import Dict, List, Optional

from gamerz.auth.schemas import ApprovalStatus, Identity

from .connection import Connection
from .errors import IdentityResolutionError, NotFound, PermissionDenied

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Maps connection ids to identities for every live connection.

    Not thread-safe; owned by a single event loop.
    """

    def __init__(self) -> None:
        # connection_id -> Connection
        self._connections: Dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection: Connection) -> bool:
        return connection.connection_id in self._connections

    def register(self, connection: Connection, identity: Optional[Identity]) -> None:
        """Record the verified identity for a newly authenticated connection.

        Raises:
            IdentityResolutionError: *identity* is missing (resolution failed).
        """
        if identity is None:
            raise IdentityResolutionError(
                f"Cannot register connection {connection.connection_id} without an identity"
            )
        connection.identity = identity
        self._connections[connection.connection_id] = connection
        logger.info(
            "[Registry] Registered %s as %s (%s)",
            connection.connection_id,
            identity.username,
            identity.approval_status.value,
        )

    def lookup(self, connection: Connection) -> Identity:
        """Return the identity recorded for *connection*.

        Raises:
            NotFound: The connection is not registered.
        """
        registered = self._connections.get(connection.connection_id)
        if registered is None or registered.identity is None:
            raise NotFound(f"Connection {connection.connection_id} is not registered")
        return registered.identity

    def unregister(self, connection: Connection) -> bool:
        """Remove the identity record. Idempotent; returns False on a repeat call."""
        removed = self._connections.pop(connection.connection_id, None)
        if removed is not None:
            logger.info("[Registry] Unregistered %s", connection.connection_id)
        return removed is not None

    def require_approved(self, connection: Connection) -> Identity:
        """Return the identity if it may join rooms and send messages.

        Raises:
            NotFound: The connection is not registered.
            PermissionDenied: Status is pending (``not_approved``) or
                rejected/banned (``blocked``).
        """
        identity = self.lookup(connection)
        check_approved(identity)
        return identity

    def connections_for_user(self, user_id: str) -> List[Connection]:
        return [c for c in self._connections.values() if c.identity and c.identity.user_id == user_id]

    def refresh(self, identity: Identity) -> List[Connection]:
        """Swap in *identity* for every live connection of the same user.

        Returns the connections that were updated.
        """
        connections = self.connections_for_user(identity.user_id)
        for connection in connections:
            connection.identity = identity
            logger.info(
                "[Registry] %s is now %s",
                connection.connection_id,
                identity.approval_status.value,
            )
        return connections


def approval_error(identity: Identity) -> Optional[PermissionDenied]:
    """The ``PermissionDenied`` an unapproved identity gets, or None."""
    status = identity.approval_status
    if status == ApprovalStatus.APPROVED:
        return None
    if status.is_blocked:
        return PermissionDenied(
            f"Your account has been {status.value}",
            reason=PermissionDenied.BLOCKED,
        )
    return PermissionDenied(
        "Your account is pending approval",
        reason=PermissionDenied.NOT_APPROVED,
    )


def check_approved(identity: Identity) -> None:
    """Raise ``PermissionDenied`` unless *identity* is approved."""
    error = approval_error(identity)
    if error is not None:
        raise error
