# =============================================================================
# Chat Gateway -- Real-time Presence Engine
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

from .config import GatewayConfig
from .connection.authenticator import ConnectionAuthenticator, Identity
from .connection.connection import ConnectionState, GatewayConnection
from .connection.manager import PresenceRegistry, RoomRegistry
from .connection.typing_indicators import TypingCoordinator
from .core.types import ServerEvent, UserStatus
from .reliability.retry import retry_operation
from .store.base import ChatStore, Document, group_member_ids

log = logging.getLogger("chat_gateway.gateway")

T = TypeVar("T")

# Close code sent to a connection whose session was revoked
SESSION_REVOKED_CLOSE_CODE = 4001


class ChatGateway:
    """
    Composition root of the real-time engine.

    Owns the presence registry, the room registry and the typing
    coordinator for the lifetime of the process, and is the only place
    that mutates them.  Handlers receive the gateway by reference.
    """

    def __init__(
        self,
        store: ChatStore,
        config: GatewayConfig | None = None,
        authenticator: ConnectionAuthenticator | None = None,
    ):
        self.store = store
        self.config = config or GatewayConfig()

        self.presence = PresenceRegistry()
        self.rooms = RoomRegistry()
        self.typing = TypingCoordinator(timeout=self.config.typing_timeout)
        self.authenticator = authenticator or ConnectionAuthenticator(
            store,
            secret=self.config.jwt_secret,
            algorithms=self.config.jwt_algorithms,
            user_id_claims=self.config.user_id_claims,
        )

        # Replaced in tests to observe backoff without waiting
        self.retry_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    # -----------------------------------------------------------------
    # Connection lifecycle
    # -----------------------------------------------------------------

    async def connect(
        self, websocket: Any, token: str | None, ip_address: str = "unknown"
    ) -> GatewayConnection:
        """Authenticate, accept and register a new connection.

        Raises :class:`AuthenticationError` before the WebSocket is accepted
        when the credential is rejected.
        """
        identity = await self.authenticator.authenticate(token)
        await websocket.accept()
        return await self.open(websocket, identity, ip_address)

    async def open(
        self, websocket: Any, identity: Identity, ip_address: str = "unknown"
    ) -> GatewayConnection:
        connection = GatewayConnection(
            conn_id=GatewayConnection.new_id(identity.user_id),
            user_id=identity.user_id,
            credential=identity.credential,
            username=identity.username,
            ws=websocket,
            user=identity.user,
            ip_address=ip_address,
        )
        self.presence.register(connection)

        try:
            await self.store.update_user(
                connection.user_id,
                {"status": UserStatus.ONLINE.value, "lastConnection": datetime.now(UTC)},
            )
        except Exception as e:
            log.error(f"Failed to mark {connection.user_id} online: {e}", exc_info=True)

        await self.broadcast(
            ServerEvent.USER_ONLINE,
            {"userId": connection.user_id, "status": UserStatus.ONLINE.value},
        )

        log.info(f"User connected: {connection.user_id} ({connection.conn_id})")
        return connection

    async def disconnect(self, connection: GatewayConnection) -> None:
        """Tear down a connection.  Runs its side effects exactly once."""
        if connection.state == ConnectionState.DISCONNECTED:
            return
        connection.state = ConnectionState.DISCONNECTED

        self.rooms.leave_all(connection)
        went_offline = self.presence.unregister(
            connection.user_id, connection.credential, connection.conn_id
        )

        if not went_offline:
            log.info(
                f"Superseded connection {connection.conn_id} closed; "
                f"{connection.user_id} is still online"
            )
            return

        self.typing.clear_all_for_sender(connection.user_id)

        last_connection = datetime.now(UTC)
        try:
            await self.store.update_user(
                connection.user_id,
                {"status": UserStatus.OFFLINE.value, "lastConnection": last_connection},
            )
        except Exception as e:
            log.error(f"Failed to mark {connection.user_id} offline: {e}", exc_info=True)

        await self.broadcast(
            ServerEvent.USER_OFFLINE,
            {
                "userId": connection.user_id,
                "status": UserStatus.OFFLINE.value,
                "lastConnection": last_connection,
            },
        )
        log.info(f"User disconnected: {connection.user_id} ({connection.conn_id})")

    # -----------------------------------------------------------------
    # Session revocation bridge
    # -----------------------------------------------------------------

    async def disconnect_by_credential(self, credential: str) -> bool:
        """Force-disconnect the live connection tied to *credential*.

        Returns True if a connection was found and terminated.
        """
        connection = self.presence.get(self.presence.resolve_by_credential(credential))
        if connection is None:
            log.debug("No live connection for revoked credential")
            return False

        await connection.send(ServerEvent.SESSION_REVOKED, {})
        await connection.close(code=SESSION_REVOKED_CLOSE_CODE, reason="Session revoked")
        await self.disconnect(connection)

        log.info(f"Session revoked for {connection.user_id} ({connection.conn_id})")
        return True

    # -----------------------------------------------------------------
    # Emission
    # -----------------------------------------------------------------

    async def emit_to_user(self, user_id: str, event: str, data: Any) -> bool:
        """Send to the user's routable connection.  False if not connected."""
        connection = self.presence.connection_for(user_id)
        if connection is None:
            return False
        return await connection.send(event, data)

    async def emit_to_room(
        self, room: str, event: str, data: Any, exclude_conn_id: str | None = None
    ) -> int:
        sent = 0
        for conn_id in self.rooms.members(room):
            if conn_id == exclude_conn_id:
                continue
            connection = self.presence.get(conn_id)
            if connection is not None and await connection.send(event, data):
                sent += 1
        return sent

    async def broadcast(self, event: str, data: Any) -> int:
        sent = 0
        for connection in self.presence.all():
            if await connection.send(event, data):
                sent += 1
        return sent

    async def publish_to_group(
        self,
        group: Document,
        event: str,
        data: Any,
        exclude_user_id: str | None = None,
    ) -> int:
        """Emit to every member of *group* with a live connection.

        Used by the HTTP layer for group lifecycle events so they reach
        members only, never every connection.
        """
        sent = 0
        for member_id in group_member_ids(group):
            if member_id == exclude_user_id:
                continue
            if await self.emit_to_user(member_id, event, data):
                sent += 1
        return sent

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    async def retry(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        """Run a durable-store write under the configured retry policy."""
        return await retry_operation(
            operation, self.config.retry, name=name, sleep=self.retry_sleep
        )

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.presence.get_stats(),
            **self.rooms.get_stats(),
            "typing_timers": self.typing.pending,
        }

    async def shutdown(self) -> None:
        """Cancel pending timers and close every live connection."""
        self.typing.shutdown()
        for connection in self.presence.all():
            await connection.close(code=1001, reason="Server shutting down")
            await self.disconnect(connection)
