# =============================================================================
# Chat Gateway -- Real-time Presence Engine
# =============================================================================

import logging
from typing import Any

from .connection import GatewayConnection

log = logging.getLogger("chat_gateway.presence")


class PresenceRegistry:
    """
    In-memory mapping of users and credentials to live connections.

    Only the most recent connection per user is routable by user id (last
    writer wins); the same rule applies per credential.  Every live
    connection, superseded or not, stays reachable by its connection id so
    global broadcasts still reach it.

    The registry is mutated only from the event loop that runs the gateway,
    so no locking is needed.
    """

    def __init__(self) -> None:
        self.connections: dict[str, GatewayConnection] = {}
        self.user_connections: dict[str, str] = {}
        self.credential_connections: dict[str, str] = {}

        self.total_connections = 0

    def register(self, connection: GatewayConnection) -> None:
        """Insert or overwrite the presence and credential entries."""
        conn_id = connection.conn_id
        user_id = connection.user_id

        previous = self.user_connections.get(user_id)
        if previous and previous != conn_id:
            log.info(
                f"User {user_id} reconnected; {conn_id} supersedes {previous} for routing"
            )

        self.connections[conn_id] = connection
        self.user_connections[user_id] = conn_id
        if connection.credential:
            self.credential_connections[connection.credential] = conn_id

        self.total_connections += 1
        log.info(
            f"Registered connection {conn_id} for user {user_id}. "
            f"{len(self.connections)} live connections."
        )

    def resolve(self, user_id: str) -> str | None:
        """Connection id currently routable for *user_id*."""
        return self.user_connections.get(user_id)

    def resolve_by_credential(self, credential: str) -> str | None:
        """Connection id currently tied to *credential*."""
        return self.credential_connections.get(credential)

    def get(self, conn_id: str | None) -> GatewayConnection | None:
        if conn_id is None:
            return None
        return self.connections.get(conn_id)

    def connection_for(self, user_id: str) -> GatewayConnection | None:
        """Live connection routable for *user_id*, if any."""
        return self.get(self.resolve(user_id))

    def unregister(self, user_id: str, credential: str | None, conn_id: str | None = None) -> bool:
        """Remove the entries for a disconnecting connection.

        When *conn_id* is given, entries that already point at a newer
        connection are left alone.  Returns True if the user no longer has a
        routable connection afterwards.
        """
        if conn_id is not None:
            self.connections.pop(conn_id, None)

        current = self.user_connections.get(user_id)
        if current is not None and (conn_id is None or current == conn_id):
            del self.user_connections[user_id]

        if credential:
            current_cred = self.credential_connections.get(credential)
            if current_cred is not None and (conn_id is None or current_cred == conn_id):
                del self.credential_connections[credential]

        log.info(f"Unregistered connection {conn_id} for user {user_id}")
        return user_id not in self.user_connections

    def all(self) -> list[GatewayConnection]:
        """Every live connection, including superseded ones."""
        return list(self.connections.values())

    def online_user_ids(self) -> list[str]:
        return list(self.user_connections.keys())

    def get_stats(self) -> dict[str, Any]:
        return {
            "active_connections": len(self.connections),
            "online_users": len(self.user_connections),
            "tracked_credentials": len(self.credential_connections),
            "total_connections": self.total_connections,
        }


class RoomRegistry:
    """Named server-side broadcast rooms (``group:<id>``)."""

    def __init__(self) -> None:
        self.rooms: dict[str, set[str]] = {}

    def join(self, room: str, connection: GatewayConnection) -> None:
        self.rooms.setdefault(room, set()).add(connection.conn_id)
        connection.rooms.add(room)
        log.debug(f"{connection.conn_id} joined room {room}")

    def leave(self, room: str, connection: GatewayConnection) -> None:
        members = self.rooms.get(room)
        if members is not None:
            members.discard(connection.conn_id)
            if not members:
                del self.rooms[room]
        connection.rooms.discard(room)
        log.debug(f"{connection.conn_id} left room {room}")

    def leave_all(self, connection: GatewayConnection) -> None:
        for room in list(connection.rooms):
            self.leave(room, connection)

    def members(self, room: str) -> list[str]:
        return list(self.rooms.get(room, ()))

    def get_stats(self) -> dict[str, Any]:
        return {
            "rooms": len(self.rooms),
            "room_memberships": sum(len(m) for m in self.rooms.values()),
        }
