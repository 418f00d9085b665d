"""Tests for the presence and room registries."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from chat_gateway.connection.connection import GatewayConnection
from chat_gateway.connection.manager import PresenceRegistry, RoomRegistry
from tests.conftest import FakeWebSocket


def _conn(user_id: str, credential: str = "", conn_id: str | None = None) -> GatewayConnection:
    return GatewayConnection(
        conn_id=conn_id or GatewayConnection.new_id(user_id),
        user_id=user_id,
        credential=credential or f"token-{user_id}",
        username=user_id,
        ws=FakeWebSocket(),
    )


# =========================================================================
# PresenceRegistry
# =========================================================================


class TestPresenceRegistry:
    def test_resolve_registered_user(self):
        registry = PresenceRegistry()
        conn = _conn("alice")
        registry.register(conn)
        assert registry.resolve("alice") == conn.conn_id
        assert registry.connection_for("alice") is conn

    def test_resolve_unknown_user_is_none(self):
        registry = PresenceRegistry()
        assert registry.resolve("nobody") is None
        assert registry.connection_for("nobody") is None

    def test_resolve_after_unregister_is_none(self):
        registry = PresenceRegistry()
        conn = _conn("alice")
        registry.register(conn)
        assert registry.unregister("alice", conn.credential, conn.conn_id) is True
        assert registry.resolve("alice") is None
        assert registry.resolve_by_credential(conn.credential) is None
        assert registry.get(conn.conn_id) is None

    def test_resolve_by_credential(self):
        registry = PresenceRegistry()
        conn = _conn("alice", credential="tok-1")
        registry.register(conn)
        assert registry.resolve_by_credential("tok-1") == conn.conn_id
        assert registry.resolve_by_credential("tok-2") is None

    def test_second_connection_overwrites_first(self):
        registry = PresenceRegistry()
        first = _conn("alice", credential="tok-1")
        second = _conn("alice", credential="tok-2")
        registry.register(first)
        registry.register(second)
        assert registry.resolve("alice") == second.conn_id
        assert registry.resolve("alice") != first.conn_id

    def test_superseded_connection_still_reachable_by_id(self):
        registry = PresenceRegistry()
        first = _conn("alice", credential="tok-1")
        second = _conn("alice", credential="tok-2")
        registry.register(first)
        registry.register(second)
        assert registry.get(first.conn_id) is first
        assert len(registry.all()) == 2

    def test_unregister_superseded_keeps_newer_entry(self):
        registry = PresenceRegistry()
        first = _conn("alice", credential="tok-1")
        second = _conn("alice", credential="tok-2")
        registry.register(first)
        registry.register(second)

        went_offline = registry.unregister("alice", first.credential, first.conn_id)

        assert went_offline is False
        assert registry.resolve("alice") == second.conn_id
        assert registry.resolve_by_credential("tok-2") == second.conn_id
        assert registry.resolve_by_credential("tok-1") is None

    def test_same_credential_reconnect_is_last_writer_wins(self):
        registry = PresenceRegistry()
        first = _conn("alice", credential="tok")
        second = _conn("alice", credential="tok")
        registry.register(first)
        registry.register(second)
        registry.unregister("alice", "tok", first.conn_id)
        assert registry.resolve_by_credential("tok") == second.conn_id

    def test_online_user_ids(self):
        registry = PresenceRegistry()
        registry.register(_conn("alice"))
        registry.register(_conn("bob"))
        assert sorted(registry.online_user_ids()) == ["alice", "bob"]

    def test_stats(self):
        registry = PresenceRegistry()
        registry.register(_conn("alice"))
        registry.register(_conn("alice"))
        stats = registry.get_stats()
        assert stats["active_connections"] == 2
        assert stats["online_users"] == 1
        assert stats["total_connections"] == 2


# =========================================================================
# RoomRegistry
# =========================================================================


class TestRoomRegistry:
    def test_join_and_members(self):
        rooms = RoomRegistry()
        conn = _conn("alice")
        rooms.join("group:g1", conn)
        assert rooms.members("group:g1") == [conn.conn_id]
        assert "group:g1" in conn.rooms

    def test_leave_removes_empty_room(self):
        rooms = RoomRegistry()
        conn = _conn("alice")
        rooms.join("group:g1", conn)
        rooms.leave("group:g1", conn)
        assert rooms.members("group:g1") == []
        assert rooms.get_stats()["rooms"] == 0
        assert conn.rooms == set()

    def test_leave_unknown_room_is_noop(self):
        rooms = RoomRegistry()
        conn = _conn("alice")
        rooms.leave("group:missing", conn)
        assert rooms.members("group:missing") == []

    def test_leave_all(self):
        rooms = RoomRegistry()
        alice = _conn("alice")
        bob = _conn("bob")
        rooms.join("group:g1", alice)
        rooms.join("group:g2", alice)
        rooms.join("group:g1", bob)

        rooms.leave_all(alice)

        assert rooms.members("group:g1") == [bob.conn_id]
        assert rooms.members("group:g2") == []
        assert alice.rooms == set()
