"""Tests for the gateway lifecycle, emission and session revocation."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from chat_gateway.connection.connection import ConnectionState
from chat_gateway.core.errors import AuthenticationError
from chat_gateway.core.types import ServerEvent, group_room
from tests.conftest import FakeWebSocket, make_token

# =========================================================================
# Connect
# =========================================================================


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_registers_and_accepts(self, gateway, connect):
        connection, ws = await connect("alice")
        assert ws.accepted
        assert gateway.presence.resolve("alice") == connection.conn_id
        assert connection.username == "alice"

    @pytest.mark.asyncio
    async def test_connect_marks_user_online(self, gateway, connect, store):
        await connect("alice")
        user = await store.get_user("alice")
        assert user["status"] == "online"
        assert user["lastConnection"] is not None

    @pytest.mark.asyncio
    async def test_connect_broadcasts_user_online(self, connect):
        _, alice_ws = await connect("alice")
        await connect("bob")
        assert {"userId": "bob", "status": "online"} in alice_ws.payloads("user-online")

    @pytest.mark.asyncio
    async def test_rejected_credential_is_never_accepted(self, gateway):
        ws = FakeWebSocket()
        with pytest.raises(AuthenticationError):
            await gateway.connect(ws, make_token("alice", secret="wrong"))
        assert not ws.accepted
        assert ws.sent == []
        assert gateway.presence.resolve("alice") is None

    @pytest.mark.asyncio
    async def test_revoked_session_cannot_connect(self, gateway, store):
        token = make_token("alice")
        store.add_session(token, "alice", is_active=False)
        with pytest.raises(AuthenticationError):
            await gateway.connect(FakeWebSocket(), token)


# =========================================================================
# Disconnect
# =========================================================================


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_unregisters(self, gateway, connect):
        connection, _ = await connect("alice")
        await gateway.disconnect(connection)
        assert gateway.presence.resolve("alice") is None
        assert gateway.presence.resolve_by_credential(connection.credential) is None
        assert connection.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_marks_offline_and_broadcasts(self, gateway, connect, store):
        alice, _ = await connect("alice")
        _, bob_ws = await connect("bob")
        await gateway.disconnect(alice)

        user = await store.get_user("alice")
        assert user["status"] == "offline"

        offline = bob_ws.payloads("user-offline")
        assert len(offline) == 1
        assert offline[0]["userId"] == "alice"
        assert offline[0]["status"] == "offline"
        assert offline[0]["lastConnection"]

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, gateway, connect):
        alice, _ = await connect("alice")
        _, bob_ws = await connect("bob")
        await gateway.disconnect(alice)
        await gateway.disconnect(alice)
        assert len(bob_ws.payloads("user-offline")) == 1

    @pytest.mark.asyncio
    async def test_disconnect_leaves_rooms(self, gateway, connect):
        alice, _ = await connect("alice")
        gateway.rooms.join(group_room("team"), alice)
        await gateway.disconnect(alice)
        assert gateway.rooms.members(group_room("team")) == []

    @pytest.mark.asyncio
    async def test_disconnect_clears_typing_timers_silently(self, gateway, connect):
        alice, _ = await connect("alice")
        _, bob_ws = await connect("bob")

        async def notify(typing: bool) -> None:
            await gateway.emit_to_user("bob", ServerEvent.USER_STOP_TYPING, {"userId": "alice"})

        await gateway.typing.on_typing("alice", "bob", notify)
        bob_ws.clear()

        await gateway.disconnect(alice)

        assert gateway.typing.pending == 0
        assert "user-stop-typing" not in bob_ws.events()

    @pytest.mark.asyncio
    async def test_superseded_connection_disconnect_keeps_user_online(self, gateway, connect, store):
        first, _ = await connect("alice")
        second, _ = await connect("alice")
        _, bob_ws = await connect("bob")

        await gateway.disconnect(first)

        assert gateway.presence.resolve("alice") == second.conn_id
        assert (await store.get_user("alice"))["status"] == "online"
        assert bob_ws.payloads("user-offline") == []

    @pytest.mark.asyncio
    async def test_routing_follows_latest_connection(self, gateway, connect):
        _, first_ws = await connect("alice")
        _, second_ws = await connect("alice")
        await gateway.emit_to_user("alice", ServerEvent.USER_STATUS, {"userId": "bob"})
        assert second_ws.payloads("user-status") == [{"userId": "bob"}]
        assert first_ws.payloads("user-status") == []


# =========================================================================
# Session revocation
# =========================================================================


class TestSessionRevocation:
    @pytest.mark.asyncio
    async def test_disconnect_by_credential(self, gateway, connect):
        connection, ws = await connect("alice")

        assert await gateway.disconnect_by_credential(connection.credential) is True

        assert ws.events()[-1] == "session-revoked"
        assert ws.closed
        assert ws.close_code == 4001
        assert gateway.presence.resolve_by_credential(connection.credential) is None
        assert gateway.presence.resolve("alice") is None

    @pytest.mark.asyncio
    async def test_unknown_credential_returns_false(self, gateway):
        assert await gateway.disconnect_by_credential("no-such-token") is False

    @pytest.mark.asyncio
    async def test_revocation_broadcasts_offline(self, gateway, connect):
        alice, _ = await connect("alice")
        _, bob_ws = await connect("bob")
        await gateway.disconnect_by_credential(alice.credential)
        assert [p["userId"] for p in bob_ws.payloads("user-offline")] == ["alice"]

    @pytest.mark.asyncio
    async def test_revoked_connection_receives_nothing_more(self, gateway, connect):
        alice, alice_ws = await connect("alice")
        await gateway.disconnect_by_credential(alice.credential)
        count = len(alice_ws.sent)
        await connect("bob")
        assert len(alice_ws.sent) == count


# =========================================================================
# Emission
# =========================================================================


class TestEmission:
    @pytest.mark.asyncio
    async def test_emit_to_absent_user_is_noop(self, gateway):
        assert await gateway.emit_to_user("nobody", ServerEvent.NEW_MESSAGE, {}) is False

    @pytest.mark.asyncio
    async def test_emit_to_room_excludes_actor(self, gateway, connect):
        alice, alice_ws = await connect("alice")
        bob, bob_ws = await connect("bob")
        gateway.rooms.join("group:team", alice)
        gateway.rooms.join("group:team", bob)

        sent = await gateway.emit_to_room(
            "group:team", ServerEvent.MESSAGE_DELETED, {"message_id": "m1"}, exclude_conn_id=alice.conn_id
        )

        assert sent == 1
        assert bob_ws.payloads("message-deleted") == [{"message_id": "m1"}]
        assert alice_ws.payloads("message-deleted") == []

    @pytest.mark.asyncio
    async def test_broadcast_reaches_every_connection(self, gateway, connect):
        _, a = await connect("alice")
        _, b = await connect("bob")
        assert await gateway.broadcast("announcement", {"text": "hi"}) == 2
        assert a.payloads("announcement") == b.payloads("announcement") == [{"text": "hi"}]

    @pytest.mark.asyncio
    async def test_publish_to_group_targets_members_only(self, gateway, connect, store):
        store.add_user("dave", user_id="dave")
        _, alice_ws = await connect("alice")
        _, bob_ws = await connect("bob")
        _, dave_ws = await connect("dave")
        group = await store.get_group("team")

        sent = await gateway.publish_to_group(
            group, ServerEvent.GROUP_UPDATED, {"id": "team"}, exclude_user_id="alice"
        )

        assert sent == 1
        assert bob_ws.payloads("group-updated") == [{"id": "team"}]
        assert alice_ws.payloads("group-updated") == []
        assert dave_ws.payloads("group-updated") == []


# =========================================================================
# Stats / shutdown
# =========================================================================


class TestStatsAndShutdown:
    @pytest.mark.asyncio
    async def test_stats(self, gateway, connect):
        await connect("alice")
        stats = gateway.get_stats()
        assert stats["active_connections"] == 1
        assert stats["online_users"] == 1
        assert stats["typing_timers"] == 0

    @pytest.mark.asyncio
    async def test_shutdown_closes_everything(self, gateway, connect):
        _, alice_ws = await connect("alice")
        _, bob_ws = await connect("bob")
        await gateway.shutdown()
        assert alice_ws.closed and bob_ws.closed
        assert alice_ws.close_code == 1001
        assert gateway.presence.all() == []
