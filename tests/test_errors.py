"""Tests for error translation, wire framing and GatewayConnection."""

import json
import os
import sys
from datetime import UTC, datetime

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from chat_gateway.connection.connection import (
    ConnectionState,
    GatewayConnection,
    decode_frame,
    encode_frame,
)
from chat_gateway.core.errors import (
    GENERIC_ERROR_MESSAGE,
    AuthorizationError,
    GatewayError,
    NotFoundError,
    StoreError,
    ValidationError,
    error_payload,
)
from chat_gateway.core.types import NotificationType, ServerEvent, group_room
from tests.conftest import FakeWebSocket

# =========================================================================
# Error taxonomy
# =========================================================================


class TestErrorTaxonomy:
    def test_client_errors_are_not_retryable(self):
        assert ValidationError("x").can_retry is False
        assert AuthorizationError("x").can_retry is False
        assert NotFoundError("x").can_retry is False

    def test_not_found_is_authorization_class(self):
        assert issubclass(NotFoundError, AuthorizationError)

    def test_store_error_is_retryable(self):
        assert StoreError("x").can_retry is True

    def test_can_retry_override(self):
        assert GatewayError("x", can_retry=True).can_retry is True


# =========================================================================
# error_payload
# =========================================================================


class TestErrorPayload:
    def test_gateway_error_keeps_message(self):
        payload = error_payload(ValidationError("Recipient is required"), "send-message")
        assert payload == {
            "message": "Recipient is required",
            "context": "send-message",
            "canRetry": False,
        }

    def test_store_error_is_retryable(self):
        payload = error_payload(StoreError("write failed"), "send-message")
        assert payload["canRetry"] is True

    def test_timeout(self):
        payload = error_payload(TimeoutError(), "message-read")
        assert payload["message"].startswith("Connection timed out")
        assert payload["canRetry"] is True

    def test_connection_refused(self):
        payload = error_payload(ConnectionRefusedError(), "message-read")
        assert payload["message"].startswith("Connection refused")

    def test_plain_connection_error_reported_as_refused(self):
        payload = error_payload(ConnectionError("store unavailable"), "send-message")
        assert payload["message"] == "Connection refused. Please try again later."
        assert payload["canRetry"] is True

    def test_notification_types_are_persisted_kinds_only(self):
        assert {t.value for t in NotificationType} == {"message", "message_read"}

    def test_unknown_error_falls_back_to_generic(self):
        payload = error_payload(KeyError("secret internals"), "edit-message")
        assert payload["message"] == GENERIC_ERROR_MESSAGE
        assert payload["context"] == "edit-message"
        assert payload["canRetry"] is True


# =========================================================================
# Framing
# =========================================================================


class TestFraming:
    def test_encode_frame(self):
        frame = json.loads(encode_frame("user-online", {"userId": "alice"}))
        assert frame == {"event": "user-online", "data": {"userId": "alice"}}

    def test_encode_frame_serializes_datetimes(self):
        ts = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        frame = json.loads(encode_frame("user-offline", {"lastConnection": ts}))
        assert frame["data"]["lastConnection"] == ts.isoformat()

    def test_decode_event_data(self):
        assert decode_frame('{"event": "typing", "data": {"recipient_id": "bob"}}') == (
            "typing",
            {"recipient_id": "bob"},
        )

    def test_decode_short_spelling(self):
        assert decode_frame('{"t": "typing", "p": {"recipient_id": "bob"}}')[0] == "typing"

    def test_decode_type_payload_spelling(self):
        event, data = decode_frame(b'{"type": "stop-typing", "payload": {"recipient_id": "bob"}}')
        assert event == "stop-typing"
        assert data == {"recipient_id": "bob"}

    def test_decode_missing_payload_is_empty(self):
        assert decode_frame('{"event": "delete-message"}') == ("delete-message", {})

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"text"'])
    def test_decode_malformed(self, raw):
        with pytest.raises(ValidationError, match="Malformed frame"):
            decode_frame(raw)

    def test_decode_requires_event_name(self):
        with pytest.raises(ValidationError, match="Event name is required"):
            decode_frame('{"data": {}}')

    def test_decode_rejects_non_object_payload(self):
        with pytest.raises(ValidationError, match="must be an object"):
            decode_frame('{"event": "typing", "data": [1]}')

    def test_group_room_name(self):
        assert group_room("g1") == "group:g1"


# =========================================================================
# GatewayConnection
# =========================================================================


def _connection(ws: FakeWebSocket) -> GatewayConnection:
    return GatewayConnection(
        conn_id="ws_alice_0001",
        user_id="alice",
        credential="tok",
        username="alice",
        ws=ws,
    )


class TestGatewayConnection:
    def test_new_id_prefix(self):
        assert GatewayConnection.new_id("alice-123456789").startswith("ws_alice-12_")

    @pytest.mark.asyncio
    async def test_send_encodes_enum_event(self):
        ws = FakeWebSocket()
        conn = _connection(ws)
        assert await conn.send(ServerEvent.SESSION_REVOKED) is True
        assert ws.sent == [{"event": "session-revoked", "data": {}}]
        assert conn.messages_sent == 1

    @pytest.mark.asyncio
    async def test_send_after_close_is_skipped(self):
        ws = FakeWebSocket()
        conn = _connection(ws)
        await conn.close()
        assert conn.state == ConnectionState.CLOSING
        assert await conn.send("user-online", {}) is False
        assert ws.sent == []

    @pytest.mark.asyncio
    async def test_send_failure_returns_false(self):
        ws = FakeWebSocket()
        ws.fail_sends = True
        conn = _connection(ws)
        assert await conn.send("user-online", {}) is False
        assert conn.messages_sent == 0

    @pytest.mark.asyncio
    async def test_close_passes_code_and_reason(self):
        ws = FakeWebSocket()
        conn = _connection(ws)
        await conn.close(code=4001, reason="Session revoked")
        assert ws.close_code == 4001
        assert ws.close_reason == "Session revoked"

    def test_to_dict(self):
        conn = _connection(FakeWebSocket())
        info = conn.to_dict()
        assert info["connection_id"] == "ws_alice_0001"
        assert info["user_id"] == "alice"
        assert info["state"] == "connected"
