# =============================================================================
# Chat Gateway -- Real-time Presence Engine
# =============================================================================

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..core.errors import ValidationError

log = logging.getLogger("chat_gateway.connection")


# =============================================================================
# WebSocket Protocol (framework-agnostic)
# =============================================================================


@runtime_checkable
class WebSocketProtocol(Protocol):
    """Protocol for WebSocket implementations (FastAPI, test doubles, etc.)"""

    async def accept(self) -> None: ...
    async def send_text(self, data: str) -> None: ...
    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class ConnectionState(Enum):
    """Lifecycle of a gateway connection"""

    CONNECTED = "connected"
    CLOSING = "closing"
    DISCONNECTED = "disconnected"


# =============================================================================
# JSON Serialization
# =============================================================================


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime objects and other document types."""

    def default(self, obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        elif isinstance(obj, (Decimal, uuid.UUID)):
            return str(obj)
        elif isinstance(obj, Enum):
            return obj.value
        elif isinstance(obj, (set, frozenset)):
            return list(obj)
        return str(obj)


def encode_frame(event: str, data: Any) -> str:
    """Serialize one outbound event into the wire frame."""
    return json.dumps({"event": event, "data": data}, cls=DateTimeEncoder)


def decode_frame(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    """Parse an inbound frame into ``(event_name, payload)``.

    Accepts ``{"event", "data"}`` as well as the ``{"t", "p"}`` and
    ``{"type", "payload"}`` spellings.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError("Malformed frame") from e

    if not isinstance(frame, dict):
        raise ValidationError("Malformed frame")

    event = frame.get("event") or frame.get("t") or frame.get("type")
    if not isinstance(event, str) or not event:
        raise ValidationError("Event name is required")

    data = frame.get("data", frame.get("p", frame.get("payload")))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Event payload must be an object")

    return event, data


# =============================================================================
# GatewayConnection
# =============================================================================


@dataclass
class GatewayConnection:
    """One authenticated, live WebSocket.

    The identity (``user_id``, ``credential``, ``username``) is attached once
    at authentication time and never changes for the lifetime of the
    connection.
    """

    conn_id: str
    user_id: str
    credential: str
    username: str
    ws: Any  # WebSocketProtocol -- typed as Any to avoid dataclass Protocol issues
    user: dict[str, Any] = field(default_factory=dict)
    ip_address: str = "unknown"
    rooms: set[str] = field(default_factory=set)
    state: ConnectionState = ConnectionState.CONNECTED
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    messages_sent: int = 0
    messages_received: int = 0

    @staticmethod
    def new_id(user_id: str) -> str:
        return f"ws_{user_id[:8]}_{uuid.uuid4().hex[:8]}"

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    async def send(self, event: str, data: Any = None) -> bool:
        """Send one event.  Returns False if the connection is gone."""
        event = getattr(event, "value", event)
        if not self.is_open:
            log.debug(f"Skipping {event} for closed connection {self.conn_id}")
            return False

        try:
            await self.ws.send_text(encode_frame(event, data if data is not None else {}))
        except Exception as e:
            log.warning(f"Failed to send {event} to {self.conn_id}: {e}")
            return False

        self.messages_sent += 1
        return True

    async def close(self, code: int = 1000, reason: str = "Normal closure") -> None:
        """Close the underlying WebSocket.  Safe to call more than once."""
        if self.state == ConnectionState.DISCONNECTED:
            return
        self.state = ConnectionState.CLOSING
        try:
            await self.ws.close(code=code, reason=reason)
        except Exception as e:
            log.debug(f"Error closing {self.conn_id}: {e}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "connection_id": self.conn_id,
            "user_id": self.user_id,
            "username": self.username,
            "ip_address": self.ip_address,
            "rooms": sorted(self.rooms),
            "state": self.state.value,
            "connected_at": self.connected_at.isoformat(),
            "messages_sent": self.messages_sent,
            "messages_received": self.messages_received,
        }
