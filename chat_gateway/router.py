# =============================================================================
# Chat Gateway -- Real-time Presence Engine
# =============================================================================

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from .config import GatewayConfig
from .connection.authenticator import extract_credential
from .connection.handlers import ChatEventHandler
from .core.errors import AuthenticationError
from .dependencies import get_gateway

log = logging.getLogger("chat_gateway.router")

__all__ = ["GatewayConfig", "create_gateway_router"]

# Close codes used before the handshake is accepted
POLICY_VIOLATION = 1008
ORIGIN_NOT_ALLOWED = 4403


def create_gateway_router(config: GatewayConfig) -> APIRouter:
    """Create a FastAPI :class:`APIRouter` with the chat WebSocket endpoint.

    The returned router exposes:

    * ``/ws``          -- WebSocket endpoint (main)
    * ``/ws/health``   -- HTTP GET health check
    * ``/ws/debug``    -- HTTP GET registry snapshot (only when *enable_debug*)

    The :class:`~chat_gateway.gateway.ChatGateway` is read from
    ``app.state.chat_gateway``; the host application creates it during its
    lifespan.
    """

    router = APIRouter()

    # ------------------------------------------------------------------ #
    # WebSocket endpoint
    # ------------------------------------------------------------------ #

    @router.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """Authenticated chat connection.

        The credential is read from the ``token`` query parameter, the
        ``Authorization: Bearer`` header or the ``access_token`` cookie.
        A rejected credential refuses the handshake; no event is sent.
        """
        gateway = get_gateway(websocket)

        # ----- Origin validation (CSWSH protection) -----
        origin = websocket.headers.get("origin", "")
        if config.allowed_origins and origin and origin not in config.allowed_origins:
            log.warning("Rejected WebSocket connection from disallowed origin: %s", origin)
            await websocket.close(code=ORIGIN_NOT_ALLOWED, reason="Origin not allowed")
            return

        client_ip = websocket.client.host if websocket.client else "unknown"

        # ----- Authentication -----
        try:
            connection = await gateway.connect(
                websocket, extract_credential(websocket), ip_address=client_ip
            )
        except AuthenticationError:
            log.warning("WebSocket authentication failed (IP: %s)", client_ip)
            await websocket.close(code=POLICY_VIOLATION, reason="Authentication error")
            return

        handler = ChatEventHandler(connection, gateway)

        try:
            # ----- Main message loop -----
            while connection.is_open:
                try:
                    message = await asyncio.wait_for(
                        websocket.receive(),
                        timeout=config.receive_timeout,
                    )

                    if message["type"] == "websocket.receive":
                        raw = message.get("text") or message.get("bytes")
                        if raw is not None:
                            await handler.handle_message(raw)

                    elif message["type"] == "websocket.disconnect":
                        log.info("WebSocket %s disconnect message received", connection.conn_id)
                        break

                except TimeoutError:
                    # Normal -- allows checking the connection state
                    continue

                except WebSocketDisconnect:
                    log.info("WebSocket %s disconnected", connection.conn_id)
                    break

        except Exception as exc:
            log.error(
                "WebSocket %s error: %s: %s",
                connection.conn_id,
                type(exc).__name__,
                exc,
                exc_info=True,
            )

        finally:
            await gateway.disconnect(connection)

            if websocket.client_state != WebSocketState.DISCONNECTED:
                with contextlib.suppress(Exception):
                    await websocket.close(code=1000, reason="Normal closure")

            duration = (datetime.now(UTC) - connection.connected_at).total_seconds()
            log.info(
                "WebSocket %s closed -- Duration: %.1fs, Messages: %d/%d",
                connection.conn_id,
                duration,
                connection.messages_sent,
                connection.messages_received,
            )

    # ------------------------------------------------------------------ #
    # Health check
    # ------------------------------------------------------------------ #

    @router.get("/ws/health")
    async def websocket_health_check(request: Request) -> dict[str, Any]:
        """Health check endpoint for the WebSocket service."""
        gateway = getattr(request.app.state, "chat_gateway", None)
        if gateway is None:
            return {
                "status": "unhealthy",
                "websocket_service": "error",
                "error": "Chat gateway not available",
                "timestamp": datetime.now(UTC).isoformat(),
            }

        return {
            "status": "healthy",
            "websocket_service": "active",
            "connections": gateway.presence.get_stats(),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    # ------------------------------------------------------------------ #
    # Debug endpoint (gated by config.enable_debug)
    # ------------------------------------------------------------------ #

    if config.enable_debug:

        @router.get("/ws/debug")
        async def websocket_debug_info(request: Request) -> dict[str, Any]:
            """Debug endpoint to inspect registry state."""
            gateway = get_gateway(request)
            return {
                "status": "active",
                "stats": gateway.get_stats(),
                "connections": [c.to_dict() for c in gateway.presence.all()],
                "online_users": gateway.presence.online_user_ids(),
                "config": {
                    "typing_timeout": config.typing_timeout,
                    "max_message_length": config.max_message_length,
                    "allowed_origins": config.allowed_origins,
                },
                "timestamp": datetime.now(UTC).isoformat(),
            }

    return router
