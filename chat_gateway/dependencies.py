# =============================================================================
# Chat Gateway -- Real-time Presence Engine
# =============================================================================

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starlette.requests import HTTPConnection

if TYPE_CHECKING:
    from .gateway import ChatGateway

log = logging.getLogger("chat_gateway.dependencies")


def get_gateway(conn: HTTPConnection) -> ChatGateway:
    """Resolve the ChatGateway from the FastAPI app state.

    Works as a ``Depends()`` callable for both HTTP routes and WebSocket
    endpoints; session-management routes use it to reach
    :meth:`ChatGateway.disconnect_by_credential`.

    Raises
    ------
    RuntimeError
        If the gateway is not available in app state.
    """
    app = conn.scope.get("app")
    if not app:
        raise RuntimeError(
            "Cannot access FastAPI app from connection scope.  "
            "Ensure the endpoint is being served by a FastAPI application."
        )

    gateway = getattr(app.state, "chat_gateway", None)
    if gateway is None:
        raise RuntimeError(
            "ChatGateway not found in app.state.  "
            "Make sure to assign it during application lifespan/startup."
        )

    return gateway
