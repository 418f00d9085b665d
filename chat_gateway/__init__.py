"""Chat gateway -- real-time presence and conversation-state engine.

Embed into a FastAPI app as a router::

    from fastapi import FastAPI
    from chat_gateway import ChatGateway, GatewayConfig, InMemoryChatStore, create_gateway_router

    config = GatewayConfig(jwt_secret="...")
    app = FastAPI()
    app.state.chat_gateway = ChatGateway(InMemoryChatStore(), config)
    app.include_router(create_gateway_router(config))

See :class:`GatewayConfig` for configuration options and
:class:`~chat_gateway.store.base.ChatStore` for the store interface the host
application implements (or use :class:`MongoChatStore`).
"""

from .config import GatewayConfig
from .gateway import ChatGateway
from .router import create_gateway_router
from .store.memory import InMemoryChatStore

__version__ = "1.0.0"
__all__ = ["ChatGateway", "GatewayConfig", "InMemoryChatStore", "create_gateway_router"]
