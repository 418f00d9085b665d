"""Chat gateway embedded in FastAPI.

One process, one port.  Uses MongoDB when ``MONGO_URI`` is set, otherwise
an in-memory store seeded with two demo users.

    pip install -e ".[server]"
    python examples/chat_app.py

Then open http://localhost:8000/ws/health to check status.
WebSocket endpoint: ws://localhost:8000/ws?token=<jwt>
"""

import logging
import os
from contextlib import asynccontextmanager

import jwt
import uvicorn
from fastapi import Depends, FastAPI, HTTPException

from chat_gateway import ChatGateway, GatewayConfig, InMemoryChatStore, create_gateway_router
from chat_gateway.core.types import ServerEvent
from chat_gateway.dependencies import get_gateway
from chat_gateway.store.mongo import MongoChatStore

logging.basicConfig(level=logging.INFO)
log = logging.getLogger("chat_app")

config = GatewayConfig.from_env()


def build_store():
    mongo_uri = os.environ.get("MONGO_URI")
    if mongo_uri:
        return MongoChatStore.from_uri(mongo_uri, os.environ.get("MONGO_DB", "chat"))

    store = InMemoryChatStore()
    for username in ("alice", "bob"):
        user = store.add_user(username, user_id=username)
        token = jwt.encode({"userId": user["id"]}, config.jwt_secret, algorithm="HS256")
        store.add_session(token, user["id"])
        log.info("Demo token for %s: %s", username, token)
    store.add_group("general", {"alice": "creator", "bob": "member"}, group_id="general")
    return store


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = build_store()
    if isinstance(store, MongoChatStore):
        await store.init_indexes()

    gateway = ChatGateway(store, config)
    app.state.chat_gateway = gateway
    yield
    await gateway.shutdown()


app = FastAPI(title="Chat Gateway Example", lifespan=lifespan)
app.include_router(create_gateway_router(config))


# -- REST endpoints alongside WebSocket ---------------------------------------

@app.get("/")
async def root():
    return {"service": "Chat Gateway Example", "ws_endpoint": "/ws"}


@app.post("/api/sessions/{token}/revoke")
async def revoke_session(token: str, gateway: ChatGateway = Depends(get_gateway)):
    """Revoke a session and drop its live connection immediately."""
    if not await gateway.store.deactivate_session(token):
        raise HTTPException(status_code=404, detail="Session not found")

    disconnected = await gateway.disconnect_by_credential(token)
    return {"status": "revoked", "disconnected": disconnected}


@app.post("/api/groups/{group_id}/announce")
async def announce_group_update(group_id: str, gateway: ChatGateway = Depends(get_gateway)):
    """Tell every member of a group that its details changed."""
    group = await gateway.store.get_group(group_id)
    if group is None:
        raise HTTPException(status_code=404, detail="Group not found")

    sent = await gateway.publish_to_group(group, ServerEvent.GROUP_UPDATED, group)
    return {"status": "sent", "recipients": sent}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
