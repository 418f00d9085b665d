"""Shared fixtures for chat gateway tests."""

import json
import os
import sys
import time

import jwt
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from chat_gateway.config import GatewayConfig
from chat_gateway.gateway import ChatGateway
from chat_gateway.reliability.config import RetryConfig
from chat_gateway.store.memory import InMemoryChatStore

# Shared JWT config
JWT_SECRET = "test-secret-key-for-chat-gateway"


def make_token(user_id: str, exp_offset: int = 3600, claim: str = "userId", secret: str = JWT_SECRET) -> str:
    now = int(time.time())
    return jwt.encode(
        {claim: user_id, "iat": now, "exp": now + exp_offset},
        secret,
        algorithm="HS256",
    )


class FakeWebSocket:
    """Records every frame the gateway sends."""

    def __init__(self):
        self.sent: list[dict] = []
        self.accepted = False
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.fail_sends = False

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, data: str) -> None:
        if self.fail_sends:
            raise ConnectionError("socket gone")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.sent]

    def payloads(self, event: str) -> list[dict]:
        return [frame["data"] for frame in self.sent if frame["event"] == event]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture()
def store():
    """In-memory store seeded with three users and one group."""
    s = InMemoryChatStore()
    s.add_user("alice", user_id="alice")
    s.add_user("bob", user_id="bob")
    s.add_user("carol", user_id="carol")
    s.add_group(
        "team",
        {"alice": "creator", "bob": "member", "carol": "member"},
        group_id="team",
    )
    return s


@pytest.fixture()
def config():
    return GatewayConfig(
        jwt_secret=JWT_SECRET,
        typing_timeout=0.05,
        retry=RetryConfig(max_retries=3, base_delay=1.0),
    )


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def gateway(store, config, sleeps):
    """Gateway whose retry backoff records delays instead of waiting."""
    gw = ChatGateway(store, config)

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    gw.retry_sleep = fake_sleep
    return gw


@pytest.fixture()
def connect(gateway, store):
    """Factory: open an authenticated connection for *user_id*."""

    async def _connect(user_id: str):
        token = make_token(user_id)
        store.add_session(token, user_id)
        ws = FakeWebSocket()
        connection = await gateway.connect(ws, token)
        return connection, ws

    return _connect
