# =============================================================================
# Chat Gateway -- Configuration
# =============================================================================

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .reliability.config import RetryConfig


def _env_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class GatewayConfig:
    """Configuration for the chat gateway.

    All behavioural knobs are collected here so that the host application
    can customise the WebSocket endpoint without touching gateway internals.

    Attributes:
        jwt_secret:
            HMAC secret used to validate credentials at connection time.
        jwt_algorithms:
            Accepted JWT signing algorithms.
        user_id_claims:
            Token claims searched, in order, for the user id.
        typing_timeout:
            Seconds a typing indicator survives without being refreshed.
        max_message_length:
            Maximum content length accepted by send and edit events.
        retry:
            Retry policy for durable-store writes that must not be dropped.
        allowed_origins:
            List of allowed Origin header values for CSWSH protection.
            Empty list (default) disables origin checking (development mode).
        receive_timeout:
            Poll interval of the receive loop, in seconds.  Bounds how long a
            force-closed connection lingers in its endpoint task.
        enable_debug:
            Expose the ``/ws/debug`` endpoint.
    """

    jwt_secret: str = "change-me"
    jwt_algorithms: list[str] = field(default_factory=lambda: ["HS256"])
    user_id_claims: tuple[str, ...] = ("userId", "sub")
    typing_timeout: float = 3.0
    max_message_length: int = 5000
    retry: RetryConfig = field(default_factory=RetryConfig)
    allowed_origins: list[str] = field(default_factory=list)
    receive_timeout: float = 1.0
    enable_debug: bool = False

    @classmethod
    def from_env(cls) -> GatewayConfig:
        """Build a config from ``CHAT_*`` environment variables."""
        config = cls()
        env = os.environ

        if "CHAT_JWT_SECRET" in env:
            config.jwt_secret = env["CHAT_JWT_SECRET"]
        if "CHAT_TYPING_TIMEOUT" in env:
            config.typing_timeout = float(env["CHAT_TYPING_TIMEOUT"])
        if "CHAT_MAX_MESSAGE_LENGTH" in env:
            config.max_message_length = int(env["CHAT_MAX_MESSAGE_LENGTH"])
        if "CHAT_RETRY_MAX_RETRIES" in env:
            config.retry.max_retries = int(env["CHAT_RETRY_MAX_RETRIES"])
        if "CHAT_RETRY_BASE_DELAY" in env:
            config.retry.base_delay = float(env["CHAT_RETRY_BASE_DELAY"])
        if "CHAT_ALLOWED_ORIGINS" in env:
            config.allowed_origins = [
                o.strip() for o in env["CHAT_ALLOWED_ORIGINS"].split(",") if o.strip()
            ]
        config.enable_debug = _env_bool(env.get("CHAT_DEBUG"), config.enable_debug)

        return config
