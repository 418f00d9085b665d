# =============================================================================
# Chat Gateway -- Connection Authenticator
# =============================================================================

import logging
from dataclasses import dataclass
from typing import Any

import jwt

from ..core.errors import AuthenticationError
from ..store.base import ChatStore, Document

logger = logging.getLogger("chat_gateway.auth")


@dataclass
class Identity:
    """Identity attached to a connection at handshake time."""

    user_id: str
    credential: str
    username: str
    user: Document


def extract_credential(websocket: Any) -> str | None:
    """Find the bearer token presented during the handshake.

    Looks at the ``token`` query parameter first (standard for WebSocket),
    then the Authorization header, then the ``access_token`` cookie.
    """
    token = websocket.query_params.get("token")

    if not token:
        auth_header = websocket.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    if not token:
        token = websocket.cookies.get("access_token")

    return token or None


class ConnectionAuthenticator:
    """Validates a credential and resolves it to an active user.

    Every failure raises :class:`AuthenticationError` with the same generic
    message; the specific reason is only logged.
    """

    def __init__(
        self,
        store: ChatStore,
        secret: str,
        algorithms: list[str] | None = None,
        user_id_claims: tuple[str, ...] = ("userId", "sub"),
    ):
        self.store = store
        self.secret = secret
        self.algorithms = algorithms or ["HS256"]
        self.user_id_claims = user_id_claims

    async def authenticate(self, token: str | None) -> Identity:
        if not token:
            logger.warning("No authentication token provided")
            raise AuthenticationError("Authentication error")

        try:
            payload = jwt.decode(token, self.secret, algorithms=self.algorithms)
        except jwt.ExpiredSignatureError:
            logger.warning("Token expired")
            raise AuthenticationError("Authentication error") from None
        except jwt.InvalidTokenError as e:
            logger.warning("Invalid token: %s", e)
            raise AuthenticationError("Authentication error") from None

        user_id = next(
            (str(payload[claim]) for claim in self.user_id_claims if payload.get(claim)),
            None,
        )
        if not user_id:
            logger.warning("Token missing user id claim")
            raise AuthenticationError("Authentication error")

        try:
            user = await self.store.get_user(user_id)
            session = await self.store.get_session(token)
        except Exception as e:
            logger.error("User lookup failed during authentication: %s", e, exc_info=True)
            raise AuthenticationError("Authentication error") from None

        if not user:
            logger.warning("Token for unknown user %s", user_id)
            raise AuthenticationError("Authentication error")

        if session is not None and not session.get("isActive", True):
            logger.warning("Token for revoked session (user %s)", user_id)
            raise AuthenticationError("Authentication error")

        return Identity(
            user_id=str(user.get("id", user_id)),
            credential=token,
            username=user.get("username", ""),
            user=user,
        )
