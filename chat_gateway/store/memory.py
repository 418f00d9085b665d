# =============================================================================
# Chat Gateway -- In-memory Store
# =============================================================================

import copy
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from ..core.types import MemberRole, MessageStatus, UserStatus
from .base import Document

log = logging.getLogger("chat_gateway.store.memory")


def _new_id() -> str:
    return uuid.uuid4().hex[:24]


class InMemoryChatStore:
    """Process-local implementation of :class:`ChatStore`.

    Every read returns a deep copy so callers never mutate stored documents
    by accident, matching how a real document store behaves.
    """

    def __init__(self) -> None:
        self.users: dict[str, Document] = {}
        self.sessions: dict[str, Document] = {}
        self.messages: dict[str, Document] = {}
        self.conversations: dict[str, Document] = {}
        self.notifications: dict[str, Document] = {}
        self.groups: dict[str, Document] = {}
        self.contacts: list[Document] = []

    # -----------------------------------------------------------------
    # Seeding helpers
    # -----------------------------------------------------------------

    def add_user(self, username: str, user_id: str | None = None, **fields: Any) -> Document:
        user = {
            "id": user_id or _new_id(),
            "username": username,
            "avatar": None,
            "status": UserStatus.OFFLINE.value,
            "lastConnection": None,
            "blockedUsers": [],
        }
        user.update(fields)
        self.users[user["id"]] = user
        return copy.deepcopy(user)

    def add_session(self, token: str, user_id: str, is_active: bool = True) -> Document:
        session = {"id": _new_id(), "token": token, "userId": user_id, "isActive": is_active}
        self.sessions[token] = session
        return copy.deepcopy(session)

    def add_group(
        self,
        name: str,
        members: dict[str, MemberRole | str],
        group_id: str | None = None,
        only_admins_can_post: bool = False,
        is_active: bool = True,
    ) -> Document:
        group = {
            "id": group_id or _new_id(),
            "name": name,
            "avatar": None,
            "members": [
                {"userId": uid, "role": MemberRole(role).value} for uid, role in members.items()
            ],
            "isActive": is_active,
            "settings": {"onlyAdminsCanPost": only_admins_can_post},
            "lastMessageId": None,
        }
        self.groups[group["id"]] = group
        return copy.deepcopy(group)

    def block(self, owner_id: str, blocked_id: str) -> None:
        self.users[owner_id].setdefault("blockedUsers", []).append(blocked_id)

    def add_contact(self, owner_id: str, contact_id: str, blocked: bool = False) -> None:
        self.contacts.append({"owner": owner_id, "contact": contact_id, "blocked": blocked})

    # -----------------------------------------------------------------
    # Users / sessions
    # -----------------------------------------------------------------

    async def get_user(self, user_id: str) -> Document | None:
        user = self.users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def update_user(self, user_id: str, fields: Document) -> None:
        if user_id in self.users:
            self.users[user_id].update(copy.deepcopy(fields))

    async def get_session(self, token: str) -> Document | None:
        session = self.sessions.get(token)
        return copy.deepcopy(session) if session else None

    async def deactivate_session(self, token: str) -> bool:
        session = self.sessions.get(token)
        if session is None:
            return False
        session["isActive"] = False
        return True

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        a = self.users.get(user_a, {})
        b = self.users.get(user_b, {})
        if user_b in a.get("blockedUsers", ()) or user_a in b.get("blockedUsers", ()):
            return True
        return any(
            c["blocked"] and {c["owner"], c["contact"]} == {user_a, user_b}
            for c in self.contacts
        )

    # -----------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------

    async def create_message(self, message: Document) -> Document:
        now = datetime.now(UTC)
        doc = {
            "recipientId": None,
            "groupId": None,
            "content": "",
            "type": "text",
            "mediaUrl": None,
            "replyTo": None,
            "reactions": [],
            "status": "sent",
            "edited": False,
            "editedAt": None,
            "deleted": False,
            "deletedAt": None,
        }
        doc.update(copy.deepcopy(message))
        doc["id"] = _new_id()
        doc["createdAt"] = now
        doc["updatedAt"] = now
        self.messages[doc["id"]] = doc
        return copy.deepcopy(doc)

    async def get_message(self, message_id: str) -> Document | None:
        message = self.messages.get(message_id)
        return copy.deepcopy(message) if message else None

    async def update_message(self, message_id: str, fields: Document) -> Document | None:
        message = self.messages.get(message_id)
        if message is None:
            return None
        message.update(copy.deepcopy(fields))
        message["updatedAt"] = datetime.now(UTC)
        return copy.deepcopy(message)

    async def mark_message_read(self, message_id: str) -> bool:
        message = self.messages.get(message_id)
        if message is None or message["status"] == MessageStatus.READ.value:
            return False
        message["status"] = MessageStatus.READ.value
        message["updatedAt"] = datetime.now(UTC)
        return True

    async def set_reaction(self, message_id: str, user_id: str, emoji: str) -> str | None:
        message = self.messages.get(message_id)
        if message is None:
            return None
        reactions = message.setdefault("reactions", [])
        old_emoji = next((r["emoji"] for r in reactions if r["userId"] == user_id), None)
        if old_emoji == emoji:
            return old_emoji
        reactions[:] = [r for r in reactions if r["userId"] != user_id]
        reactions.append({"userId": user_id, "emoji": emoji, "createdAt": datetime.now(UTC)})
        message["updatedAt"] = datetime.now(UTC)
        return old_emoji

    async def remove_reaction(self, message_id: str, user_id: str, emoji: str) -> None:
        message = self.messages.get(message_id)
        if message is None:
            return
        message["reactions"] = [
            r
            for r in message.get("reactions", [])
            if not (r["userId"] == user_id and r["emoji"] == emoji)
        ]
        message["updatedAt"] = datetime.now(UTC)

    # -----------------------------------------------------------------
    # Conversations
    # -----------------------------------------------------------------

    def _find_conversation(self, user_a: str, user_b: str) -> Document | None:
        pair = sorted([user_a, user_b])
        for conversation in self.conversations.values():
            if sorted(conversation["participants"]) == pair:
                return conversation
        return None

    async def find_conversation(self, user_a: str, user_b: str) -> Document | None:
        conversation = self._find_conversation(user_a, user_b)
        return copy.deepcopy(conversation) if conversation else None

    async def find_or_create_conversation(self, user_a: str, user_b: str) -> Document:
        conversation = self._find_conversation(user_a, user_b)
        if conversation is None:
            conversation = {
                "id": _new_id(),
                "participants": sorted([user_a, user_b]),
                "lastMessageId": None,
                "unreadCount": {user_a: 0, user_b: 0},
            }
            self.conversations[conversation["id"]] = conversation
            log.debug(f"Created conversation {conversation['id']}")
        return copy.deepcopy(conversation)

    async def update_conversation(
        self,
        conversation_id: str,
        *,
        last_message_id: str | None = None,
        unread_delta: dict[str, int] | None = None,
    ) -> Document | None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return None
        if last_message_id is not None:
            conversation["lastMessageId"] = last_message_id
        for user_id, delta in (unread_delta or {}).items():
            current = conversation["unreadCount"].get(user_id, 0)
            conversation["unreadCount"][user_id] = max(0, current + delta)
        return copy.deepcopy(conversation)

    # -----------------------------------------------------------------
    # Notifications
    # -----------------------------------------------------------------

    async def create_notification(self, notification: Document) -> Document:
        doc = {"messageId": None, "content": None, "read": False}
        doc.update(copy.deepcopy(notification))
        doc["id"] = _new_id()
        doc["createdAt"] = datetime.now(UTC)
        self.notifications[doc["id"]] = doc
        return copy.deepcopy(doc)

    # -----------------------------------------------------------------
    # Groups
    # -----------------------------------------------------------------

    async def get_group(self, group_id: str) -> Document | None:
        group = self.groups.get(group_id)
        return copy.deepcopy(group) if group else None

    async def update_group(self, group_id: str, fields: Document) -> None:
        if group_id in self.groups:
            self.groups[group_id].update(copy.deepcopy(fields))
