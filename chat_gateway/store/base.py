# =============================================================================
# Chat Gateway -- Durable Store Interface
# =============================================================================

"""
Document store consumed by the gateway.

The gateway never owns the lifecycle of users, sessions, messages,
conversations, notifications or groups; it reads and writes them through
this protocol.  Documents are plain dicts keyed by ``id`` (string).

Field names used by the gateway:

- user:          id, username, avatar, status, lastConnection, blockedUsers
- session:       token, userId, isActive
- message:       id, senderId, recipientId | groupId, content, type, mediaUrl,
                 replyTo, status, reactions[{userId, emoji, createdAt}],
                 edited, editedAt, deleted, deletedAt, createdAt
- conversation:  id, participants[2], lastMessageId, unreadCount{userId: n}
- notification:  id, recipientId, senderId, type, messageId, content, read
- group:         id, name, avatar, members[{userId, role}], isActive,
                 settings{onlyAdminsCanPost}, lastMessageId
"""

from typing import Any, Protocol, runtime_checkable

from ..core.types import MODERATOR_ROLES, MemberRole

Document = dict[str, Any]


@runtime_checkable
class ChatStore(Protocol):
    """Protocol that host applications implement to back the gateway."""

    # -- users / sessions ------------------------------------------------
    async def get_user(self, user_id: str) -> Document | None: ...

    async def update_user(self, user_id: str, fields: Document) -> None: ...

    async def get_session(self, token: str) -> Document | None: ...

    async def deactivate_session(self, token: str) -> bool:
        """Mark a session inactive.  True if a session record was found."""
        ...

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        """True if either user has blocked the other."""
        ...

    # -- messages --------------------------------------------------------
    async def create_message(self, message: Document) -> Document: ...

    async def get_message(self, message_id: str) -> Document | None: ...

    async def update_message(self, message_id: str, fields: Document) -> Document | None: ...

    async def mark_message_read(self, message_id: str) -> bool:
        """Set ``status=read`` unless already read.  True if this call changed it."""
        ...

    async def set_reaction(self, message_id: str, user_id: str, emoji: str) -> str | None:
        """Atomically replace *user_id*'s reaction with *emoji*.

        Returns the emoji the user had before (None if none).  When that is
        already *emoji* the message is left unchanged.
        """
        ...

    async def remove_reaction(self, message_id: str, user_id: str, emoji: str) -> None:
        """Atomically drop *user_id*'s *emoji* reaction, if present."""
        ...

    # -- conversations ---------------------------------------------------
    async def find_or_create_conversation(self, user_a: str, user_b: str) -> Document: ...

    async def find_conversation(self, user_a: str, user_b: str) -> Document | None: ...

    async def update_conversation(
        self,
        conversation_id: str,
        *,
        last_message_id: str | None = None,
        unread_delta: dict[str, int] | None = None,
    ) -> Document | None:
        """Set ``lastMessageId`` and apply counter deltas, flooring at zero."""
        ...

    # -- notifications ---------------------------------------------------
    async def create_notification(self, notification: Document) -> Document: ...

    # -- groups ----------------------------------------------------------
    async def get_group(self, group_id: str) -> Document | None: ...

    async def update_group(self, group_id: str, fields: Document) -> None: ...


# ---------------------------------------------------------------------------
# Group membership rules
# ---------------------------------------------------------------------------


def group_member_role(group: Document, user_id: str) -> MemberRole | None:
    for member in group.get("members", ()):
        if str(member.get("userId")) == str(user_id):
            try:
                return MemberRole(member.get("role", MemberRole.MEMBER.value))
            except ValueError:
                return MemberRole.MEMBER
    return None


def is_group_member(group: Document, user_id: str) -> bool:
    return group_member_role(group, user_id) is not None


def can_post_in_group(group: Document, user_id: str) -> bool:
    role = group_member_role(group, user_id)
    if role is None:
        return False
    if not group.get("settings", {}).get("onlyAdminsCanPost", False):
        return True
    return role in MODERATOR_ROLES


def group_member_ids(group: Document) -> list[str]:
    return [str(m.get("userId")) for m in group.get("members", ())]
