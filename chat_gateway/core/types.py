# =============================================================================
# Chat Gateway -- Real-time Presence Engine
# =============================================================================

"""
Chat Gateway Core Types

Type definitions shared by the gateway:
- ClientEvent: inbound event names
- ServerEvent: outbound event names
- MemberRole: group membership roles
- MessageType / MessageStatus: message document enums
- NotificationType: notification document enum
"""

from enum import Enum

# ---------------------------------------------------------------------------
# Event names
# ---------------------------------------------------------------------------


class ClientEvent(str, Enum):
    """Events a client may send"""

    SEND_MESSAGE = "send-message"
    SEND_GROUP_MESSAGE = "send-group-message"
    MESSAGE_READ = "message-read"
    TYPING = "typing"
    STOP_TYPING = "stop-typing"
    GET_USER_STATUS = "get-user-status"
    JOIN_GROUP_ROOM = "join-group-room"
    LEAVE_GROUP_ROOM = "leave-group-room"
    ADD_REACTION = "add-reaction"
    REMOVE_REACTION = "remove-reaction"
    EDIT_MESSAGE = "edit-message"
    DELETE_MESSAGE = "delete-message"


class ServerEvent(str, Enum):
    """Events the gateway emits"""

    MESSAGE_SENT = "message-sent"
    NEW_MESSAGE = "new-message"
    NOTIFICATION = "notification"
    MESSAGE_READ_CONFIRMATION = "message-read-confirmation"
    USER_TYPING = "user-typing"
    USER_STOP_TYPING = "user-stop-typing"
    USER_STATUS = "user-status"
    NEW_GROUP_MESSAGE = "new-group-message"
    REACTION_ADDED = "reaction-added"
    REACTION_REMOVED = "reaction-removed"
    MESSAGE_EDITED = "message-edited"
    MESSAGE_DELETED = "message-deleted"
    USER_ONLINE = "user-online"
    USER_OFFLINE = "user-offline"
    SESSION_REVOKED = "session-revoked"
    ERROR = "error"

    # Group lifecycle, published by the HTTP layer through the gateway
    GROUP_CREATED = "group-created"
    GROUP_UPDATED = "group-updated"
    GROUP_MEMBER_ADDED = "group-member-added"
    GROUP_MEMBER_REMOVED = "group-member-removed"


# ---------------------------------------------------------------------------
# Document enums
# ---------------------------------------------------------------------------


class MemberRole(str, Enum):
    """Group member roles, highest privilege first"""

    CREATOR = "creator"
    ADMIN = "admin"
    MODERATOR = "moderator"
    MEMBER = "member"


# Roles allowed to post when a group is restricted to admins
MODERATOR_ROLES = frozenset({MemberRole.CREATOR, MemberRole.ADMIN, MemberRole.MODERATOR})


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


class NotificationType(str, Enum):
    MESSAGE = "message"
    MESSAGE_READ = "message_read"


class UserStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


def group_room(group_id: str) -> str:
    """Name of the broadcast room scoped to a group."""
    return f"group:{group_id}"


# =============================================================================
# EOF
# =============================================================================
