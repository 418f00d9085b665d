# =============================================================================
# Chat Gateway -- Event Router
# =============================================================================

import logging
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from ..core.errors import (
    AuthorizationError,
    GatewayError,
    NotFoundError,
    ValidationError,
    error_payload,
)
from ..core.types import (
    ClientEvent,
    MessageStatus,
    MessageType,
    NotificationType,
    ServerEvent,
    group_room,
)
from ..store.base import Document, can_post_in_group, group_member_ids, is_group_member
from .connection import GatewayConnection, decode_frame
from .typing_indicators import TypingNotifier

if TYPE_CHECKING:
    from ..gateway import ChatGateway

log = logging.getLogger("chat_gateway.handlers")

# Characters of message content copied into a notification
NOTIFICATION_PREVIEW_LENGTH = 100

# A handler is an async callable that takes the event payload
HandlerFunc = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]


def _field(data: dict[str, Any], *names: str) -> Any:
    """First non-empty value among *names* (snake_case and camelCase spellings)."""
    for name in names:
        value = data.get(name)
        if value not in (None, ""):
            return value
    return None


def _user_summary(user: Document | None, user_id: str) -> Document:
    if not user:
        return {"id": user_id}
    return {"id": user["id"], "username": user.get("username"), "avatar": user.get("avatar")}


# =============================================================================
# ChatEventHandler
# =============================================================================


class ChatEventHandler:
    """Routes inbound events of one connection to their handlers.

    Every handler runs inside :meth:`dispatch`, which turns any exception
    into an ``error`` event on the acting connection with ``context`` set to
    the event name.  Handlers raise :class:`GatewayError` subclasses for
    client-visible failures and let everything else propagate.

    Extra events can be added with :meth:`register`.
    """

    def __init__(self, connection: GatewayConnection, gateway: "ChatGateway"):
        self.connection = connection
        self.gateway = gateway
        self.store = gateway.store

        self.handlers: dict[str, HandlerFunc] = {
            ClientEvent.SEND_MESSAGE.value: self.handle_send_message,
            ClientEvent.SEND_GROUP_MESSAGE.value: self.handle_send_group_message,
            ClientEvent.MESSAGE_READ.value: self.handle_message_read,
            ClientEvent.TYPING.value: self.handle_typing,
            ClientEvent.STOP_TYPING.value: self.handle_stop_typing,
            ClientEvent.GET_USER_STATUS.value: self.handle_get_user_status,
            ClientEvent.JOIN_GROUP_ROOM.value: self.handle_join_group_room,
            ClientEvent.LEAVE_GROUP_ROOM.value: self.handle_leave_group_room,
            ClientEvent.ADD_REACTION.value: self.handle_add_reaction,
            ClientEvent.REMOVE_REACTION.value: self.handle_remove_reaction,
            ClientEvent.EDIT_MESSAGE.value: self.handle_edit_message,
            ClientEvent.DELETE_MESSAGE.value: self.handle_delete_message,
        }

    @property
    def user_id(self) -> str:
        return self.connection.user_id

    def register(self, event: str, handler: HandlerFunc) -> None:
        self.handlers[event] = handler

    # -----------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------

    async def handle_message(self, raw: str | bytes) -> None:
        """Decode one inbound frame and route it."""
        self.connection.messages_received += 1

        try:
            event, data = decode_frame(raw)
        except ValidationError as e:
            log.warning(f"Malformed frame from {self.connection.conn_id}: {e.message}")
            await self._send_error(e, "frame")
            return

        await self.dispatch(event, data)

    async def dispatch(self, event: str, data: dict[str, Any]) -> None:
        handler = self.handlers.get(event)
        if handler is None:
            log.warning(f"Unknown event from {self.connection.conn_id}: {event}")
            await self._send_error(ValidationError(f"Unknown event: {event}"), event)
            return

        log.debug(f"Handling {event} for {self.user_id}")
        try:
            await handler(data)
        except GatewayError as e:
            log.info(f"{event} rejected for {self.user_id}: {e.message}")
            await self._send_error(e, event)
        except Exception as e:
            log.error(f"Error handling {event}: {e}", exc_info=True)
            await self._send_error(e, event)

    async def _send_error(self, error: BaseException, context: str) -> None:
        await self.connection.send(ServerEvent.ERROR, error_payload(error, context))

    # -----------------------------------------------------------------
    # Direct messages
    # -----------------------------------------------------------------

    async def handle_send_message(self, data: dict[str, Any]) -> None:
        recipient_id = _field(data, "recipient_id", "recipientId")
        content = data.get("content") or ""
        media_url = _field(data, "mediaUrl", "media_url")
        message_type = self._message_type(data)

        if not recipient_id:
            raise ValidationError("Recipient is required")
        self._validate_content(content, media_url)

        recipient = await self.store.get_user(recipient_id)
        if not recipient:
            raise NotFoundError("Recipient not found")

        if await self.store.is_blocked(self.user_id, recipient_id):
            raise AuthorizationError("Cannot send message to this user")

        message = await self.gateway.retry(
            lambda: self.store.create_message(
                {
                    "senderId": self.user_id,
                    "recipientId": recipient_id,
                    "content": content,
                    "type": message_type,
                    "mediaUrl": media_url,
                    "status": MessageStatus.SENT.value,
                }
            ),
            "create_message",
        )
        conversation = await self.gateway.retry(
            lambda: self.store.find_or_create_conversation(self.user_id, recipient_id),
            "find_or_create_conversation",
        )
        await self.gateway.retry(
            lambda: self.store.update_conversation(
                conversation["id"],
                last_message_id=message["id"],
                unread_delta={recipient_id: 1},
            ),
            "update_conversation",
        )

        populated = await self._populate(message)
        await self.connection.send(ServerEvent.MESSAGE_SENT, populated)

        # The message is committed and acked; from here on nothing may fail the event
        notification = await self._record_notification(
            {
                "recipientId": recipient_id,
                "senderId": self.user_id,
                "type": NotificationType.MESSAGE.value,
                "messageId": message["id"],
                "content": content[:NOTIFICATION_PREVIEW_LENGTH],
            }
        )

        await self.gateway.emit_to_user(recipient_id, ServerEvent.NEW_MESSAGE, populated)
        if notification is not None:
            await self.gateway.emit_to_user(
                recipient_id,
                ServerEvent.NOTIFICATION,
                {
                    "type": NotificationType.MESSAGE.value,
                    "message": populated,
                    "notification_id": notification["id"],
                },
            )

    async def handle_message_read(self, data: dict[str, Any]) -> None:
        message_id = _field(data, "message_id", "messageId")
        if not message_id:
            raise ValidationError("Message ID is required")

        message = await self._load_message(message_id)
        if str(message.get("recipientId")) != self.user_id:
            raise AuthorizationError("Not authorized")

        if not await self.store.mark_message_read(message_id):
            log.debug(f"Message {message_id} already read")
            return

        sender_id = str(message["senderId"])
        try:
            conversation = await self.store.find_conversation(sender_id, self.user_id)
            if conversation:
                await self.gateway.retry(
                    lambda: self.store.update_conversation(
                        conversation["id"], unread_delta={self.user_id: -1}
                    ),
                    "update_conversation",
                )
        except Exception:
            # Undo the read mark so a repeated message-read applies the decrement
            await self.store.update_message(
                message_id, {"status": message.get("status") or MessageStatus.SENT.value}
            )
            raise

        notification = await self._record_notification(
            {
                "recipientId": sender_id,
                "senderId": self.user_id,
                "type": NotificationType.MESSAGE_READ.value,
                "messageId": message_id,
            }
        )

        await self.gateway.emit_to_user(
            sender_id,
            ServerEvent.MESSAGE_READ_CONFIRMATION,
            {"message_id": message_id, "reader_id": self.user_id},
        )
        if notification is not None:
            await self.gateway.emit_to_user(
                sender_id,
                ServerEvent.NOTIFICATION,
                {
                    "type": NotificationType.MESSAGE_READ.value,
                    "message_id": message_id,
                    "reader_id": self.user_id,
                    "notification_id": notification["id"],
                },
            )

    # -----------------------------------------------------------------
    # Typing / presence
    # -----------------------------------------------------------------

    async def handle_typing(self, data: dict[str, Any]) -> None:
        recipient_id = _field(data, "recipient_id", "recipientId")
        if not recipient_id:
            raise ValidationError("Recipient is required")

        await self.gateway.typing.on_typing(
            self.user_id, recipient_id, self._typing_notifier(recipient_id)
        )

    async def handle_stop_typing(self, data: dict[str, Any]) -> None:
        recipient_id = _field(data, "recipient_id", "recipientId")
        if not recipient_id:
            raise ValidationError("Recipient is required")

        await self.gateway.typing.on_stop_typing(
            self.user_id, recipient_id, self._typing_notifier(recipient_id)
        )

    def _typing_notifier(self, peer_id: str) -> TypingNotifier:
        # The peer is resolved when the signal fires, not when typing starts
        user_id = self.user_id
        username = self.connection.username

        async def notify(typing: bool) -> None:
            if typing:
                await self.gateway.emit_to_user(
                    peer_id, ServerEvent.USER_TYPING, {"userId": user_id, "username": username}
                )
            else:
                await self.gateway.emit_to_user(
                    peer_id, ServerEvent.USER_STOP_TYPING, {"userId": user_id}
                )

        return notify

    async def handle_get_user_status(self, data: dict[str, Any]) -> None:
        target_id = _field(data, "user_id", "userId")
        if not target_id:
            raise ValidationError("User ID is required")

        user = await self.store.get_user(target_id)
        if not user:
            raise NotFoundError("User not found")

        await self.connection.send(
            ServerEvent.USER_STATUS,
            {
                "userId": target_id,
                "status": user.get("status"),
                "lastConnection": user.get("lastConnection"),
            },
        )

    # -----------------------------------------------------------------
    # Groups
    # -----------------------------------------------------------------

    async def handle_send_group_message(self, data: dict[str, Any]) -> None:
        group_id = _field(data, "group_id", "groupId")
        content = data.get("content") or ""
        media_url = _field(data, "mediaUrl", "media_url")
        reply_to = _field(data, "replyTo", "reply_to")
        message_type = self._message_type(data)

        if not group_id:
            raise ValidationError("Group ID is required")
        self._validate_content(content, media_url)

        group = await self.store.get_group(group_id)
        if not group or not group.get("isActive", True):
            raise NotFoundError("Group not found")
        if not is_group_member(group, self.user_id):
            raise AuthorizationError("Not a member of this group")
        if not can_post_in_group(group, self.user_id):
            raise AuthorizationError("Not authorized to post in this group")

        message = await self.gateway.retry(
            lambda: self.store.create_message(
                {
                    "senderId": self.user_id,
                    "groupId": group_id,
                    "content": content,
                    "type": message_type,
                    "mediaUrl": media_url,
                    "replyTo": reply_to,
                    "status": MessageStatus.SENT.value,
                }
            ),
            "create_message",
        )
        await self.gateway.retry(
            lambda: self.store.update_group(group_id, {"lastMessageId": message["id"]}),
            "update_group",
        )

        populated = await self._populate(message)
        await self.connection.send(ServerEvent.MESSAGE_SENT, populated)

        # Membership may have changed while the writes were in flight
        group = await self.store.get_group(group_id) or group
        payload = {"group_id": group_id, "message": populated}
        for member_id in group_member_ids(group):
            if member_id != self.user_id:
                await self.gateway.emit_to_user(member_id, ServerEvent.NEW_GROUP_MESSAGE, payload)

    async def handle_join_group_room(self, data: dict[str, Any]) -> None:
        group_id = _field(data, "group_id", "groupId")
        if not group_id:
            raise ValidationError("Group ID is required")

        group = await self.store.get_group(group_id)
        if not group:
            raise NotFoundError("Group not found")
        if not is_group_member(group, self.user_id):
            raise AuthorizationError("Not a member of this group")

        self.gateway.rooms.join(group_room(group_id), self.connection)

    async def handle_leave_group_room(self, data: dict[str, Any]) -> None:
        group_id = _field(data, "group_id", "groupId")
        if not group_id:
            raise ValidationError("Group ID is required")

        self.gateway.rooms.leave(group_room(group_id), self.connection)

    # -----------------------------------------------------------------
    # Reactions
    # -----------------------------------------------------------------

    async def handle_add_reaction(self, data: dict[str, Any]) -> None:
        message_id = _field(data, "message_id", "messageId")
        emoji = _field(data, "emoji")
        if not message_id or not emoji:
            raise ValidationError("Message ID and emoji are required")

        message = await self._load_message(message_id)
        await self._authorize_participant(message)

        old_emoji = await self.store.set_reaction(message_id, self.user_id, emoji)
        if old_emoji == emoji:
            raise ValidationError("Already reacted with this emoji")

        payload = {
            "message_id": message_id,
            "user_id": self.user_id,
            "username": self.connection.username,
            "emoji": emoji,
            "oldEmoji": old_emoji,
        }
        await self.connection.send(ServerEvent.REACTION_ADDED, payload)
        await self._fan_out(message, ServerEvent.REACTION_ADDED, payload)

    async def handle_remove_reaction(self, data: dict[str, Any]) -> None:
        message_id = _field(data, "message_id", "messageId")
        emoji = _field(data, "emoji")
        if not message_id or not emoji:
            raise ValidationError("Message ID and emoji are required")

        message = await self._load_message(message_id)
        await self._authorize_participant(message)

        await self.store.remove_reaction(message_id, self.user_id, emoji)

        payload = {"message_id": message_id, "user_id": self.user_id, "emoji": emoji}
        await self.connection.send(ServerEvent.REACTION_REMOVED, payload)
        await self._fan_out(message, ServerEvent.REACTION_REMOVED, payload)

    # -----------------------------------------------------------------
    # Edit / delete
    # -----------------------------------------------------------------

    async def handle_edit_message(self, data: dict[str, Any]) -> None:
        message_id = _field(data, "message_id", "messageId")
        content = data.get("content")
        if not message_id:
            raise ValidationError("Message ID is required")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Content is required")
        if len(content) > self.gateway.config.max_message_length:
            raise ValidationError("Message too long")

        message = await self._load_message(message_id)
        self._authorize_sender(message)
        if message.get("deleted"):
            raise ValidationError("Cannot edit a deleted message")

        edited_at = datetime.now(UTC)
        await self.store.update_message(
            message_id, {"content": content, "edited": True, "editedAt": edited_at}
        )

        payload = {
            "message_id": message_id,
            "content": content,
            "edited": True,
            "editedAt": edited_at,
        }
        await self.connection.send(ServerEvent.MESSAGE_EDITED, payload)
        await self._fan_out(message, ServerEvent.MESSAGE_EDITED, payload)

    async def handle_delete_message(self, data: dict[str, Any]) -> None:
        message_id = _field(data, "message_id", "messageId")
        if not message_id:
            raise ValidationError("Message ID is required")

        message = await self._load_message(message_id)
        self._authorize_sender(message)

        # Soft delete: content stays in the store
        await self.store.update_message(
            message_id, {"deleted": True, "deletedAt": datetime.now(UTC)}
        )

        payload = {"message_id": message_id}
        await self.connection.send(ServerEvent.MESSAGE_DELETED, payload)
        await self._fan_out(message, ServerEvent.MESSAGE_DELETED, payload)

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    async def _record_notification(self, notification: Document) -> Document | None:
        """Persist a notification record.  Returns None if the store keeps failing."""
        try:
            return await self.gateway.retry(
                lambda: self.store.create_notification(notification), "create_notification"
            )
        except Exception as e:
            log.error(
                f"Failed to store {notification['type']} notification "
                f"for {notification['recipientId']}: {e}",
                exc_info=True,
            )
            return None

    def _validate_content(self, content: Any, media_url: Any) -> None:
        if not isinstance(content, str):
            raise ValidationError("Content must be a string")
        if not content and not media_url:
            raise ValidationError("Content or media is required")
        if len(content) > self.gateway.config.max_message_length:
            raise ValidationError("Message too long")

    @staticmethod
    def _message_type(data: dict[str, Any]) -> str:
        value = data.get("type") or MessageType.TEXT.value
        try:
            return MessageType(value).value
        except ValueError:
            raise ValidationError(f"Invalid message type: {value}") from None

    async def _load_message(self, message_id: str) -> Document:
        message = await self.store.get_message(message_id)
        if not message:
            raise NotFoundError("Message not found")
        return message

    def _authorize_sender(self, message: Document) -> None:
        if str(message.get("senderId")) != self.user_id:
            raise AuthorizationError("Not authorized")

    async def _authorize_participant(self, message: Document) -> None:
        if message.get("recipientId"):
            participants = {str(message.get("senderId")), str(message["recipientId"])}
            if self.user_id not in participants:
                raise AuthorizationError("Not authorized")
            return

        group_id = message.get("groupId")
        group = await self.store.get_group(group_id) if group_id else None
        if not group or not is_group_member(group, self.user_id):
            raise AuthorizationError("Not authorized")

    async def _fan_out(self, message: Document, event: ServerEvent, payload: Document) -> None:
        """Deliver a message-scoped event to everyone but the actor.

        Direct messages reach only the other participant; group messages go
        to the group's room.
        """
        recipient_id = message.get("recipientId")
        if recipient_id:
            sender_id = str(message.get("senderId"))
            other = str(recipient_id) if sender_id == self.user_id else sender_id
            if other != self.user_id:
                await self.gateway.emit_to_user(other, event, payload)
        elif message.get("groupId"):
            await self.gateway.emit_to_room(
                group_room(str(message["groupId"])),
                event,
                payload,
                exclude_conn_id=self.connection.conn_id,
            )

    async def _populate(self, message: Document) -> Document:
        """Expand sender, recipient, group and reply references."""
        populated = dict(message)

        sender_id = str(message["senderId"])
        populated["sender"] = _user_summary(await self.store.get_user(sender_id), sender_id)

        if message.get("recipientId"):
            recipient_id = str(message["recipientId"])
            populated["recipient"] = _user_summary(
                await self.store.get_user(recipient_id), recipient_id
            )

        if message.get("groupId"):
            group = await self.store.get_group(str(message["groupId"]))
            if group:
                populated["group"] = {
                    "id": group["id"],
                    "name": group.get("name"),
                    "avatar": group.get("avatar"),
                }

        if message.get("replyTo"):
            reply = await self.store.get_message(str(message["replyTo"]))
            if reply:
                populated["replyTo"] = reply

        return populated
