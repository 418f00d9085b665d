# =============================================================================
# Chat Gateway -- MongoDB Store
# =============================================================================

"""
MongoChatStore - Motor-backed implementation of :class:`ChatStore`.

Collections: users, sessions, messages, conversations, notifications,
groups, contacts.  ``_id`` values are ObjectIds in the database and
strings everywhere in the gateway; conversion happens only here.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from ..core.errors import StoreError, ValidationError
from .base import Document

log = logging.getLogger("chat_gateway.store.mongo")

# Reference fields stored as ObjectIds
_REF_FIELDS = ("senderId", "recipientId", "groupId", "replyTo", "messageId", "userId", "lastMessageId")


def _oid(value: str | ObjectId) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as e:
        raise ValidationError("Invalid ID format.") from e


def _to_db(doc: Document) -> Document:
    out = dict(doc)
    out.pop("id", None)
    for key in _REF_FIELDS:
        if out.get(key) is not None:
            out[key] = _oid(out[key])
    return out


def _from_db(value: Any) -> Any:
    """Convert a raw Mongo document into the gateway's string-id form."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [_from_db(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for key, v in value.items():
            if key == "_id":
                out["id"] = str(v)
            else:
                out[key] = _from_db(v)
        return out
    return value


class MongoChatStore:
    """ChatStore on MongoDB via Motor."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    @classmethod
    def from_uri(cls, uri: str, database: str) -> "MongoChatStore":
        client = AsyncIOMotorClient(uri)
        return cls(client[database])

    async def init_indexes(self) -> None:
        try:
            await self.db.sessions.create_index([("token", ASCENDING)])
            await self.db.messages.create_index([("senderId", ASCENDING), ("recipientId", ASCENDING)])
            await self.db.messages.create_index([("groupId", ASCENDING), ("createdAt", DESCENDING)])
            await self.db.conversations.create_index([("participants", ASCENDING)])
            await self.db.notifications.create_index([("recipientId", ASCENDING), ("read", ASCENDING)])
            await self.db.groups.create_index([("members.userId", ASCENDING)])
            await self.db.contacts.create_index(
                [("owner", ASCENDING), ("contact", ASCENDING)], unique=True
            )
        except PyMongoError as e:
            raise StoreError(f"Failed to create indexes: {e}") from e
        log.info("MongoDB indexes ensured")

    # -----------------------------------------------------------------
    # Users / sessions
    # -----------------------------------------------------------------

    async def get_user(self, user_id: str) -> Document | None:
        doc = await self.db.users.find_one({"_id": _oid(user_id)}, {"password": 0})
        return _from_db(doc) if doc else None

    async def update_user(self, user_id: str, fields: Document) -> None:
        await self.db.users.update_one({"_id": _oid(user_id)}, {"$set": fields})

    async def get_session(self, token: str) -> Document | None:
        doc = await self.db.sessions.find_one({"token": token})
        return _from_db(doc) if doc else None

    async def deactivate_session(self, token: str) -> bool:
        result = await self.db.sessions.update_one({"token": token}, {"$set": {"isActive": False}})
        return result.matched_count == 1

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        a, b = _oid(user_a), _oid(user_b)
        blocked_user = await self.db.users.find_one(
            {
                "$or": [
                    {"_id": a, "blockedUsers": b},
                    {"_id": b, "blockedUsers": a},
                ]
            },
            {"_id": 1},
        )
        if blocked_user:
            return True

        contact = await self.db.contacts.find_one(
            {
                "$or": [
                    {"owner": a, "contact": b, "blocked": True},
                    {"owner": b, "contact": a, "blocked": True},
                ]
            },
            {"_id": 1},
        )
        return contact is not None

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
            "createdAt": now,
            "updatedAt": now,
        }
        doc.update(_to_db(message))
        result = await self.db.messages.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _from_db(doc)

    async def get_message(self, message_id: str) -> Document | None:
        doc = await self.db.messages.find_one({"_id": _oid(message_id)})
        return _from_db(doc) if doc else None

    async def update_message(self, message_id: str, fields: Document) -> Document | None:
        update = dict(fields)
        update["updatedAt"] = datetime.now(UTC)
        doc = await self.db.messages.find_one_and_update(
            {"_id": _oid(message_id)},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return _from_db(doc) if doc else None

    async def mark_message_read(self, message_id: str) -> bool:
        result = await self.db.messages.update_one(
            {"_id": _oid(message_id), "status": {"$ne": "read"}},
            {"$set": {"status": "read", "updatedAt": datetime.now(UTC)}},
        )
        return result.modified_count == 1

    async def set_reaction(self, message_id: str, user_id: str, emoji: str) -> str | None:
        uid = _oid(user_id)
        now = datetime.now(UTC)
        reaction = {"userId": uid, "emoji": emoji, "createdAt": now}

        # Pipeline update: drop the user's reaction and append the new one in one write
        before = await self.db.messages.find_one_and_update(
            {
                "_id": _oid(message_id),
                "reactions": {"$not": {"$elemMatch": {"userId": uid, "emoji": emoji}}},
            },
            [
                {
                    "$set": {
                        "reactions": {
                            "$concatArrays": [
                                {
                                    "$filter": {
                                        "input": {"$ifNull": ["$reactions", []]},
                                        "cond": {"$ne": ["$$this.userId", uid]},
                                    }
                                },
                                [{"$literal": reaction}],
                            ]
                        },
                        "updatedAt": now,
                    }
                }
            ],
            projection={"reactions": 1},
            return_document=ReturnDocument.BEFORE,
        )
        if before is None:
            # Either the message is gone or the user already has this emoji
            exists = await self.db.messages.find_one({"_id": _oid(message_id)}, {"_id": 1})
            return emoji if exists else None

        return next(
            (r.get("emoji") for r in before.get("reactions") or [] if r.get("userId") == uid),
            None,
        )

    async def remove_reaction(self, message_id: str, user_id: str, emoji: str) -> None:
        await self.db.messages.update_one(
            {"_id": _oid(message_id)},
            {
                "$pull": {"reactions": {"userId": _oid(user_id), "emoji": emoji}},
                "$set": {"updatedAt": datetime.now(UTC)},
            },
        )

    # -----------------------------------------------------------------
    # Conversations
    # -----------------------------------------------------------------

    def _pair_filter(self, user_a: str, user_b: str) -> Document:
        pair = sorted([_oid(user_a), _oid(user_b)])
        return {"participants": {"$all": pair, "$size": 2}}

    async def find_conversation(self, user_a: str, user_b: str) -> Document | None:
        doc = await self.db.conversations.find_one(self._pair_filter(user_a, user_b))
        return _from_db(doc) if doc else None

    async def find_or_create_conversation(self, user_a: str, user_b: str) -> Document:
        pair = sorted([_oid(user_a), _oid(user_b)])
        doc = await self.db.conversations.find_one_and_update(
            self._pair_filter(user_a, user_b),
            {
                "$setOnInsert": {
                    "participants": pair,
                    "lastMessageId": None,
                    "unreadCount": {str(user_a): 0, str(user_b): 0},
                    "createdAt": datetime.now(UTC),
                }
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return _from_db(doc)

    async def update_conversation(
        self,
        conversation_id: str,
        *,
        last_message_id: str | None = None,
        unread_delta: dict[str, int] | None = None,
    ) -> Document | None:
        stage: Document = {"updatedAt": datetime.now(UTC)}
        if last_message_id is not None:
            stage["lastMessageId"] = _oid(last_message_id)
        for user_id, delta in (unread_delta or {}).items():
            path = f"unreadCount.{user_id}"
            stage[path] = {"$max": [0, {"$add": [{"$ifNull": [f"${path}", 0]}, delta]}]}

        # Aggregation-pipeline update so the counter floor is applied atomically
        doc = await self.db.conversations.find_one_and_update(
            {"_id": _oid(conversation_id)},
            [{"$set": stage}],
            return_document=ReturnDocument.AFTER,
        )
        return _from_db(doc) if doc else None

    # -----------------------------------------------------------------
    # Notifications
    # -----------------------------------------------------------------

    async def create_notification(self, notification: Document) -> Document:
        doc = {"messageId": None, "content": None, "read": False, "createdAt": datetime.now(UTC)}
        doc.update(_to_db(notification))
        result = await self.db.notifications.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _from_db(doc)

    # -----------------------------------------------------------------
    # Groups
    # -----------------------------------------------------------------

    async def get_group(self, group_id: str) -> Document | None:
        doc = await self.db.groups.find_one({"_id": _oid(group_id)})
        return _from_db(doc) if doc else None

    async def update_group(self, group_id: str, fields: Document) -> None:
        await self.db.groups.update_one({"_id": _oid(group_id)}, {"$set": _to_db(fields)})
