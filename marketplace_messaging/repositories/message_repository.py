from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from marketplace_messaging.models.message import MessageDocument


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("seq", DESCENDING)])
        await self.collection.create_index([("conversation_id", ASCENDING), ("is_read", ASCENDING)])

    async def save_message(self, conversation_id: ObjectId, sender_id: str, content: str, seq: int) -> MessageDocument:
        doc: MessageDocument = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "seq": seq,
            "created_at": datetime.now(timezone.utc),
            "delivered": False,
            "is_read": False,
            "read_at": None,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def mark_delivered(self, message_id: ObjectId) -> bool:
        result = await self.collection.update_one({"_id": message_id}, {"$set": {"delivered": True}})
        return bool(result.modified_count)

    async def delete(self, message_id: ObjectId) -> bool:
        result = await self.collection.delete_one({"_id": message_id})
        return result.deleted_count > 0

    async def latest_delivered(self, conversation_id: ObjectId) -> Optional[MessageDocument]:
        return await self.collection.find_one(
            {"conversation_id": conversation_id, "delivered": True},
            sort=[("seq", DESCENDING)],
        )

    async def get_many(self, message_ids: Iterable[ObjectId]) -> Dict[ObjectId, MessageDocument]:
        ids = [m for m in message_ids if m is not None]
        if not ids:
            return {}
        cursor = self.collection.find({"_id": {"$in": ids}})
        return {doc["_id"]: doc async for doc in cursor}

    async def get_messages_by_conversation(
        self,
        conversation_id: ObjectId,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[MessageDocument], int]:
        query = {"conversation_id": conversation_id}
        cursor = self.collection.find(query).sort("seq", DESCENDING).skip(skip).limit(limit)
        items = await cursor.to_list(length=limit)
        total = await self.collection.count_documents(query)
        # pages are cut newest-first, callers get them chronologically
        return list(reversed(items)), total

    async def mark_read(self, conversation_id: ObjectId, reader_id: str) -> int:
        # undelivered messages are not yet in the reader's counter, leave them unread
        result = await self.collection.update_many(
            {
                "conversation_id": conversation_id,
                "sender_id": {"$ne": reader_id},
                "is_read": False,
                "delivered": True,
            },
            {"$set": {"is_read": True, "read_at": datetime.now(timezone.utc)}},
        )
        return result.modified_count or 0

    async def delete_for_conversation(self, conversation_id: ObjectId) -> int:
        result = await self.collection.delete_many({"conversation_id": conversation_id})
        return result.deleted_count or 0
