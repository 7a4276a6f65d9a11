from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from marketplace_messaging.models.conversation import ConversationDocument
from marketplace_messaging.models.message import MessageDocument


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        # at most one conversation per unordered pair and product (None included)
        await self.collection.create_index(
            [("participant_key", ASCENDING), ("product_id", ASCENDING)],
            unique=True,
        )
        await self.collection.create_index([("participants", ASCENDING), ("last_message_at", DESCENDING)])

    @staticmethod
    def participant_key(user_a: str, user_b: str) -> str:
        low, high = sorted([user_a, user_b])
        return f"{low}:{high}"

    async def get_by_id(self, conversation_id: ObjectId) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"_id": conversation_id})

    async def get_or_create_one_to_one(self, user_a: str, user_b: str, product_id: Optional[str] = None) -> ConversationDocument:
        query = {"participant_key": self.participant_key(user_a, user_b), "product_id": product_id}
        now = datetime.now(timezone.utc)
        on_insert: Dict[str, Any] = {
            "participants": sorted([user_a, user_b]),
            "last_message_id": None,
            "last_message_seq": 0,
            "last_message_at": now,
            "message_seq": 0,
            "unread_counters": {user_a: 0, user_b: 0},
            "created_at": now,
            "updated_at": now,
        }
        try:
            return await self.collection.find_one_and_update(
                query,
                {"$setOnInsert": on_insert},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # lost the upsert race, the winner's document is already there
            existing = await self.collection.find_one(query)
            if existing is None:
                raise
            return existing

    async def reserve_seq(self, conversation_id: ObjectId) -> Optional[int]:
        doc = await self.collection.find_one_and_update(
            {"_id": conversation_id},
            {"$inc": {"message_seq": 1}},
            projection={"message_seq": 1},
            return_document=ReturnDocument.AFTER,
        )
        return doc["message_seq"] if doc else None

    async def update_on_new_message(
        self,
        conversation_id: ObjectId,
        message_id: ObjectId,
        seq: int,
        sent_at: datetime,
        receiver_id: str,
    ) -> Optional[ConversationDocument]:
        now = datetime.now(timezone.utc)
        inc = {f"unread_counters.{receiver_id}": 1}
        doc = await self.collection.find_one_and_update(
            {"_id": conversation_id, "last_message_seq": {"$lt": seq}},
            {
                "$set": {
                    "last_message_id": message_id,
                    "last_message_seq": seq,
                    "last_message_at": sent_at,
                    "updated_at": now,
                },
                "$inc": inc,
            },
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            # a later message already landed; only count this one
            doc = await self.collection.find_one_and_update(
                {"_id": conversation_id},
                {"$set": {"updated_at": now}, "$inc": inc},
                return_document=ReturnDocument.AFTER,
            )
        return doc

    async def rewind_last_message(
        self,
        conversation_id: ObjectId,
        removed_id: ObjectId,
        latest: Optional[MessageDocument],
        fallback_at: Optional[datetime] = None,
    ) -> bool:
        # no-op when a newer message already took the slot
        result = await self.collection.update_one(
            {"_id": conversation_id, "last_message_id": removed_id},
            {
                "$set": {
                    "last_message_id": latest["_id"] if latest else None,
                    "last_message_seq": latest["seq"] if latest else 0,
                    "last_message_at": latest["created_at"] if latest else (fallback_at or datetime.now(timezone.utc)),
                }
            },
        )
        return bool(result.modified_count)

    async def consume_unread(self, conversation_id: ObjectId, user_id: str, count: int) -> Optional[ConversationDocument]:
        if count <= 0:
            return await self.get_by_id(conversation_id)
        return await self.collection.find_one_and_update(
            {"_id": conversation_id},
            {"$inc": {f"unread_counters.{user_id}": -count}},
            return_document=ReturnDocument.AFTER,
        )

    async def list_for_user(self, user_id: str, skip: int = 0, limit: int = 20) -> Tuple[List[ConversationDocument], int]:
        query = {"participants": user_id}
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        cursor = self.collection.find(query).sort(sort).skip(skip).limit(limit)
        items = await cursor.to_list(length=limit)
        total = await self.collection.count_documents(query)
        return items, total

    async def total_unread(self, user_id: str) -> int:
        field = f"unread_counters.{user_id}"
        total = 0
        async for doc in self.collection.find({"participants": user_id}, {field: 1}):
            total += max(doc.get("unread_counters", {}).get(user_id, 0), 0)
        return total

    async def delete(self, conversation_id: ObjectId) -> bool:
        result = await self.collection.delete_one({"_id": conversation_id})
        return result.deleted_count > 0
