from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from marketplace_messaging.models.notification import NotificationDocument


class NotificationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["notifications"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("user_id", ASCENDING), ("is_read", ASCENDING)])

    async def create(self, user_id: str, data: Dict[str, Any]) -> NotificationDocument:
        doc: NotificationDocument = {
            "user_id": user_id,
            "type": data["type"],
            "title": data["title"],
            "message": data["message"],
            "link": data.get("link"),
            "related_product_id": data.get("related_product_id"),
            "related_order_id": data.get("related_order_id"),
            "is_read": False,
            "created_at": datetime.now(timezone.utc),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def get_by_id(self, notification_id: ObjectId) -> Optional[NotificationDocument]:
        return await self.collection.find_one({"_id": notification_id})

    async def list_for_user(self, user_id: str, skip: int = 0, limit: int = 20) -> Tuple[List[NotificationDocument], int]:
        query = {"user_id": user_id}
        cursor = self.collection.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).skip(skip).limit(limit)
        items = await cursor.to_list(length=limit)
        total = await self.collection.count_documents(query)
        return items, total

    async def count_unread(self, user_id: str) -> int:
        return await self.collection.count_documents({"user_id": user_id, "is_read": False})

    async def mark_read(self, notification_id: ObjectId) -> Optional[NotificationDocument]:
        return await self.collection.find_one_and_update(
            {"_id": notification_id},
            {"$set": {"is_read": True}},
            return_document=ReturnDocument.AFTER,
        )

    async def mark_all_read(self, user_id: str) -> int:
        result = await self.collection.update_many({"user_id": user_id, "is_read": False}, {"$set": {"is_read": True}})
        return result.modified_count or 0

    async def delete(self, notification_id: ObjectId) -> bool:
        result = await self.collection.delete_one({"_id": notification_id})
        return result.deleted_count > 0
