import logging
from typing import Dict, Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError

from marketplace_messaging.schemas.user import OrderSummary, ProductSummary, UserSummary
from marketplace_messaging.utils.ids import id_variants


logger = logging.getLogger(__name__)


class DirectoryRepository:
    """Read-only lookups into collections owned by other marketplace services.

    Missing or malformed documents resolve to nothing; callers fall back to
    bare ids.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._users = db.get_collection("users")
        self._products = db.get_collection("products")
        self._orders = db.get_collection("orders")

    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, UserSummary]:
        ids = list({u for u in user_ids if u})
        if not ids:
            return {}
        projection = {"name": 1, "role": 1, "profileImage": 1, "sellerProfile.storeName": 1}
        found: Dict[str, UserSummary] = {}
        async for doc in self._users.find({"_id": {"$in": id_variants(ids)}}, projection):
            key = str(doc["_id"])
            try:
                found[key] = UserSummary(
                    id=key,
                    name=doc.get("name"),
                    role=doc.get("role"),
                    store_name=(doc.get("sellerProfile") or {}).get("storeName"),
                    profile_image=doc.get("profileImage"),
                )
            except ValidationError:
                logger.warning("Skipping malformed user %s", key)
        return found

    async def get_user(self, user_id: str) -> Optional[UserSummary]:
        return (await self.get_users([user_id])).get(user_id)

    async def get_products(self, product_ids: Iterable[str]) -> Dict[str, ProductSummary]:
        ids = list({p for p in product_ids if p})
        if not ids:
            return {}
        found: Dict[str, ProductSummary] = {}
        async for doc in self._products.find({"_id": {"$in": id_variants(ids)}}, {"title": 1, "price": 1, "previewImage": 1}):
            key = str(doc["_id"])
            try:
                found[key] = ProductSummary(id=key, title=doc.get("title"), price=doc.get("price"), image=doc.get("previewImage"))
            except ValidationError:
                logger.warning("Skipping malformed product %s", key)
        return found

    async def get_orders(self, order_ids: Iterable[str]) -> Dict[str, OrderSummary]:
        ids = list({o for o in order_ids if o})
        if not ids:
            return {}
        found: Dict[str, OrderSummary] = {}
        async for doc in self._orders.find({"_id": {"$in": id_variants(ids)}}, {"orderNumber": 1, "totalAmount": 1}):
            key = str(doc["_id"])
            try:
                found[key] = OrderSummary(id=key, order_number=doc.get("orderNumber"), total_amount=doc.get("totalAmount"))
            except ValidationError:
                logger.warning("Skipping malformed order %s", key)
        return found
