import logging
from typing import Any, Dict, Optional, Union

from marketplace_messaging.core.config import settings
from marketplace_messaging.core.errors import Forbidden, NotFound
from marketplace_messaging.repositories.directory_repository import DirectoryRepository
from marketplace_messaging.repositories.notification_repository import NotificationRepository
from marketplace_messaging.schemas.base import page_meta
from marketplace_messaging.schemas.notification import (
    NotificationCreate,
    NotificationListResponse,
    NotificationPublic,
)
from marketplace_messaging.schemas.user import OrderSummary, ProductSummary
from marketplace_messaging.utils.ids import to_object_id


logger = logging.getLogger(__name__)


class NotificationService:
    """Recipient-scoped inbox shared by messaging, orders and product review."""

    def __init__(self, notification_repo: NotificationRepository, directory: DirectoryRepository) -> None:
        self._repo = notification_repo
        self._directory = directory

    async def raise_notification(self, user_id: str, data: Union[NotificationCreate, Dict[str, Any]]) -> Optional[NotificationPublic]:
        """Best-effort insert: returns ``None`` instead of raising on failure."""
        kind = data.type if isinstance(data, NotificationCreate) else data.get("type")
        try:
            payload = data if isinstance(data, NotificationCreate) else NotificationCreate.model_validate(data)
            doc = await self._repo.create(user_id, payload.model_dump())
        except Exception:
            logger.exception("Error creating %s notification for user %s", kind, user_id)
            return None
        return self._to_public(doc)

    async def list_notifications(self, user_id: str, page: int = 1, page_size: int = settings.NOTIFICATIONS_PAGE_SIZE) -> NotificationListResponse:
        page = max(page, 1)
        items, total = await self._repo.list_for_user(user_id, skip=(page - 1) * page_size, limit=page_size)
        products = await self._directory.get_products(d.get("related_product_id") for d in items)
        orders = await self._directory.get_orders(d.get("related_order_id") for d in items)
        unread = await self._repo.count_unread(user_id)
        return NotificationListResponse(
            data=[self._to_public(d, products, orders) for d in items],
            unread_count=unread,
            **page_meta(total, page, page_size),
        )

    async def unread_count(self, user_id: str) -> int:
        return await self._repo.count_unread(user_id)

    async def mark_read(self, notification_id: str, caller_id: str) -> NotificationPublic:
        doc = await self._load_owned(notification_id, caller_id)
        updated = await self._repo.mark_read(doc["_id"])
        if updated is None:
            raise NotFound("Notification not found")
        return self._to_public(updated)

    async def mark_all_read(self, user_id: str) -> int:
        return await self._repo.mark_all_read(user_id)

    async def delete(self, notification_id: str, caller_id: str) -> None:
        doc = await self._load_owned(notification_id, caller_id)
        await self._repo.delete(doc["_id"])

    async def _load_owned(self, notification_id: str, caller_id: str) -> Dict[str, Any]:
        oid = to_object_id(notification_id)
        doc = await self._repo.get_by_id(oid) if oid is not None else None
        if doc is None:
            raise NotFound("Notification not found")
        if doc.get("user_id") != caller_id:
            raise Forbidden("Not authorized")
        return doc

    @staticmethod
    def _to_public(
        doc: Dict[str, Any],
        products: Optional[Dict[str, ProductSummary]] = None,
        orders: Optional[Dict[str, OrderSummary]] = None,
    ) -> NotificationPublic:
        product_id = doc.get("related_product_id")
        order_id = doc.get("related_order_id")
        return NotificationPublic(
            id=str(doc["_id"]),
            user_id=doc["user_id"],
            type=doc["type"],
            title=doc["title"],
            message=doc["message"],
            link=doc.get("link"),
            related_product=(products or {}).get(product_id) or (ProductSummary(id=product_id) if product_id else None),
            related_order=(orders or {}).get(order_id) or (OrderSummary(id=order_id) if order_id else None),
            is_read=doc.get("is_read", False),
            created_at=doc["created_at"],
        )
