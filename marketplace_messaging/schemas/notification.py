from datetime import datetime
from typing import List, Optional

from marketplace_messaging.models.notification import NotificationType
from marketplace_messaging.schemas.base import CamelModel, Page
from marketplace_messaging.schemas.user import OrderSummary, ProductSummary


class NotificationCreate(CamelModel):

    type: NotificationType
    title: str
    message: str
    link: Optional[str] = None
    related_product_id: Optional[str] = None
    related_order_id: Optional[str] = None


class NotificationPublic(CamelModel):

    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    link: Optional[str] = None
    related_product: Optional[ProductSummary] = None
    related_order: Optional[OrderSummary] = None
    is_read: bool = False
    created_at: datetime


class NotificationListResponse(Page):

    data: List[NotificationPublic]
    unread_count: int
