from datetime import datetime
from typing import Literal, Optional, TypedDict

from bson import ObjectId


NotificationType = Literal["message", "order", "product_approved", "product_rejected", "review"]


class NotificationDocument(TypedDict, total=False):
    _id: ObjectId
    user_id: str
    type: NotificationType
    title: str
    message: str
    link: Optional[str]
    related_product_id: Optional[str]
    related_order_id: Optional[str]
    is_read: bool
    created_at: datetime
