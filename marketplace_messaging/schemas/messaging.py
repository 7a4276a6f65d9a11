from datetime import datetime
from typing import List, Optional

from marketplace_messaging.schemas.base import CamelModel, Page
from marketplace_messaging.schemas.user import ProductSummary, UserSummary


class MessagePublic(CamelModel):

    id: str
    conversation_id: str
    sender_id: str
    sender: Optional[UserSummary] = None
    content: str
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime


class ConversationPublic(CamelModel):
    """A conversation as seen by one of its participants."""

    id: str
    participants: List[UserSummary]
    other_participant: Optional[UserSummary] = None
    product: Optional[ProductSummary] = None
    last_message: Optional[MessagePublic] = None
    last_message_at: Optional[datetime] = None
    unread_count: int = 0
    created_at: Optional[datetime] = None


class SendMessageRequest(CamelModel):

    conversation_id: Optional[str] = None
    recipient_id: Optional[str] = None
    product_id: Optional[str] = None
    content: str = ""


class SendMessageResponse(CamelModel):

    message: MessagePublic
    conversation: ConversationPublic


class ConversationListResponse(Page):

    data: List[ConversationPublic]
    total_unread: int


class MessageListResponse(Page):

    data: List[MessagePublic]


class NewMessageEvent(CamelModel):
    """Payload of ``message:new`` on a thread channel."""

    conversation_id: str
    message: MessagePublic
