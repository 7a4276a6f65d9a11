from datetime import datetime
from typing import Optional, TypedDict

from bson import ObjectId


class MessageDocument(TypedDict, total=False):
    _id: ObjectId
    conversation_id: ObjectId
    sender_id: str
    content: str
    # insertion order within the conversation
    seq: int
    created_at: datetime
    # recipient's unread counter already includes this message
    delivered: bool
    is_read: bool
    read_at: Optional[datetime]
