from datetime import datetime
from typing import List, Optional, TypedDict

from bson import ObjectId


class ConversationDocument(TypedDict, total=False):
    _id: ObjectId
    # sorted pair; participant_key is "<low>:<high>" and backs the unique index
    participants: List[str]
    participant_key: str
    product_id: Optional[str]
    last_message_id: Optional[ObjectId]
    last_message_seq: int
    last_message_at: datetime
    message_seq: int
    # per-user unread counters (user_id -> count), absent means zero
    unread_counters: dict[str, int]
    created_at: datetime
    updated_at: datetime
