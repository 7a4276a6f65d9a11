import logging
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo.errors import PyMongoError

from marketplace_messaging.core.config import settings
from marketplace_messaging.core.errors import (
    Forbidden,
    InternalError,
    InvalidContent,
    InvalidRecipient,
    MissingRecipient,
    NotFound,
)
from marketplace_messaging.repositories.conversation_repository import ConversationRepository
from marketplace_messaging.repositories.message_repository import MessageRepository
from marketplace_messaging.utils.ids import is_field_safe, to_object_id


logger = logging.getLogger(__name__)


def other_participant(conversation: Dict[str, Any], user_id: str) -> Optional[str]:
    for participant in conversation.get("participants", []):
        if participant != user_id:
            return participant
    return None


def unread_for(conversation: Dict[str, Any], user_id: str) -> int:
    return max(conversation.get("unread_counters", {}).get(user_id, 0), 0)


class ThreadStore:
    """Conversations, messages and the per-participant read state.

    Every counter change is a single-document ``$inc`` so concurrent sends and
    mark-reads from both participants never lose or double-count a message.
    """

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        message_repo: MessageRepository,
        max_length: int = settings.MESSAGE_MAX_LENGTH,
    ) -> None:
        self._conversations = conversation_repo
        self._messages = message_repo
        self._max_length = max_length

    def validate_content(self, content: Optional[str]) -> str:
        text = (content or "").strip()
        if not text:
            raise InvalidContent("Message content is required")
        if len(text) > self._max_length:
            raise InvalidContent(f"Message cannot exceed {self._max_length} characters")
        return text

    async def find_or_create_conversation(self, user_a: str, user_b: Optional[str], product_id: Optional[str] = None) -> Dict[str, Any]:
        if not user_b:
            raise MissingRecipient("Recipient is required for new conversation")
        if user_a == user_b:
            raise InvalidRecipient("Cannot start a conversation with yourself")
        if not is_field_safe(user_b):
            raise InvalidRecipient("Invalid recipient")
        return await self._conversations.get_or_create_one_to_one(user_a, user_b, product_id or None)

    async def get_conversation(self, conversation_id: Any, caller_id: str) -> Dict[str, Any]:
        conversation = await self._load(conversation_id)
        self._ensure_participant(conversation, caller_id)
        return conversation

    async def append_message(self, conversation_id: Any, sender_id: str, content: Optional[str]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        text = self.validate_content(content)
        conversation = await self.get_conversation(conversation_id, sender_id)
        cid: ObjectId = conversation["_id"]
        receiver_id = other_participant(conversation, sender_id)

        message = None
        updated = None
        try:
            seq = await self._conversations.reserve_seq(cid)
            if seq is None:
                raise NotFound("Conversation not found")
            message = await self._messages.save_message(cid, sender_id, text, seq)
            updated = await self._conversations.update_on_new_message(
                cid, message["_id"], seq, message["created_at"], receiver_id
            )
            await self._messages.mark_delivered(message["_id"])
        except PyMongoError as exc:
            logger.exception("Failed to store message in conversation %s", cid)
            if message is not None:
                await self._discard_message(conversation, message, receiver_id, counted=updated is not None)
            raise InternalError("Could not store message") from exc

        if updated is None:
            raise NotFound("Conversation not found")
        message["delivered"] = True
        return message, updated

    async def mark_read(self, conversation_id: Any, reader_id: str) -> Dict[str, Any]:
        conversation = await self.get_conversation(conversation_id, reader_id)
        cid = conversation["_id"]
        flipped = await self._messages.mark_read(cid, reader_id)
        # only messages flipped here leave the counter; a send racing this call stays counted
        updated = await self._conversations.consume_unread(cid, reader_id, flipped)
        return updated or conversation

    async def list_conversations(self, user_id: str, page: int = 1, page_size: int = 20) -> Tuple[List[Dict[str, Any]], int]:
        skip = (max(page, 1) - 1) * page_size
        return await self._conversations.list_for_user(user_id, skip=skip, limit=page_size)

    async def list_messages(self, conversation_id: Any, caller_id: str, page: int = 1, page_size: int = 50) -> Tuple[List[Dict[str, Any]], int]:
        conversation = await self.get_conversation(conversation_id, caller_id)
        skip = (max(page, 1) - 1) * page_size
        return await self._messages.get_messages_by_conversation(conversation["_id"], skip=skip, limit=page_size)

    async def delete_conversation(self, conversation_id: Any, caller_id: str) -> None:
        conversation = await self.get_conversation(conversation_id, caller_id)
        removed = await self._messages.delete_for_conversation(conversation["_id"])
        await self._conversations.delete(conversation["_id"])
        logger.info("Conversation %s deleted by %s (%d messages)", conversation["_id"], caller_id, removed)

    async def unread_total(self, user_id: str) -> int:
        return await self._conversations.total_unread(user_id)

    async def last_messages(self, conversations: List[Dict[str, Any]]) -> Dict[ObjectId, Dict[str, Any]]:
        return await self._messages.get_many(c.get("last_message_id") for c in conversations)

    async def _discard_message(self, conversation: Dict[str, Any], message: Dict[str, Any], receiver_id: str, counted: bool) -> None:
        # a failed send leaves nothing behind that mark-read could never clear
        cid = conversation["_id"]
        try:
            await self._messages.delete(message["_id"])
            if counted:
                await self._conversations.consume_unread(cid, receiver_id, 1)
            latest = await self._messages.latest_delivered(cid)
            await self._conversations.rewind_last_message(cid, message["_id"], latest, conversation.get("created_at"))
        except PyMongoError:
            logger.exception("Could not roll back message %s in conversation %s", message["_id"], cid)

    async def _load(self, conversation_id: Any) -> Dict[str, Any]:
        oid = to_object_id(conversation_id)
        conversation = await self._conversations.get_by_id(oid) if oid is not None else None
        if conversation is None:
            raise NotFound("Conversation not found")
        return conversation

    @staticmethod
    def _ensure_participant(conversation: Dict[str, Any], user_id: str) -> None:
        if user_id not in conversation.get("participants", []):
            raise Forbidden("Not authorized to access this conversation")
