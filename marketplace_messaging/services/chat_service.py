import logging
from typing import Any, Dict, List, Tuple

from bson import ObjectId
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from marketplace_messaging.core.config import settings
from marketplace_messaging.repositories.directory_repository import DirectoryRepository
from marketplace_messaging.schemas.base import page_meta
from marketplace_messaging.schemas.messaging import (
    ConversationListResponse,
    ConversationPublic,
    MessageListResponse,
    MessagePublic,
    NewMessageEvent,
    SendMessageRequest,
    SendMessageResponse,
)
from marketplace_messaging.schemas.notification import NotificationCreate
from marketplace_messaging.schemas.user import ProductSummary, UserSummary
from marketplace_messaging.services.notification_service import NotificationService
from marketplace_messaging.services.thread_store import ThreadStore, other_participant, unread_for
from marketplace_messaging.utils.background import BackgroundDispatcher
from marketplace_messaging.utils.realtime_bus import thread_channel, user_channel


logger = logging.getLogger(__name__)

_Lookups = Tuple[Dict[str, UserSummary], Dict[str, ProductSummary], Dict[ObjectId, Dict[str, Any]]]


class ChatService:

    def __init__(
        self,
        store: ThreadStore,
        notifications: NotificationService,
        directory: DirectoryRepository,
        bus,
        dispatcher: BackgroundDispatcher,
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._directory = directory
        self._bus = bus
        self._dispatcher = dispatcher

    async def send_message(self, sender_id: str, request: SendMessageRequest) -> SendMessageResponse:
        self._store.validate_content(request.content)
        if request.conversation_id:
            conversation = await self._store.get_conversation(request.conversation_id, sender_id)
        else:
            conversation = await self._store.find_or_create_conversation(sender_id, request.recipient_id, request.product_id)

        message, updated = await self._store.append_message(conversation["_id"], sender_id, request.content)

        # durable from here on; live push and inbox are side effects
        try:
            lookups = await self._lookups([updated])
        except (PyMongoError, ValidationError):
            logger.exception("Directory lookup failed for conversation %s", updated["_id"])
            lookups = ({}, {}, {message["_id"]: message})
        message_view = self._message_public(message, lookups[0])
        self._dispatcher.spawn(
            self._deliver_new_message(updated, message_view, sender_id, lookups),
            name=f"deliver-message-{message['_id']}",
        )
        return SendMessageResponse(message=message_view, conversation=self._conversation_public(updated, sender_id, lookups))

    async def mark_read(self, conversation_id: str, reader_id: str) -> None:
        updated = await self._store.mark_read(conversation_id, reader_id)
        self._dispatcher.spawn(self._publish_conversation(updated, reader_id), name=f"mark-read-{conversation_id}")

    async def list_conversations(self, user_id: str, page: int = 1, page_size: int = settings.CONVERSATIONS_PAGE_SIZE) -> ConversationListResponse:
        page = max(page, 1)
        items, total = await self._store.list_conversations(user_id, page, page_size)
        lookups = await self._lookups(items)
        total_unread = await self._store.unread_total(user_id)
        return ConversationListResponse(
            data=[self._conversation_public(c, user_id, lookups) for c in items],
            total_unread=total_unread,
            **page_meta(total, page, page_size),
        )

    async def get_conversation(self, conversation_id: str, user_id: str) -> ConversationPublic:
        conversation = await self._store.get_conversation(conversation_id, user_id)
        lookups = await self._lookups([conversation])
        return self._conversation_public(conversation, user_id, lookups)

    async def list_messages(self, conversation_id: str, user_id: str, page: int = 1, page_size: int = settings.MESSAGES_PAGE_SIZE) -> MessageListResponse:
        page = max(page, 1)
        items, total = await self._store.list_messages(conversation_id, user_id, page, page_size)
        users = await self._directory.get_users(m["sender_id"] for m in items)
        return MessageListResponse(
            data=[self._message_public(m, users) for m in items],
            **page_meta(total, page, page_size),
        )

    async def delete_conversation(self, conversation_id: str, user_id: str) -> None:
        await self._store.delete_conversation(conversation_id, user_id)

    async def unread_count(self, user_id: str) -> int:
        return await self._store.unread_total(user_id)

    async def _deliver_new_message(self, conversation: Dict[str, Any], message: MessagePublic, sender_id: str, lookups: _Lookups) -> None:
        conversation_id = str(conversation["_id"])
        event = NewMessageEvent(conversation_id=conversation_id, message=message)
        await self._publish(thread_channel(conversation_id), "message:new", event.to_wire())
        for participant in conversation.get("participants", []):
            view = self._conversation_public(conversation, participant, lookups)
            await self._publish(user_channel(participant), "conversation:upsert", view.to_wire())

        recipient_id = other_participant(conversation, sender_id)
        if recipient_id:
            sender = lookups[0].get(sender_id)
            await self._notifications.raise_notification(
                recipient_id,
                NotificationCreate(
                    type="message",
                    title="New Message",
                    message=f"You have a new message from {sender.name if sender and sender.name else 'a user'}",
                    link=f"/messages/{conversation_id}",
                ),
            )

    async def _publish_conversation(self, conversation: Dict[str, Any], viewer_id: str) -> None:
        lookups = await self._lookups([conversation])
        view = self._conversation_public(conversation, viewer_id, lookups)
        await self._publish(user_channel(viewer_id), "conversation:upsert", view.to_wire())

    async def _publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        try:
            await self._bus.publish(channel, event, payload)
        except Exception:
            logger.exception("Failed to publish %s to %s", event, channel)

    async def _lookups(self, conversations: List[Dict[str, Any]]) -> _Lookups:
        users = await self._directory.get_users(p for c in conversations for p in c.get("participants", []))
        products = await self._directory.get_products(c.get("product_id") for c in conversations)
        last_messages = await self._store.last_messages(conversations)
        return users, products, last_messages

    @staticmethod
    def _message_public(doc: Dict[str, Any], users: Dict[str, UserSummary]) -> MessagePublic:
        return MessagePublic(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender_id=doc["sender_id"],
            sender=users.get(doc["sender_id"]) or UserSummary(id=doc["sender_id"]),
            content=doc["content"],
            is_read=doc.get("is_read", False),
            read_at=doc.get("read_at"),
            created_at=doc["created_at"],
        )

    def _conversation_public(self, conversation: Dict[str, Any], viewer_id: str, lookups: _Lookups) -> ConversationPublic:
        users, products, last_messages = lookups
        participants = [users.get(p) or UserSummary(id=p) for p in conversation.get("participants", [])]
        other_id = other_participant(conversation, viewer_id)
        product_id = conversation.get("product_id")
        last_doc = last_messages.get(conversation.get("last_message_id"))
        return ConversationPublic(
            id=str(conversation["_id"]),
            participants=participants,
            other_participant=(users.get(other_id) or UserSummary(id=other_id)) if other_id else None,
            product=(products.get(product_id) or ProductSummary(id=product_id)) if product_id else None,
            last_message=self._message_public(last_doc, users) if last_doc else None,
            last_message_at=conversation.get("last_message_at"),
            unread_count=unread_for(conversation, viewer_id),
            created_at=conversation.get("created_at"),
        )
