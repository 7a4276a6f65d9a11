from fastapi import APIRouter, Depends, Query

from marketplace_messaging.core.config import settings
from marketplace_messaging.schemas.base import AckResponse
from marketplace_messaging.schemas.messaging import ConversationListResponse, ConversationPublic, MessageListResponse
from marketplace_messaging.services.chat_service import ChatService
from marketplace_messaging.utils.dependencies import get_chat_service, get_current_user_id


router = APIRouter(prefix="/api/messages/conversations", tags=["chat"])


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.CONVERSATIONS_PAGE_SIZE, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
):
    return await service.list_conversations(user_id, page=page, page_size=limit)


@router.get("/{conversation_id}", response_model=ConversationPublic)
async def get_conversation(conversation_id: str, user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    return await service.get_conversation(conversation_id, user_id)


@router.get("/{conversation_id}/messages", response_model=MessageListResponse)
async def list_messages(
    conversation_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.MESSAGES_PAGE_SIZE, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
):
    return await service.list_messages(conversation_id, user_id, page=page, page_size=limit)


@router.put("/{conversation_id}/mark-read", response_model=AckResponse)
async def mark_read(conversation_id: str, user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    await service.mark_read(conversation_id, user_id)
    return AckResponse(message="Messages marked as read")


@router.delete("/{conversation_id}", response_model=AckResponse)
async def delete_conversation(conversation_id: str, user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    await service.delete_conversation(conversation_id, user_id)
    return AckResponse(message="Conversation deleted")
