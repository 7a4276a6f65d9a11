from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from motor.motor_asyncio import AsyncIOMotorDatabase

from marketplace_messaging.core.errors import Unauthorized
from marketplace_messaging.database.connection import mongo_db_dependency
from marketplace_messaging.repositories.conversation_repository import ConversationRepository
from marketplace_messaging.repositories.directory_repository import DirectoryRepository
from marketplace_messaging.repositories.message_repository import MessageRepository
from marketplace_messaging.repositories.notification_repository import NotificationRepository
from marketplace_messaging.services.chat_service import ChatService
from marketplace_messaging.services.notification_service import NotificationService
from marketplace_messaging.services.thread_store import ThreadStore
from marketplace_messaging.utils.security import decode_access_token


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user_id(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> str:
    if credentials is None:
        raise Unauthorized("Not authorized, no token")
    return decode_access_token(credentials.credentials).sub


def get_bus(request: Request):
    return request.app.state.bus


def get_dispatcher(request: Request):
    return request.app.state.dispatcher


def get_thread_store(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> ThreadStore:
    return ThreadStore(ConversationRepository(db), MessageRepository(db))


def get_notification_service(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> NotificationService:
    return NotificationService(NotificationRepository(db), DirectoryRepository(db))


def get_chat_service(
    db: AsyncIOMotorDatabase = Depends(mongo_db_dependency),
    store: ThreadStore = Depends(get_thread_store),
    notifications: NotificationService = Depends(get_notification_service),
    bus=Depends(get_bus),
    dispatcher=Depends(get_dispatcher),
) -> ChatService:
    return ChatService(store, notifications, DirectoryRepository(db), bus, dispatcher)
