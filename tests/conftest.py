import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from marketplace_messaging.repositories.conversation_repository import ConversationRepository
from marketplace_messaging.repositories.directory_repository import DirectoryRepository
from marketplace_messaging.repositories.message_repository import MessageRepository
from marketplace_messaging.repositories.notification_repository import NotificationRepository
from marketplace_messaging.services.chat_service import ChatService
from marketplace_messaging.services.notification_service import NotificationService
from marketplace_messaging.services.thread_store import ThreadStore
from marketplace_messaging.utils.background import BackgroundDispatcher
from marketplace_messaging.utils.realtime_bus import InMemoryBus


@pytest.fixture
async def db():
    database = AsyncMongoMockClient()["marketplace_test"]
    await ConversationRepository(database).ensure_indexes()
    await MessageRepository(database).ensure_indexes()
    await NotificationRepository(database).ensure_indexes()
    return database


@pytest.fixture
async def users(db):
    alice, bob, carol = ObjectId(), ObjectId(), ObjectId()
    await db["users"].insert_many(
        [
            {"_id": alice, "name": "Alice", "role": "buyer"},
            {"_id": bob, "name": "Bob", "role": "seller", "sellerProfile": {"storeName": "Bob's Prints"}},
            {"_id": carol, "name": "Carol", "role": "buyer"},
        ]
    )
    return {"alice": str(alice), "bob": str(bob), "carol": str(carol)}


@pytest.fixture
async def product_id(db):
    oid = ObjectId()
    await db["products"].insert_one({"_id": oid, "title": "Poster pack", "price": 12.5, "previewImage": "/img/poster.png"})
    return str(oid)


@pytest.fixture
def store(db):
    return ThreadStore(ConversationRepository(db), MessageRepository(db))


@pytest.fixture
def bus():
    return InMemoryBus(queue_size=32)


@pytest.fixture
def dispatcher():
    return BackgroundDispatcher()


@pytest.fixture
def notification_service(db):
    return NotificationService(NotificationRepository(db), DirectoryRepository(db))


@pytest.fixture
def chat_service(db, store, notification_service, bus, dispatcher):
    return ChatService(store, notification_service, DirectoryRepository(db), bus, dispatcher)
