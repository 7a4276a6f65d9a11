from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketplace_messaging.core.config import settings
from marketplace_messaging.core.errors import register_exception_handlers
from marketplace_messaging.core.logging import configure_logging
from marketplace_messaging.database.connection import close_mongo_connection, connect_to_mongo
from marketplace_messaging.repositories.conversation_repository import ConversationRepository
from marketplace_messaging.repositories.message_repository import MessageRepository
from marketplace_messaging.repositories.notification_repository import NotificationRepository
from marketplace_messaging.routers.chat import router as chat_router
from marketplace_messaging.routers.chat import ws_router
from marketplace_messaging.routers.conversations import router as conversations_router
from marketplace_messaging.routers.notifications import router as notifications_router
from marketplace_messaging.utils.background import BackgroundDispatcher
from marketplace_messaging.utils.realtime_bus import create_bus
from marketplace_messaging.utils.websocket_manager import ConnectionManager


@asynccontextmanager
async def lifespan(app: FastAPI):

    db = await connect_to_mongo()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await NotificationRepository(db).ensure_indexes()

    app.state.bus = create_bus(settings.REDIS_URL, queue_size=settings.FANOUT_QUEUE_SIZE)
    app.state.dispatcher = BackgroundDispatcher()
    app.state.connections = ConnectionManager()
    try:
        yield
    finally:
        await app.state.connections.close_all()
        await app.state.dispatcher.drain(timeout=5)
        await app.state.bus.close()
        await close_mongo_connection()


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(conversations_router)
    app.include_router(chat_router)
    app.include_router(notifications_router)
    app.include_router(ws_router)

    @app.get("/api/health")
    async def health():
        return {"status": "OK", "message": "Server is running"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("marketplace_messaging.main:app", host="0.0.0.0", port=8000)
