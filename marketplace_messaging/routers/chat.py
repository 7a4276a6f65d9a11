import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from marketplace_messaging.core.errors import AppError, Unauthorized
from marketplace_messaging.database.connection import mongo_db_dependency
from marketplace_messaging.repositories.conversation_repository import ConversationRepository
from marketplace_messaging.repositories.message_repository import MessageRepository
from marketplace_messaging.schemas.base import UnreadCountResponse
from marketplace_messaging.schemas.messaging import SendMessageRequest, SendMessageResponse
from marketplace_messaging.services.chat_service import ChatService
from marketplace_messaging.services.thread_store import ThreadStore
from marketplace_messaging.utils.dependencies import get_chat_service, get_current_user_id
from marketplace_messaging.utils.realtime_bus import thread_channel, user_channel
from marketplace_messaging.utils.security import decode_access_token


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["chat"])
ws_router = APIRouter(tags=["realtime"])


@router.post("/send", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(body: SendMessageRequest, user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    return await service.send_message(user_id, body)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    return UnreadCountResponse(unread_count=await service.unread_count(user_id))


@ws_router.websocket("/ws")
async def live_socket(websocket: WebSocket, db=Depends(mongo_db_dependency)):
    # token comes in the query string: /ws?token=...
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user_id = decode_access_token(token).sub
    except Unauthorized:
        await websocket.close(code=4401)
        return

    store = ThreadStore(ConversationRepository(db), MessageRepository(db))
    manager = websocket.app.state.connections
    session = await manager.connect(user_id, websocket, websocket.app.state.bus)
    try:
        await session.follow(user_channel(user_id))
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await session.send("error", {"message": "Invalid frame"})
                continue
            if not isinstance(frame, dict):
                await session.send("error", {"message": "Invalid frame"})
                continue

            action = frame.get("action")
            conversation_id = frame.get("conversationId")
            if action == "join":
                try:
                    await store.get_conversation(conversation_id, user_id)
                except AppError as exc:
                    await session.send("error", {"message": exc.message, "conversationId": conversation_id})
                    continue
                await session.follow(thread_channel(str(conversation_id)))
            elif action == "leave":
                if conversation_id:
                    await session.unfollow(thread_channel(str(conversation_id)))
            else:
                await session.send("error", {"message": f"Unknown action: {action}"})
    except WebSocketDisconnect:
        logger.debug("Socket for %s disconnected", user_id)
    finally:
        await manager.disconnect(session)
