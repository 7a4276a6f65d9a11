from fastapi import APIRouter, Depends, Query

from marketplace_messaging.core.config import settings
from marketplace_messaging.schemas.base import AckResponse, UnreadCountResponse
from marketplace_messaging.schemas.notification import NotificationListResponse, NotificationPublic
from marketplace_messaging.services.notification_service import NotificationService
from marketplace_messaging.utils.dependencies import get_current_user_id, get_notification_service


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.NOTIFICATIONS_PAGE_SIZE, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.list_notifications(user_id, page=page, page_size=limit)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(user_id: str = Depends(get_current_user_id), service: NotificationService = Depends(get_notification_service)):
    return UnreadCountResponse(unread_count=await service.unread_count(user_id))


@router.put("/mark-all-read", response_model=AckResponse)
async def mark_all_read(user_id: str = Depends(get_current_user_id), service: NotificationService = Depends(get_notification_service)):
    await service.mark_all_read(user_id)
    return AckResponse(message="All notifications marked as read")


@router.put("/{notification_id}/mark-read", response_model=NotificationPublic)
async def mark_read(notification_id: str, user_id: str = Depends(get_current_user_id), service: NotificationService = Depends(get_notification_service)):
    return await service.mark_read(notification_id, user_id)


@router.delete("/{notification_id}", response_model=AckResponse)
async def delete_notification(notification_id: str, user_id: str = Depends(get_current_user_id), service: NotificationService = Depends(get_notification_service)):
    await service.delete(notification_id, user_id)
    return AckResponse(message="Notification deleted")
