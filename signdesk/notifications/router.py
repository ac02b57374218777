# signdesk/notifications/router.py

from fastapi import APIRouter, Depends, HTTPException, Query, status

from signdesk.core.exceptions import SignDeskBaseException, convert_to_http_exception
from signdesk.notifications.schemas import NotificationListResponse, NotificationResponse
from signdesk.notifications.services import NotificationService
from signdesk.users.models import User
from signdesk.users.utils import get_current_user
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["Notifications"], prefix="/notifications")


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(False),
    notification_service: NotificationService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """In-app notifications of the current user"""
    try:
        return await notification_service.list_notifications(current_user, unread_only)
    except Exception as e:
        logger.error(f"Failed to list notifications: {str(e)}", user_id=current_user.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to list notifications", "error": str(e)}
        ) from e


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: int,
    notification_service: NotificationService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """Mark a notification read"""
    try:
        return await notification_service.mark_read(notification_id, current_user)
    except SignDeskBaseException as e:
        raise convert_to_http_exception(e) from e
    except Exception as e:
        logger.error(f"Failed to mark notification read: {str(e)}", notification_id=notification_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to mark notification read", "error": str(e)}
        ) from e
