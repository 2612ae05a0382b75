# medqbank/api/v1/routes/notifications.py
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from medqbank.core.database import db_helper
from medqbank.core.schemas.engagement import NotificationResponse, NotificationSend
from medqbank.core.utils import get_current_user, require_admin
from medqbank.models.user import User
from medqbank.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])


@router.get("/notifications", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await NotificationService(session).list_for_user(user.id, unread_only=unread_only)


@router.get("/notifications/unread-count")
async def unread_count(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return {"count": await NotificationService(session).unread_count(user.id)}


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    updated = await NotificationService(session).mark_read(user.id, notification_id)
    return {"updated": updated}


@router.post("/notifications/read-all")
async def mark_all_read(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    updated = await NotificationService(session).mark_read(user.id)
    return {"updated": updated}


@router.post("/admin/notifications")
async def send_notification(
    payload: NotificationSend,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    """Рассылка уведомления: всем, по роли, по уровню или списку пользователей"""
    sent = await NotificationService(session).send(payload)
    logger.info(f"📣 Admin {admin.id} sent notification '{payload.title}' to {sent} users")
    return {"sent": sent}
