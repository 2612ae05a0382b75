# medqbank/services/notification_service.py
import logging
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from medqbank.core.exceptions import BadRequestError, NotFoundError
from medqbank.core.schemas.engagement import NotificationSend
from medqbank.models.system import Notification
from medqbank.models.user import User

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, session: AsyncSession):
        self.session = session

    def add(self, user_id: int, title: str, message: str, type: str = "info") -> Notification:
        """Добавляет уведомление в текущую транзакцию (без commit)"""
        notification = Notification(user_id=user_id, title=title, message=message, type=type)
        self.session.add(notification)
        return notification

    async def list_for_user(self, user_id: int, unread_only: bool = False, limit: int = 50) -> Sequence[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        return (await self.session.execute(stmt)).scalars().all()

    async def unread_count(self, user_id: int) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == user_id, Notification.is_read.is_(False)
        )
        return await self.session.scalar(stmt) or 0

    async def mark_read(self, user_id: int, notification_id: Optional[int] = None) -> int:
        """Отметить одно (или все) уведомления прочитанными"""
        stmt = update(Notification).where(Notification.user_id == user_id, Notification.is_read.is_(False))
        if notification_id is not None:
            exists = await self.session.scalar(
                select(Notification.id).where(Notification.id == notification_id, Notification.user_id == user_id)
            )
            if exists is None:
                raise NotFoundError("Notification not found")
            stmt = stmt.where(Notification.id == notification_id)
        result = await self.session.execute(stmt.values(is_read=True))
        await self.session.commit()
        return result.rowcount or 0

    async def _target_user_ids(self, payload: NotificationSend) -> List[int]:
        stmt = select(User.id)
        if payload.target == "role":
            if not payload.role:
                raise BadRequestError("role is required for target=role")
            stmt = stmt.where(User.role == payload.role)
        elif payload.target == "niveau":
            if not payload.niveau_id:
                raise BadRequestError("niveau_id is required for target=niveau")
            stmt = stmt.where(User.niveau_id == payload.niveau_id)
        elif payload.target == "users":
            if not payload.user_ids:
                raise BadRequestError("user_ids is required for target=users")
            stmt = stmt.where(User.id.in_(payload.user_ids))
        return list((await self.session.execute(stmt)).scalars().all())

    async def send(self, payload: NotificationSend) -> int:
        """Рассылка от администратора. Возвращает число получателей."""
        user_ids = await self._target_user_ids(payload)
        self._add_many(user_ids, payload.title, payload.message, payload.type)
        await self.session.commit()
        logger.info(f"📣 Notification '{payload.title}' sent to {len(user_ids)} users")
        return len(user_ids)

    def _add_many(self, user_ids: Iterable[int], title: str, message: str, type: str) -> None:
        self.session.add_all(
            [Notification(user_id=uid, title=title, message=message, type=type) for uid in user_ids]
        )
