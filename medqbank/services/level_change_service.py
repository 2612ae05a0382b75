# medqbank/services/level_change_service.py
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medqbank.core.exceptions import BadRequestError, ConflictError, NotFoundError
from medqbank.models.content import Niveau
from medqbank.models.system import LevelChangeRequest, RequestStatus
from medqbank.models.user import User
from medqbank.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class LevelChangeService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, user: User, requested_niveau_id: int, reason: Optional[str]) -> LevelChangeRequest:
        """Заявка студента на смену уровня (одна активная за раз)"""
        if await self.session.get(Niveau, requested_niveau_id) is None:
            raise NotFoundError("Niveau not found")
        if requested_niveau_id == user.niveau_id:
            raise BadRequestError("You are already at this level")
        pending = await self.session.scalar(
            select(LevelChangeRequest.id).where(
                LevelChangeRequest.user_id == user.id,
                LevelChangeRequest.status == RequestStatus.PENDING.value,
            )
        )
        if pending is not None:
            raise ConflictError("A level change request is already pending")

        request = LevelChangeRequest(
            user_id=user.id,
            current_niveau_id=user.niveau_id,
            requested_niveau_id=requested_niveau_id,
            reason=reason,
        )
        self.session.add(request)
        await self.session.commit()
        await self.session.refresh(request)
        return request

    async def list(self, status: Optional[str] = None, user_id: Optional[int] = None) -> Sequence[LevelChangeRequest]:
        stmt = select(LevelChangeRequest).order_by(LevelChangeRequest.created_at.desc(), LevelChangeRequest.id.desc())
        if status:
            stmt = stmt.where(LevelChangeRequest.status == status)
        if user_id is not None:
            stmt = stmt.where(LevelChangeRequest.user_id == user_id)
        return (await self.session.execute(stmt)).scalars().all()

    async def review(self, request_id: int, admin: User, approve: bool, admin_note: Optional[str]) -> LevelChangeRequest:
        """
        Решение администратора. Смена уровня пользователя, статус заявки
        и уведомление коммитятся одной транзакцией.
        """
        request = await self.session.get(LevelChangeRequest, request_id)
        if request is None:
            raise NotFoundError("Level change request not found")
        if request.status != RequestStatus.PENDING.value:
            raise ConflictError("Request already reviewed")

        user = await self.session.get(User, request.user_id)
        if user is None:
            raise NotFoundError("User not found")
        niveau = await self.session.get(Niveau, request.requested_niveau_id)

        request.status = RequestStatus.APPROVED.value if approve else RequestStatus.REJECTED.value
        request.admin_note = admin_note
        request.reviewed_by = admin.id
        request.reviewed_at = datetime.now(timezone.utc)

        notifications = NotificationService(self.session)
        if approve:
            user.niveau_id = request.requested_niveau_id
            user.semester_id = None
            notifications.add(
                user.id,
                "Changement de niveau accepté",
                f"Votre niveau est maintenant {niveau.name if niveau else request.requested_niveau_id}.",
                type="success",
            )
        else:
            notifications.add(
                user.id,
                "Changement de niveau refusé",
                admin_note or "Votre demande de changement de niveau a été refusée.",
                type="warning",
            )

        await self.session.commit()
        await self.session.refresh(request)
        logger.info(f"Level change request {request.id} {request.status} by admin {admin.id}")
        return request
