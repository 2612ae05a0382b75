# medqbank/api/v1/routes/level_change.py
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from medqbank.core.database import db_helper
from medqbank.core.schemas.engagement import LevelChangeCreate, LevelChangeResponse, LevelChangeReview
from medqbank.core.utils import get_current_user, require_admin
from medqbank.models.user import User
from medqbank.services.level_change_service import LevelChangeService

router = APIRouter(tags=["level-change"])


@router.post("/level-change-requests", response_model=LevelChangeResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: LevelChangeCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await LevelChangeService(session).create(user, payload.requested_niveau_id, payload.reason)


@router.get("/level-change-requests/me", response_model=List[LevelChangeResponse])
async def my_requests(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await LevelChangeService(session).list(user_id=user.id)


@router.get("/admin/level-change-requests", response_model=List[LevelChangeResponse])
async def list_requests(
    status_filter: Optional[str] = Query(None, alias="status"),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await LevelChangeService(session).list(status=status_filter)


@router.post("/admin/level-change-requests/{request_id}/review", response_model=LevelChangeResponse)
async def review_request(
    request_id: int,
    payload: LevelChangeReview,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await LevelChangeService(session).review(request_id, admin, payload.approve, payload.admin_note)
