# medqbank/api/v1/routes/sessions.py
from typing import List, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medqbank.core.database import db_helper
from medqbank.core.exceptions import NotFoundError
from medqbank.core.schemas.content import ExamSessionCreate, ExamSessionResponse, ExamSessionUpdate
from medqbank.core.utils import get_current_user, require_maintainer_or_admin
from medqbank.models.session import ExamSession
from medqbank.models.user import User, UserRole

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("", response_model=List[ExamSessionResponse])
async def list_sessions(
    specialty_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    """Студент видит только сессии своего уровня"""
    stmt = select(ExamSession).order_by(ExamSession.created_at.desc(), ExamSession.id.desc())
    if specialty_id is not None:
        stmt = stmt.where(ExamSession.specialty_id == specialty_id)
    if current_user.role == UserRole.STUDENT.value:
        stmt = stmt.where(ExamSession.niveau_id == current_user.niveau_id)
    return (await session.execute(stmt)).scalars().all()


@router.post("", response_model=ExamSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: ExamSessionCreate,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    exam = ExamSession(**payload.model_dump())
    session.add(exam)
    await session.commit()
    await session.refresh(exam)
    return exam


async def _get_exam(session: AsyncSession, session_id: int) -> ExamSession:
    exam = await session.get(ExamSession, session_id)
    if exam is None:
        raise NotFoundError("Session not found")
    return exam


@router.patch("/{session_id}", response_model=ExamSessionResponse)
async def update_session(
    session_id: int,
    payload: ExamSessionUpdate,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    exam = await _get_exam(session, session_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(exam, key, value)
    await session.commit()
    return exam


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: int,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    exam = await _get_exam(session, session_id)
    await session.delete(exam)
    await session.commit()
