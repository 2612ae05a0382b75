# medqbank/api/v1/routes/progress.py
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from medqbank.core.database import db_helper
from medqbank.core.schemas.engagement import LectureProgress, QuestionStateResponse, QuestionStateUpdate
from medqbank.core.utils import get_current_user
from medqbank.models.user import User
from medqbank.services.progress_service import ProgressService

router = APIRouter(tags=["progress"])


@router.get("/user-question-state/{question_id}", response_model=Optional[QuestionStateResponse])
async def get_question_state(
    question_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    """Состояние текущего пользователя по вопросу; null, если он его ещё не открывал"""
    return await ProgressService(session).get_state(user.id, question_id)


@router.put("/user-question-state/{question_id}", response_model=QuestionStateResponse)
async def save_question_state(
    question_id: int,
    payload: QuestionStateUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await ProgressService(session).save_state(user.id, question_id, payload)


@router.get("/lectures/{lecture_id}/progress", response_model=LectureProgress)
async def lecture_progress(
    lecture_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await ProgressService(session).lecture_progress(user.id, lecture_id)
