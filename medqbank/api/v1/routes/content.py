# medqbank/api/v1/routes/content.py
from typing import List, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
import logging

from medqbank.core.database import db_helper
from medqbank.core.exceptions import ConflictError, NotFoundError
from medqbank.core.schemas.content import (
    NiveauResponse, SpecialtyCreate, SpecialtyResponse,
    LectureCreate, LectureUpdate, LectureResponse, QuestionResponse,
)
from medqbank.core.utils import get_current_user, require_maintainer_or_admin
from medqbank.models.user import User
from medqbank.repositories.content_repository import ContentRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["content"])


@router.get("/niveaux", response_model=List[NiveauResponse])
async def list_niveaux(session: AsyncSession = Depends(db_helper.session_getter)):
    """Уровни с семестрами (нужны и на странице регистрации)"""
    return await ContentRepository(session).list_niveaux()


@router.get("/specialties", response_model=List[SpecialtyResponse])
async def list_specialties(
    niveau_id: Optional[int] = None,
    semester_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await ContentRepository(session).list_specialties(niveau_id, semester_id)


@router.post("/specialties", response_model=SpecialtyResponse, status_code=status.HTTP_201_CREATED)
async def create_specialty(
    payload: SpecialtyCreate,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    repo = ContentRepository(session)
    if await repo.get_specialty_by_name(payload.name):
        raise ConflictError("Specialty already exists")
    specialty = await repo.create_specialty(**payload.model_dump())
    await session.commit()
    return specialty


@router.get("/lectures", response_model=List[LectureResponse])
async def list_lectures(
    specialty_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    rows = await ContentRepository(session).list_lectures_with_counts(specialty_id)
    return [
        LectureResponse.model_validate(lecture).model_copy(update={"question_count": count})
        for lecture, count in rows
    ]


@router.post("/lectures", response_model=LectureResponse, status_code=status.HTTP_201_CREATED)
async def create_lecture(
    payload: LectureCreate,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    repo = ContentRepository(session)
    if await repo.get_specialty(payload.specialty_id) is None:
        raise NotFoundError("Specialty not found")
    if await repo.get_lecture_by_title(payload.specialty_id, payload.title):
        raise ConflictError("Lecture already exists in this specialty")
    lecture = await repo.create_lecture(**payload.model_dump())
    await session.commit()
    return lecture


@router.patch("/lectures/{lecture_id}", response_model=LectureResponse)
async def update_lecture(
    lecture_id: int,
    payload: LectureUpdate,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    lecture = await ContentRepository(session).get_lecture(lecture_id)
    if lecture is None:
        raise NotFoundError("Lecture not found")
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(lecture, key, value)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("Lecture already exists in this specialty")
    return lecture


@router.delete("/lectures/{lecture_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lecture(
    lecture_id: int,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    lecture = await ContentRepository(session).get_lecture(lecture_id)
    if lecture is None:
        raise NotFoundError("Lecture not found")
    await session.delete(lecture)
    await session.commit()
    logger.info(f"Lecture {lecture_id} deleted by user {user.id}")


@router.get("/lectures/{lecture_id}/questions", response_model=List[QuestionResponse])
async def list_lecture_questions(
    lecture_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    repo = ContentRepository(session)
    if await repo.get_lecture(lecture_id) is None:
        raise NotFoundError("Lecture not found")
    return await repo.list_questions(lecture_id)


@router.delete("/questions/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_question(
    question_id: int,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    question = await ContentRepository(session).get_question(question_id)
    if question is None:
        raise NotFoundError("Question not found")
    await session.delete(question)
    await session.commit()
