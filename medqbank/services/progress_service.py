# medqbank/services/progress_service.py
import logging
from typing import Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from medqbank.core.exceptions import NotFoundError
from medqbank.core.schemas.engagement import LectureProgress, QuestionStateUpdate
from medqbank.models.content import Question
from medqbank.models.learning import QuestionUserData
from medqbank.repositories.content_repository import ContentRepository

logger = logging.getLogger(__name__)

MAX_NOTE_IMAGES = 6
MAX_INLINE_IMAGE_LENGTH = 200_000


def sanitize_image_urls(urls: Iterable[object]) -> List[str]:
    """http(s), относительные пути и небольшие data:image; не больше шести"""
    kept: List[str] = []
    for url in urls:
        if not isinstance(url, str):
            continue
        if url.startswith("data:image/"):
            if len(url) >= MAX_INLINE_IMAGE_LENGTH:
                continue
        elif not (url.lower().startswith(("http://", "https://")) or url.startswith("/")):
            continue
        kept.append(url)
        if len(kept) == MAX_NOTE_IMAGES:
            break
    return kept


class ProgressService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.content = ContentRepository(session)

    async def _require_question(self, question_id: int) -> Question:
        question = await self.content.get_question(question_id)
        if question is None:
            raise NotFoundError("Question not found")
        return question

    async def get_state(self, user_id: int, question_id: int) -> Optional[QuestionUserData]:
        await self._require_question(question_id)
        stmt = select(QuestionUserData).where(
            QuestionUserData.user_id == user_id, QuestionUserData.question_id == question_id
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def save_state(self, user_id: int, question_id: int, payload: QuestionStateUpdate) -> QuestionUserData:
        """Заметки, выделения и картинки перезаписываются целиком, попытки только растут"""
        state = await self.get_state(user_id, question_id)
        if state is None:
            state = QuestionUserData(user_id=user_id, question_id=question_id, attempts=0)
            self.session.add(state)

        state.notes = payload.notes
        state.highlights = payload.highlights
        state.notes_image_urls = sanitize_image_urls(payload.notes_image_urls)
        if payload.last_score is not None:
            state.last_score = payload.last_score
        if payload.increment_attempts:
            state.attempts = (state.attempts or 0) + 1

        await self.session.commit()
        await self.session.refresh(state)
        return state

    async def lecture_progress(self, user_id: int, lecture_id: int) -> LectureProgress:
        if await self.content.get_lecture(lecture_id) is None:
            raise NotFoundError("Lecture not found")

        total = await self.session.scalar(
            select(func.count()).select_from(Question).where(Question.lecture_id == lecture_id)
        ) or 0
        attempted, average = (await self.session.execute(
            select(func.count(QuestionUserData.id), func.avg(QuestionUserData.last_score))
            .join(Question, Question.id == QuestionUserData.question_id)
            .where(
                QuestionUserData.user_id == user_id,
                Question.lecture_id == lecture_id,
                QuestionUserData.attempts > 0,
            )
        )).one()

        return LectureProgress(
            lecture_id=lecture_id,
            total_questions=total,
            attempted=attempted,
            average_score=round(average, 1) if average is not None else None,
            progress_percent=round(attempted * 100 / total, 1) if total else 0.0,
        )
