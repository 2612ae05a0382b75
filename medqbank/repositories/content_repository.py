# medqbank/repositories/content_repository.py
from typing import Optional, Sequence, List
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession
from medqbank.models.content import Niveau, Semester, Specialty, Lecture, Question


class ContentRepository:
    """Niveaux / семестры / матьеры / курсы / вопросы"""

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- niveaux / semesters ---

    async def list_niveaux(self) -> Sequence[Niveau]:
        stmt = select(Niveau).options(selectinload(Niveau.semesters)).order_by(Niveau.order, Niveau.name)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_niveau(self, niveau_id: int) -> Optional[Niveau]:
        return await self.session.get(Niveau, niveau_id)

    async def get_niveau_by_name(self, name: str) -> Optional[Niveau]:
        stmt = select(Niveau).where(func.upper(Niveau.name) == name.upper())
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def create_niveau(self, name: str) -> Niveau:
        max_order = await self.session.scalar(select(func.max(Niveau.order)))
        niveau = Niveau(name=name, order=(max_order or 0) + 1)
        self.session.add(niveau)
        await self.session.flush()
        return niveau

    async def get_semester(self, niveau_id: int, order: int) -> Optional[Semester]:
        stmt = select(Semester).where(Semester.niveau_id == niveau_id, Semester.order == order)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def create_semester(self, niveau: Niveau, order: int) -> Semester:
        semester = Semester(name=f"{niveau.name} - S{order}", order=order, niveau_id=niveau.id)
        self.session.add(semester)
        await self.session.flush()
        return semester

    # --- specialties ---

    async def list_specialties(
        self, niveau_id: Optional[int] = None, semester_id: Optional[int] = None
    ) -> Sequence[Specialty]:
        stmt = select(Specialty).order_by(Specialty.name)
        if niveau_id is not None:
            stmt = stmt.where(Specialty.niveau_id == niveau_id)
        if semester_id is not None:
            stmt = stmt.where(Specialty.semester_id == semester_id)
        return (await self.session.execute(stmt)).scalars().all()

    async def get_specialty(self, specialty_id: int) -> Optional[Specialty]:
        return await self.session.get(Specialty, specialty_id)

    async def get_specialty_by_name(self, name: str) -> Optional[Specialty]:
        stmt = select(Specialty).where(func.lower(Specialty.name) == name.lower())
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def create_specialty(self, name: str, **fields) -> Specialty:
        specialty = Specialty(name=name, **fields)
        self.session.add(specialty)
        await self.session.flush()
        return specialty

    # --- lectures ---

    async def get_lecture(self, lecture_id: int) -> Optional[Lecture]:
        return await self.session.get(Lecture, lecture_id)

    async def get_lecture_by_title(self, specialty_id: int, title: str) -> Optional[Lecture]:
        stmt = select(Lecture).where(
            Lecture.specialty_id == specialty_id,
            func.lower(Lecture.title) == title.lower(),
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def create_lecture(self, specialty_id: int, title: str, **fields) -> Lecture:
        lecture = Lecture(specialty_id=specialty_id, title=title, **fields)
        self.session.add(lecture)
        await self.session.flush()
        return lecture

    async def list_lectures_with_counts(self, specialty_id: Optional[int] = None) -> List[tuple]:
        """[(Lecture, количество вопросов)]"""
        stmt = (
            select(Lecture, func.count(Question.id))
            .outerjoin(Question, Question.lecture_id == Lecture.id)
            .group_by(Lecture.id)
            .order_by(Lecture.title)
        )
        if specialty_id is not None:
            stmt = stmt.where(Lecture.specialty_id == specialty_id)
        return [(row[0], row[1]) for row in (await self.session.execute(stmt)).all()]

    # --- questions ---

    async def list_questions(self, lecture_id: int) -> Sequence[Question]:
        stmt = (
            select(Question)
            .where(Question.lecture_id == lecture_id)
            .order_by(Question.case_number, Question.number, Question.id)
        )
        return (await self.session.execute(stmt)).scalars().all()

    async def get_question(self, question_id: int) -> Optional[Question]:
        return await self.session.get(Question, question_id)

    async def find_duplicate_question(self, candidate: Question) -> Optional[Question]:
        """
        Точный дубликат: совпадают все поля, которые видит студент.
        JSON-поля сравниваются в Python (json = json не везде поддерживается).
        """
        stmt = select(Question).where(
            Question.lecture_id == candidate.lecture_id,
            Question.type == candidate.type,
            Question.text == candidate.text,
        )
        for column, value in (
            (Question.number, candidate.number),
            (Question.session, candidate.session),
            (Question.case_number, candidate.case_number),
            (Question.course_reminder, candidate.course_reminder),
        ):
            stmt = stmt.where(column.is_(None) if value is None else column == value)

        for existing in (await self.session.execute(stmt)).scalars():
            if (existing.correct_answers or []) == (candidate.correct_answers or []) and \
                    (existing.options or []) == (candidate.options or []):
                return existing
        return None
