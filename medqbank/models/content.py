# medqbank/models/content.py
from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, JSON,
    UniqueConstraint, CheckConstraint, func,
)
from sqlalchemy.orm import relationship
import enum
from .base import Base


class QuestionType(str, enum.Enum):
    MCQ = "mcq"
    QROC = "qroc"
    CLINIC_MCQ = "clinic_mcq"
    CLINIC_CROQ = "clinic_croq"


class Niveau(Base):
    """Уровень обучения (PCEM1, DCEM2, ...)"""
    __tablename__ = "niveaux"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    order = Column(Integer, default=0, nullable=False)

    semesters = relationship("Semester", back_populates="niveau", order_by="Semester.order")

    def __str__(self):
        return self.name


class Semester(Base):
    __tablename__ = "semesters"
    __table_args__ = (UniqueConstraint("niveau_id", "order"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    order = Column(Integer, nullable=False)
    niveau_id = Column(Integer, ForeignKey("niveaux.id", ondelete="CASCADE"), nullable=False)

    niveau = relationship("Niveau", back_populates="semesters")

    def __str__(self):
        return self.name


class Specialty(Base):
    """Матьер (предмет), верхний уровень банка вопросов"""
    __tablename__ = "specialties"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    is_free = Column(Boolean, default=False, nullable=False)
    niveau_id = Column(Integer, ForeignKey("niveaux.id", ondelete="SET NULL"), nullable=True)
    semester_id = Column(Integer, ForeignKey("semesters.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    lectures = relationship("Lecture", back_populates="specialty", cascade="all, delete-orphan", passive_deletes=True)

    def __str__(self):
        return self.name


class Lecture(Base):
    """Курс внутри матьер"""
    __tablename__ = "lectures"
    __table_args__ = (UniqueConstraint("specialty_id", "title"),)

    id = Column(Integer, primary_key=True, index=True)
    specialty_id = Column(Integer, ForeignKey("specialties.id", ondelete="CASCADE"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_free = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    specialty = relationship("Specialty", back_populates="lectures")
    questions = relationship("Question", back_populates="lecture", cascade="all, delete-orphan", passive_deletes=True)

    def __str__(self):
        return self.title


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        CheckConstraint(
            "type IN ('mcq', 'qroc', 'clinic_mcq', 'clinic_croq')",
            name="question_type",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    lecture_id = Column(Integer, ForeignKey("lectures.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)
    text = Column(Text, nullable=False)
    # [{"id": "0", "text": "...", "explanation": "..."}]
    options = Column(JSON, nullable=True)
    # Индексы вариантов ("0".."4") для QCM, текст ответа для QROC
    correct_answers = Column(JSON, nullable=False, default=list)
    explanation = Column(Text, nullable=True)
    course_reminder = Column(Text, nullable=True)
    number = Column(Integer, nullable=True)
    session = Column(String, nullable=True)
    media_url = Column(String, nullable=True)
    media_type = Column(String, nullable=True)
    case_number = Column(Integer, nullable=True)
    case_text = Column(Text, nullable=True)
    case_question_number = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    lecture = relationship("Lecture", back_populates="questions")
