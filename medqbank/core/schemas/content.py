# medqbank/core/schemas/content.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Any
from datetime import datetime


class SemesterResponse(BaseModel):
    id: int
    name: str
    order: int
    niveau_id: int

    model_config = ConfigDict(from_attributes=True)


class NiveauResponse(BaseModel):
    id: int
    name: str
    order: int
    semesters: List[SemesterResponse] = []

    model_config = ConfigDict(from_attributes=True)


class SpecialtyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    is_free: bool = False
    niveau_id: Optional[int] = None
    semester_id: Optional[int] = None


class SpecialtyResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    is_free: bool
    niveau_id: Optional[int] = None
    semester_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class LectureCreate(BaseModel):
    specialty_id: int
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    is_free: bool = False


class LectureUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = None
    is_free: Optional[bool] = None


class LectureResponse(BaseModel):
    id: int
    specialty_id: int
    title: str
    description: Optional[str] = None
    is_free: bool
    question_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class QuestionResponse(BaseModel):
    id: int
    lecture_id: int
    type: str
    text: str
    options: Optional[List[Any]] = None
    correct_answers: List[str] = []
    explanation: Optional[str] = None
    course_reminder: Optional[str] = None
    number: Optional[int] = None
    session: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    case_number: Optional[int] = None
    case_text: Optional[str] = None
    case_question_number: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class ExamSessionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    pdf_url: Optional[str] = None
    correction_url: Optional[str] = None
    specialty_id: Optional[int] = None
    niveau_id: Optional[int] = None
    semester_id: Optional[int] = None


class ExamSessionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    pdf_url: Optional[str] = None
    correction_url: Optional[str] = None
    specialty_id: Optional[int] = None
    niveau_id: Optional[int] = None
    semester_id: Optional[int] = None


class ExamSessionResponse(ExamSessionCreate):
    id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
