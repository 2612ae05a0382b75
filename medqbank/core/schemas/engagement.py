# medqbank/core/schemas/engagement.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional
from datetime import datetime


class NotificationResponse(BaseModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NotificationSend(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    type: str = Field("info", pattern="^(info|success|warning|error)$")
    target: str = Field("all", pattern="^(all|role|niveau|users)$")
    role: Optional[str] = None
    niveau_id: Optional[int] = None
    user_ids: List[int] = []


class LevelChangeCreate(BaseModel):
    requested_niveau_id: int = Field(..., ge=1)
    reason: Optional[str] = Field(None, max_length=1000)


class LevelChangeReview(BaseModel):
    approve: bool
    admin_note: Optional[str] = Field(None, max_length=1000)


class LevelChangeResponse(BaseModel):
    id: int
    user_id: int
    current_niveau_id: Optional[int] = None
    requested_niveau_id: int
    status: str
    reason: Optional[str] = None
    admin_note: Optional[str] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class QuestionStateUpdate(BaseModel):
    notes: Optional[str] = Field(None, max_length=20000)
    highlights: Optional[Any] = None
    notes_image_urls: List[str] = []
    last_score: Optional[float] = Field(None, ge=0, le=100)
    increment_attempts: bool = False


class QuestionStateResponse(BaseModel):
    question_id: int
    notes: Optional[str] = None
    highlights: Optional[Any] = None
    notes_image_urls: List[str] = []
    attempts: int = 0
    last_score: Optional[float] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LectureProgress(BaseModel):
    lecture_id: int
    total_questions: int
    attempted: int
    average_score: Optional[float] = None
    progress_percent: float
