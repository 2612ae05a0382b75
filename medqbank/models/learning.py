# medqbank/models/learning.py
from sqlalchemy import Column, Integer, ForeignKey, DateTime, func, Text, Float, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from .base import Base, utcnow


class QuestionUserData(Base):
    """
    Личное состояние студента по вопросу: заметки, выделения,
    число попыток и последний результат
    """
    __tablename__ = "question_user_data"
    __table_args__ = (UniqueConstraint("user_id", "question_id"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    notes = Column(Text, nullable=True)
    highlights = Column(JSON, nullable=True)
    notes_image_urls = Column(JSON, nullable=False, default=list)
    attempts = Column(Integer, default=0, nullable=False)
    last_score = Column(Float, nullable=True)  # 0-100

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="question_states")
    question = relationship("Question")
