# medqbank/models/session.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, func
from .base import Base


class ExamSession(Base):
    """Сессия экзамена (PDF с вопросами и корректурой)"""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    pdf_url = Column(String, nullable=True)
    correction_url = Column(String, nullable=True)
    specialty_id = Column(Integer, ForeignKey("specialties.id", ondelete="SET NULL"), nullable=True)
    niveau_id = Column(Integer, ForeignKey("niveaux.id", ondelete="SET NULL"), nullable=True)
    semester_id = Column(Integer, ForeignKey("semesters.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __str__(self):
        return self.name
