# medqbank/models/system.py
from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, func, Text, JSON,
    Float, LargeBinary, CheckConstraint,
)
import enum
from .base import Base, utcnow


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AiValidationJob(Base):
    __tablename__ = "ai_validation_jobs"
    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="progress_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String, nullable=False)
    original_file_name = Column(String, nullable=False)
    file_size = Column(Integer, default=0, nullable=False)

    status = Column(String, default=JobStatus.QUEUED.value, nullable=False, index=True)
    progress = Column(Float, default=0, nullable=False)
    message = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)

    processed_items = Column(Integer, default=0, nullable=False)
    total_items = Column(Integer, default=0, nullable=False)
    current_batch = Column(Integer, default=0, nullable=False)
    total_batches = Column(Integer, default=0, nullable=False)
    fixed_count = Column(Integer, default=0, nullable=False)
    successful_analyses = Column(Integer, default=0, nullable=False)
    failed_analyses = Column(Integer, default=0, nullable=False)

    instructions = Column(Text, nullable=True)
    config = Column(JSON, nullable=True)
    output_file = Column(LargeBinary, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    # Python-side значение: SSE сравнивает его между опросами
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, default="info")  # info, success, warning, error
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LevelChangeRequest(Base):
    __tablename__ = "level_change_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    current_niveau_id = Column(Integer, ForeignKey("niveaux.id", ondelete="SET NULL"), nullable=True)
    requested_niveau_id = Column(Integer, ForeignKey("niveaux.id", ondelete="CASCADE"), nullable=False)
    status = Column(String, default=RequestStatus.PENDING.value, nullable=False)
    reason = Column(Text, nullable=True)
    admin_note = Column(Text, nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
