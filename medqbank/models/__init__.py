# medqbank/models/__init__.py
from .base import Base
from .user import User, UserRole, UserStatus
from .content import Niveau, Semester, Specialty, Lecture, Question, QuestionType
from .session import ExamSession
from .system import (
    AiValidationJob, JobStatus, Notification, LevelChangeRequest, RequestStatus,
)
from .billing import (
    PricingSettings, ReductionCoupon, VoucherCode, Payment, PaymentMethod, PaymentStatus,
    SubscriptionPlan,
)
from .learning import QuestionUserData

# Этот список нужен, чтобы IDE и инструменты видели, что экспортируется
__all__ = [
    "Base",
    "User", "UserRole", "UserStatus",
    "Niveau", "Semester", "Specialty", "Lecture", "Question", "QuestionType",
    "ExamSession",
    "AiValidationJob", "JobStatus", "Notification", "LevelChangeRequest", "RequestStatus",
    "PricingSettings", "ReductionCoupon", "VoucherCode", "Payment", "PaymentMethod", "PaymentStatus",
    "SubscriptionPlan",
    "QuestionUserData",
]
