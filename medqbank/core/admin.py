# medqbank/core/admin.py
from sqladmin import Admin, ModelView
from sqladmin.authentication import AuthenticationBackend
from fastapi import Request
import logging
from medqbank.core.security import verify_password, create_access_token, decode_token
from medqbank.core.config import settings
from medqbank.repositories.user_repository import UserRepository
from medqbank.core.database import db_helper
from medqbank.models.user import User, UserRole, UserStatus
from medqbank.models.content import Niveau, Semester, Specialty, Lecture, Question
from medqbank.models.session import ExamSession
from medqbank.models.system import AiValidationJob, Notification, LevelChangeRequest
from medqbank.models.billing import PricingSettings, ReductionCoupon, VoucherCode, Payment
from medqbank.models.learning import QuestionUserData

logger = logging.getLogger(__name__)


# 1. Настройка авторизации в админке
class AdminAuth(AuthenticationBackend):
    async def login(self, request: Request) -> bool:
        form = await request.form()
        email, password = form.get("username", ""), form.get("password", "")

        async with db_helper.session_factory() as session:
            user = await UserRepository(session).get_by_email(str(email).lower())

        # Только активные администраторы
        if (
            user
            and verify_password(str(password), user.password_hash)
            and user.role == UserRole.ADMIN.value
            and user.status == UserStatus.ACTIVE.value
        ):
            request.session.update({"token": create_access_token({"sub": str(user.id), "admin": True})})
            logger.info(f"✅ Admin panel login: {user.email}")
            return True
        logger.warning(f"❌ Admin panel login rejected for {email}")
        return False

    async def logout(self, request: Request) -> bool:
        request.session.clear()
        return True

    async def authenticate(self, request: Request) -> bool:
        token = request.session.get("token")
        if not token:
            return False
        try:
            payload = decode_token(token)
        except ValueError:
            return False
        return bool(payload.get("admin"))


authentication_backend = AdminAuth(secret_key=settings.security.JWT_SECRET_KEY.get_secret_value())


# 2. Представления моделей (Views)

class UserAdmin(ModelView, model=User):
    column_list = [User.id, User.email, User.name, User.role, User.status, User.niveau_id,
                   User.has_active_subscription, User.created_at]
    column_searchable_list = [User.email, User.name]
    column_sortable_list = [User.id, User.created_at]
    form_excluded_columns = [User.password_hash, User.created_at, User.updated_at, User.question_states]
    icon = "fa-solid fa-user"


class NiveauAdmin(ModelView, model=Niveau):
    column_list = [Niveau.id, Niveau.name, Niveau.order]
    icon = "fa-solid fa-layer-group"


class SemesterAdmin(ModelView, model=Semester):
    column_list = [Semester.id, Semester.name, Semester.order, Semester.niveau]
    form_columns = [Semester.niveau, Semester.name, Semester.order]
    icon = "fa-solid fa-calendar"


class SpecialtyAdmin(ModelView, model=Specialty):
    column_list = [Specialty.id, Specialty.name, Specialty.is_free, Specialty.niveau_id, Specialty.semester_id]
    column_searchable_list = [Specialty.name]
    form_excluded_columns = [Specialty.lectures, Specialty.created_at]
    icon = "fa-solid fa-stethoscope"


class LectureAdmin(ModelView, model=Lecture):
    column_list = [Lecture.id, Lecture.title, Lecture.specialty, Lecture.is_free]
    column_searchable_list = [Lecture.title]
    form_columns = [Lecture.specialty, Lecture.title, Lecture.description, Lecture.is_free]
    icon = "fa-solid fa-book-open"


class QuestionAdmin(ModelView, model=Question):
    column_list = [Question.id, Question.type, Question.number, Question.lecture, Question.session]
    column_searchable_list = [Question.text]
    form_excluded_columns = [Question.created_at]
    icon = "fa-solid fa-circle-question"


class ExamSessionAdmin(ModelView, model=ExamSession):
    column_list = [ExamSession.id, ExamSession.name, ExamSession.niveau_id, ExamSession.specialty_id]
    icon = "fa-solid fa-file-pdf"


class AiValidationJobAdmin(ModelView, model=AiValidationJob):
    column_list = [AiValidationJob.id, AiValidationJob.user_id, AiValidationJob.original_file_name,
                   AiValidationJob.status, AiValidationJob.progress, AiValidationJob.created_at]
    column_sortable_list = [AiValidationJob.id, AiValidationJob.created_at]
    # Задачи создаются только через API
    can_create = False
    can_edit = False
    form_excluded_columns = [AiValidationJob.output_file]
    icon = "fa-solid fa-robot"


class NotificationAdmin(ModelView, model=Notification):
    column_list = [Notification.id, Notification.user_id, Notification.type, Notification.title, Notification.is_read]
    icon = "fa-solid fa-bell"


class LevelChangeRequestAdmin(ModelView, model=LevelChangeRequest):
    column_list = [LevelChangeRequest.id, LevelChangeRequest.user_id, LevelChangeRequest.requested_niveau_id,
                   LevelChangeRequest.status, LevelChangeRequest.created_at]
    icon = "fa-solid fa-arrow-up-right-dots"


class PricingSettingsAdmin(ModelView, model=PricingSettings):
    column_list = [PricingSettings.id, PricingSettings.annual_price, PricingSettings.semester_price,
                   PricingSettings.discount_percent]
    icon = "fa-solid fa-tags"


class ReductionCouponAdmin(ModelView, model=ReductionCoupon):
    column_list = [ReductionCoupon.id, ReductionCoupon.code, ReductionCoupon.discount_percent,
                   ReductionCoupon.is_active, ReductionCoupon.used_count, ReductionCoupon.max_uses]
    column_searchable_list = [ReductionCoupon.code]
    icon = "fa-solid fa-ticket"


class VoucherCodeAdmin(ModelView, model=VoucherCode):
    column_list = [VoucherCode.id, VoucherCode.code, VoucherCode.plan, VoucherCode.is_used,
                   VoucherCode.used_by, VoucherCode.expires_at, VoucherCode.created_at]
    column_searchable_list = [VoucherCode.code]
    # Коды выпускаются пачками через API
    can_create = False
    icon = "fa-solid fa-key"


class QuestionUserDataAdmin(ModelView, model=QuestionUserData):
    column_list = [QuestionUserData.id, QuestionUserData.user_id, QuestionUserData.question_id,
                   QuestionUserData.attempts, QuestionUserData.last_score, QuestionUserData.updated_at]
    can_create = False
    can_edit = False
    icon = "fa-solid fa-chart-line"


class PaymentAdmin(ModelView, model=Payment):
    column_list = [Payment.id, Payment.user_id, Payment.amount, Payment.method, Payment.plan,
                   Payment.status, Payment.created_at]
    column_sortable_list = [Payment.id, Payment.created_at]
    icon = "fa-solid fa-money-bill"


# 3. Функция инициализации
def setup_admin(app, engine):
    admin = Admin(app, engine, authentication_backend=authentication_backend, title=f"{settings.app_name} Admin")

    for view in (
        UserAdmin, NiveauAdmin, SemesterAdmin, SpecialtyAdmin, LectureAdmin, QuestionAdmin,
        ExamSessionAdmin, AiValidationJobAdmin, NotificationAdmin, LevelChangeRequestAdmin,
        PricingSettingsAdmin, ReductionCouponAdmin, VoucherCodeAdmin, PaymentAdmin, QuestionUserDataAdmin,
    ):
        admin.add_view(view)
    return admin
