"""initial schema

Revision ID: 5b1e7c2d9a40
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5b1e7c2d9a40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "niveaux",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_niveaux")),
        sa.UniqueConstraint("name", name=op.f("uq_niveaux_name")),
    )
    op.create_index(op.f("ix_niveaux_id"), "niveaux", ["id"], unique=False)

    op.create_table(
        "semesters",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("niveau_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["niveau_id"], ["niveaux.id"], name=op.f("fk_semesters_niveau_id_niveaux"), ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_semesters")),
        sa.UniqueConstraint("niveau_id", "order", name=op.f("uq_semesters_niveau_id_order")),
    )
    op.create_index(op.f("ix_semesters_id"), "semesters", ["id"], unique=False)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("niveau_id", sa.Integer(), nullable=True),
        sa.Column("semester_id", sa.Integer(), nullable=True),
        sa.Column("has_active_subscription", sa.Boolean(), nullable=False),
        sa.Column("subscription_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["niveau_id"], ["niveaux.id"], name=op.f("fk_users_niveau_id_niveaux"), ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["semester_id"], ["semesters.id"], name=op.f("fk_users_semester_id_semesters"), ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index(op.f("ix_users_id"), "users", ["id"], unique=False)

    op.create_table(
        "specialties",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_free", sa.Boolean(), nullable=False),
        sa.Column("niveau_id", sa.Integer(), nullable=True),
        sa.Column("semester_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["niveau_id"], ["niveaux.id"], name=op.f("fk_specialties_niveau_id_niveaux"), ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["semester_id"], ["semesters.id"], name=op.f("fk_specialties_semester_id_semesters"), ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_specialties")),
        sa.UniqueConstraint("name", name=op.f("uq_specialties_name")),
    )
    op.create_index(op.f("ix_specialties_id"), "specialties", ["id"], unique=False)

    op.create_table(
        "lectures",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("specialty_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_free", sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["specialty_id"], ["specialties.id"], name=op.f("fk_lectures_specialty_id_specialties"), ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lectures")),
        sa.UniqueConstraint("specialty_id", "title", name=op.f("uq_lectures_specialty_id_title")),
    )
    op.create_index(op.f("ix_lectures_id"), "lectures", ["id"], unique=False)

    op.create_table(
        "questions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("lecture_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("options", sa.JSON(), nullable=True),
        sa.Column("correct_answers", sa.JSON(), nullable=False),
        sa.Column("explanation", sa.Text(), nullable=True),
        sa.Column("course_reminder", sa.Text(), nullable=True),
        sa.Column("number", sa.Integer(), nullable=True),
        sa.Column("session", sa.String(), nullable=True),
        sa.Column("media_url", sa.String(), nullable=True),
        sa.Column("media_type", sa.String(), nullable=True),
        sa.Column("case_number", sa.Integer(), nullable=True),
        sa.Column("case_text", sa.Text(), nullable=True),
        sa.Column("case_question_number", sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "type IN ('mcq', 'qroc', 'clinic_mcq', 'clinic_croq')",
            name=op.f("ck_questions_question_type"),
        ),
        sa.ForeignKeyConstraint(["lecture_id"], ["lectures.id"], name=op.f("fk_questions_lecture_id_lectures"), ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_questions")),
    )
    op.create_index(op.f("ix_questions_id"), "questions", ["id"], unique=False)
    op.create_index(op.f("ix_questions_lecture_id"), "questions", ["lecture_id"], unique=False)

    op.create_table(
        "sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("pdf_url", sa.String(), nullable=True),
        sa.Column("correction_url", sa.String(), nullable=True),
        sa.Column("specialty_id", sa.Integer(), nullable=True),
        sa.Column("niveau_id", sa.Integer(), nullable=True),
        sa.Column("semester_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["niveau_id"], ["niveaux.id"], name=op.f("fk_sessions_niveau_id_niveaux"), ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["semester_id"], ["semesters.id"], name=op.f("fk_sessions_semester_id_semesters"), ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["specialty_id"], ["specialties.id"], name=op.f("fk_sessions_specialty_id_specialties"), ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_sessions")),
    )
    op.create_index(op.f("ix_sessions_id"), "sessions", ["id"], unique=False)

    op.create_table(
        "ai_validation_jobs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("original_file_name", sa.String(), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("progress", sa.Float(), nullable=False),
        sa.Column("message", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processed_items", sa.Integer(), nullable=False),
        sa.Column("total_items", sa.Integer(), nullable=False),
        sa.Column("current_batch", sa.Integer(), nullable=False),
        sa.Column("total_batches", sa.Integer(), nullable=False),
        sa.Column("fixed_count", sa.Integer(), nullable=False),
        sa.Column("successful_analyses", sa.Integer(), nullable=False),
        sa.Column("failed_analyses", sa.Integer(), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("config", sa.JSON(), nullable=True),
        sa.Column("output_file", sa.LargeBinary(), nullable=True),
        _created_at(),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("progress >= 0 AND progress <= 100", name=op.f("ck_ai_validation_jobs_progress_range")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name=op.f("fk_ai_validation_jobs_user_id_users"), ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_ai_validation_jobs")),
    )
    op.create_index(op.f("ix_ai_validation_jobs_id"), "ai_validation_jobs", ["id"], unique=False)
    op.create_index(op.f("ix_ai_validation_jobs_status"), "ai_validation_jobs", ["status"], unique=False)
    op.create_index(op.f("ix_ai_validation_jobs_user_id"), "ai_validation_jobs", ["user_id"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name=op.f("fk_notifications_user_id_users"), ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notifications")),
    )
    op.create_index(op.f("ix_notifications_id"), "notifications", ["id"], unique=False)
    op.create_index(op.f("ix_notifications_user_id"), "notifications", ["user_id"], unique=False)

    op.create_table(
        "level_change_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("current_niveau_id", sa.Integer(), nullable=True),
        sa.Column("requested_niveau_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("admin_note", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["current_niveau_id"], ["niveaux.id"], name=op.f("fk_level_change_requests_current_niveau_id_niveaux"), ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["requested_niveau_id"], ["niveaux.id"], name=op.f("fk_level_change_requests_requested_niveau_id_niveaux"), ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reviewed_by"], ["users.id"], name=op.f("fk_level_change_requests_reviewed_by_users"), ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name=op.f("fk_level_change_requests_user_id_users"), ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_level_change_requests")),
    )
    op.create_index(op.f("ix_level_change_requests_id"), "level_change_requests", ["id"], unique=False)
    op.create_index(op.f("ix_level_change_requests_user_id"), "level_change_requests", ["user_id"], unique=False)

    op.create_table(
        "pricing_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("annual_price", sa.Float(), nullable=False),
        sa.Column("semester_price", sa.Float(), nullable=False),
        sa.Column("discount_percent", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("annual_price >= 0 AND semester_price >= 0", name=op.f("ck_pricing_settings_prices_positive")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_pricing_settings")),
    )

    op.create_table(
        "reduction_coupons",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("discount_percent", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False),
        _created_at(),
        sa.CheckConstraint("discount_percent > 0 AND discount_percent <= 100", name=op.f("ck_reduction_coupons_discount_range")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_reduction_coupons")),
    )
    op.create_index(op.f("ix_reduction_coupons_code"), "reduction_coupons", ["code"], unique=True)
    op.create_index(op.f("ix_reduction_coupons_id"), "reduction_coupons", ["id"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("plan", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("coupon_code", sa.String(), nullable=True),
        sa.Column("reference", sa.String(), nullable=True),
        sa.Column("admin_note", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount >= 0", name=op.f("ck_payments_amount_positive")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name=op.f("fk_payments_user_id_users"), ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_payments")),
    )
    op.create_index(op.f("ix_payments_id"), "payments", ["id"], unique=False)
    op.create_index(op.f("ix_payments_user_id"), "payments", ["user_id"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        "payments", "reduction_coupons", "pricing_settings", "level_change_requests",
        "notifications", "ai_validation_jobs", "sessions", "questions", "lectures",
        "specialties", "users", "semesters", "niveaux",
    ):
        op.drop_table(table)
