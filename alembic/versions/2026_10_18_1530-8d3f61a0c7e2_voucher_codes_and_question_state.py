"""voucher codes and question state

Revision ID: 8d3f61a0c7e2
Revises: 5b1e7c2d9a40
Create Date: 2026-10-18 15:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8d3f61a0c7e2"
down_revision: Union[str, Sequence[str], None] = "5b1e7c2d9a40"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "voucher_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("plan", sa.String(), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_by", sa.Integer(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["used_by"], ["users.id"], name=op.f("fk_voucher_codes_used_by_users"), ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], name=op.f("fk_voucher_codes_created_by_users"), ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_voucher_codes")),
    )
    op.create_index(op.f("ix_voucher_codes_code"), "voucher_codes", ["code"], unique=True)
    op.create_index(op.f("ix_voucher_codes_id"), "voucher_codes", ["id"], unique=False)

    with op.batch_alter_table("payments") as batch_op:
        batch_op.add_column(sa.Column("voucher_code_id", sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            op.f("fk_payments_voucher_code_id_voucher_codes"), "voucher_codes",
            ["voucher_code_id"], ["id"], ondelete="SET NULL",
        )

    op.create_table(
        "question_user_data",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("question_id", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("highlights", sa.JSON(), nullable=True),
        sa.Column("notes_image_urls", sa.JSON(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_score", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"], name=op.f("fk_question_user_data_question_id_questions"), ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name=op.f("fk_question_user_data_user_id_users"), ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_question_user_data")),
        sa.UniqueConstraint("user_id", "question_id", name=op.f("uq_question_user_data_user_id_question_id")),
    )
    op.create_index(op.f("ix_question_user_data_id"), "question_user_data", ["id"], unique=False)
    op.create_index(op.f("ix_question_user_data_question_id"), "question_user_data", ["question_id"], unique=False)
    op.create_index(op.f("ix_question_user_data_user_id"), "question_user_data", ["user_id"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("question_user_data")
    with op.batch_alter_table("payments") as batch_op:
        batch_op.drop_constraint(op.f("fk_payments_voucher_code_id_voucher_codes"), type_="foreignkey")
        batch_op.drop_column("voucher_code_id")
    op.drop_table("voucher_codes")
