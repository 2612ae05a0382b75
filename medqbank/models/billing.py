# medqbank/models/billing.py
from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, Float, Text, func,
    CheckConstraint,
)
import enum
from .base import Base, utcnow


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    VOUCHER = "voucher"  # код активации, подписка сразу
    KONNECT = "konnect"


class SubscriptionPlan(str, enum.Enum):
    ANNUAL = "annual"
    SEMESTER = "semester"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PricingSettings(Base):
    """Единственная строка с текущими ценами"""
    __tablename__ = "pricing_settings"
    __table_args__ = (
        CheckConstraint("annual_price >= 0 AND semester_price >= 0", name="prices_positive"),
    )

    id = Column(Integer, primary_key=True)
    annual_price = Column(Float, nullable=False, default=120.0)
    semester_price = Column(Float, nullable=False, default=70.0)
    discount_percent = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ReductionCoupon(Base):
    __tablename__ = "reduction_coupons"
    __table_args__ = (
        CheckConstraint("discount_percent > 0 AND discount_percent <= 100", name="discount_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False, index=True)
    discount_percent = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __str__(self):
        return self.code


class VoucherCode(Base):
    """Одноразовый код активации подписки, выпускается админом"""
    __tablename__ = "voucher_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False, index=True)
    plan = Column(String, nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __str__(self):
        return self.code


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (CheckConstraint("amount >= 0", name="amount_positive"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    method = Column(String, nullable=False)
    plan = Column(String, nullable=False)
    status = Column(String, default=PaymentStatus.PENDING.value, nullable=False)
    coupon_code = Column(String, nullable=True)
    voucher_code_id = Column(Integer, ForeignKey("voucher_codes.id", ondelete="SET NULL"), nullable=True)
    reference = Column(String, nullable=True)
    admin_note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    verified_at = Column(DateTime(timezone=True), nullable=True)
