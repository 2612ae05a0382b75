# medqbank/services/billing_service.py
import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from medqbank.core.exceptions import BadRequestError, ConflictError, NotFoundError
from medqbank.core.schemas.billing import PaymentCreate, PriceQuote, PricingUpdate, CouponCreate, VoucherCreate
from medqbank.models.billing import (
    Payment, PaymentMethod, PaymentStatus, PricingSettings, ReductionCoupon, SubscriptionPlan,
    VoucherCode,
)
from medqbank.models.user import User
from medqbank.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

PLAN_DURATIONS = {
    SubscriptionPlan.ANNUAL.value: timedelta(days=365),
    SubscriptionPlan.SEMESTER.value: timedelta(days=183),
}

VOUCHER_PREFIXES = {
    SubscriptionPlan.ANNUAL.value: "MEDQ-Y",
    SubscriptionPlan.SEMESTER.value: "MEDQ-S",
}
VOUCHER_ALPHABET = string.ascii_uppercase + string.digits


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite возвращает naive datetime, считаем его UTC"""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def extend_subscription(user: User, plan: str, now: datetime) -> None:
    """Продлевает подписку от текущего конца (если он в будущем) или от now"""
    current_end = as_utc(user.subscription_expires_at)
    start = current_end if current_end and current_end > now else now
    user.has_active_subscription = True
    user.subscription_expires_at = start + PLAN_DURATIONS.get(plan, timedelta(days=365))


class BillingService:
    def __init__(self, session: AsyncSession):
        self.session = session

    # --- pricing ---

    async def get_pricing(self) -> PricingSettings:
        pricing = await self.session.scalar(select(PricingSettings).order_by(PricingSettings.id).limit(1))
        if pricing is None:
            pricing = PricingSettings(annual_price=120.0, semester_price=70.0)
            self.session.add(pricing)
            await self.session.commit()
            await self.session.refresh(pricing)
        return pricing

    async def update_pricing(self, payload: PricingUpdate) -> PricingSettings:
        pricing = await self.get_pricing()
        pricing.annual_price = payload.annual_price
        pricing.semester_price = payload.semester_price
        pricing.discount_percent = payload.discount_percent
        await self.session.commit()
        return pricing

    # --- coupons ---

    async def create_coupon(self, payload: CouponCreate) -> ReductionCoupon:
        code = payload.code.strip().upper()
        if await self._coupon_by_code(code):
            raise ConflictError("Coupon code already exists")
        coupon = ReductionCoupon(
            code=code,
            discount_percent=payload.discount_percent,
            expires_at=payload.expires_at,
            max_uses=payload.max_uses,
        )
        self.session.add(coupon)
        await self.session.commit()
        await self.session.refresh(coupon)
        return coupon

    async def list_coupons(self) -> Sequence[ReductionCoupon]:
        stmt = select(ReductionCoupon).order_by(ReductionCoupon.created_at.desc(), ReductionCoupon.id.desc())
        return (await self.session.execute(stmt)).scalars().all()

    async def deactivate_coupon(self, coupon_id: int) -> ReductionCoupon:
        coupon = await self.session.get(ReductionCoupon, coupon_id)
        if coupon is None:
            raise NotFoundError("Coupon not found")
        coupon.is_active = False
        await self.session.commit()
        return coupon

    async def _coupon_by_code(self, code: str) -> Optional[ReductionCoupon]:
        stmt = select(ReductionCoupon).where(ReductionCoupon.code == code.strip().upper())
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def validate_coupon(self, code: str) -> ReductionCoupon:
        coupon = await self._coupon_by_code(code)
        if coupon is None or not coupon.is_active:
            raise BadRequestError("Invalid coupon code")
        expires_at = as_utc(coupon.expires_at)
        if expires_at and expires_at < datetime.now(timezone.utc):
            raise BadRequestError("Coupon has expired")
        if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
            raise BadRequestError("Coupon usage limit reached")
        return coupon

    async def quote(self, plan: str, coupon_code: Optional[str] = None) -> PriceQuote:
        """Цена плана с учётом общей скидки и купона (берётся большая)"""
        pricing = await self.get_pricing()
        base = pricing.annual_price if plan == SubscriptionPlan.ANNUAL.value else pricing.semester_price
        discount = pricing.discount_percent or 0
        code = None
        if coupon_code:
            coupon = await self.validate_coupon(coupon_code)
            code = coupon.code
            discount = max(discount, coupon.discount_percent)
        final = round(base * (100 - discount) / 100, 2)
        return PriceQuote(plan=plan, base_price=base, discount_percent=discount, final_price=final, coupon_code=code)

    # --- payments ---

    async def create_payment(self, user: User, payload: PaymentCreate) -> Payment:
        if payload.method == PaymentMethod.VOUCHER.value:
            return await self.redeem_voucher(user, payload.voucher_code)
        pending = await self.session.scalar(
            select(Payment.id).where(Payment.user_id == user.id, Payment.status == PaymentStatus.PENDING.value)
        )
        if pending is not None:
            raise ConflictError("A payment is already pending verification")
        quote = await self.quote(payload.plan, payload.coupon_code)
        payment = Payment(
            user_id=user.id,
            amount=quote.final_price,
            method=payload.method,
            plan=payload.plan,
            coupon_code=quote.coupon_code,
            reference=payload.reference,
        )
        self.session.add(payment)
        await self.session.commit()
        await self.session.refresh(payment)
        logger.info(f"💳 Payment {payment.id} created for user {user.id}: {payment.amount} ({payment.method})")
        return payment

    async def list_payments(self, status: Optional[str] = None, user_id: Optional[int] = None) -> Sequence[Payment]:
        stmt = select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc())
        if status:
            stmt = stmt.where(Payment.status == status)
        if user_id is not None:
            stmt = stmt.where(Payment.user_id == user_id)
        return (await self.session.execute(stmt)).scalars().all()

    async def review_payment(self, payment_id: int, approve: bool, admin_note: Optional[str]) -> Payment:
        """
        Подтверждение оплаты: статус, подписка пользователя, счётчик купона
        и уведомление в одной транзакции.
        """
        payment = await self.session.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        if payment.status != PaymentStatus.PENDING.value:
            raise ConflictError("Payment already reviewed")
        user = await self.session.get(User, payment.user_id)
        if user is None:
            raise NotFoundError("User not found")

        now = datetime.now(timezone.utc)
        payment.admin_note = admin_note
        notifications = NotificationService(self.session)
        if approve:
            payment.status = PaymentStatus.COMPLETED.value
            payment.verified_at = now
            extend_subscription(user, payment.plan, now)
            if payment.coupon_code:
                coupon = await self._coupon_by_code(payment.coupon_code)
                if coupon is not None:
                    coupon.used_count += 1
            notifications.add(user.id, "Abonnement activé", "Votre paiement a été validé. Bon courage !", type="success")
        else:
            payment.status = PaymentStatus.REJECTED.value
            notifications.add(
                user.id, "Paiement refusé", admin_note or "Votre paiement n'a pas pu être validé.", type="warning"
            )
        await self.session.commit()
        await self.session.refresh(payment)
        return payment

    # --- vouchers ---

    async def create_vouchers(self, admin: User, payload: VoucherCreate) -> List[VoucherCode]:
        expires_at = None
        if payload.expires_in_days:
            expires_at = datetime.now(timezone.utc) + timedelta(days=payload.expires_in_days)
        prefix = VOUCHER_PREFIXES[payload.plan]

        codes: set = set()
        while len(codes) < payload.count:
            code = f"{prefix}-{''.join(secrets.choice(VOUCHER_ALPHABET) for _ in range(6))}"
            if code not in codes and await self._voucher_by_code(code) is None:
                codes.add(code)

        vouchers = [
            VoucherCode(code=code, plan=payload.plan, expires_at=expires_at, created_by=admin.id)
            for code in sorted(codes)
        ]
        self.session.add_all(vouchers)
        await self.session.commit()
        for voucher in vouchers:
            await self.session.refresh(voucher)
        logger.info(f"🎟 {len(vouchers)} {payload.plan} voucher(s) created by {admin.email}")
        return vouchers

    async def list_vouchers(
        self, is_used: Optional[bool] = None, plan: Optional[str] = None, page: int = 1, limit: int = 20,
    ) -> Tuple[Sequence[VoucherCode], int]:
        stmt = select(VoucherCode)
        if is_used is not None:
            stmt = stmt.where(VoucherCode.is_used == is_used)
        if plan:
            stmt = stmt.where(VoucherCode.plan == plan)
        total = await self.session.scalar(select(func.count()).select_from(stmt.subquery()))
        stmt = stmt.order_by(VoucherCode.created_at.desc(), VoucherCode.id.desc()).offset((page - 1) * limit).limit(limit)
        return (await self.session.execute(stmt)).scalars().all(), total or 0

    async def _voucher_by_code(self, code: str) -> Optional[VoucherCode]:
        stmt = select(VoucherCode).where(VoucherCode.code == code.strip().upper())
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def redeem_voucher(self, user: User, code: Optional[str]) -> Payment:
        """
        Активация кода: бесплатный завершённый платёж, код помечается
        использованным, подписка продлевается, уведомление в той же транзакции.
        """
        if not code or not code.strip():
            raise BadRequestError("Voucher code is required")
        voucher = await self._voucher_by_code(code)
        if voucher is None:
            raise BadRequestError("Invalid voucher code")
        if voucher.is_used:
            raise BadRequestError("Voucher code already used")
        expires_at = as_utc(voucher.expires_at)
        now = datetime.now(timezone.utc)
        if expires_at and expires_at < now:
            raise BadRequestError("Voucher code expired")

        payment = Payment(
            user_id=user.id,
            amount=0,
            method=PaymentMethod.VOUCHER.value,
            plan=voucher.plan,
            status=PaymentStatus.COMPLETED.value,
            voucher_code_id=voucher.id,
            reference=voucher.code,
            verified_at=now,
        )
        self.session.add(payment)
        voucher.is_used = True
        voucher.used_at = now
        voucher.used_by = user.id

        # user может быть из другой сессии (зависимость get_current_user)
        owner = await self.session.get(User, user.id)
        extend_subscription(owner, voucher.plan, now)
        NotificationService(self.session).add(
            owner.id, "Abonnement activé", f"Code {voucher.code} activé. Bon courage !", type="success"
        )
        await self.session.commit()
        await self.session.refresh(payment)
        logger.info(f"🎟 Voucher {voucher.code} redeemed by user {owner.id}")
        return payment
