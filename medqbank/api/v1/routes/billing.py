# medqbank/api/v1/routes/billing.py
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from medqbank.core.database import db_helper
from medqbank.core.schemas.billing import (
    CouponCheck, CouponCreate, CouponResponse, PaymentCreate, PaymentResponse,
    PaymentReview, PriceQuote, PricingResponse, PricingUpdate, VoucherCreate,
    VoucherListResponse, VoucherResponse,
)
from medqbank.core.utils import get_current_user, require_admin
from medqbank.models.user import User
from medqbank.services.billing_service import BillingService

router = APIRouter(tags=["billing"])


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing(session: AsyncSession = Depends(db_helper.session_getter)):
    return await BillingService(session).get_pricing()


@router.put("/admin/pricing", response_model=PricingResponse)
async def update_pricing(
    payload: PricingUpdate,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await BillingService(session).update_pricing(payload)


@router.post("/coupons/check", response_model=PriceQuote)
async def check_coupon(
    payload: CouponCheck,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    """Проверка купона и итоговая цена для выбранного плана"""
    return await BillingService(session).quote(payload.plan, payload.code)


@router.get("/admin/coupons", response_model=List[CouponResponse])
async def list_coupons(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await BillingService(session).list_coupons()


@router.post("/admin/coupons", response_model=CouponResponse, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    payload: CouponCreate,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await BillingService(session).create_coupon(payload)


@router.delete("/admin/coupons/{coupon_id}", response_model=CouponResponse)
async def deactivate_coupon(
    coupon_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await BillingService(session).deactivate_coupon(coupon_id)


@router.post("/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    payload: PaymentCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await BillingService(session).create_payment(user, payload)


@router.get("/payments/me", response_model=List[PaymentResponse])
async def my_payments(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await BillingService(session).list_payments(user_id=user.id)


@router.get("/admin/payments", response_model=List[PaymentResponse])
async def list_payments(
    status_filter: Optional[str] = Query(None, alias="status"),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await BillingService(session).list_payments(status=status_filter)


@router.post("/admin/payments/{payment_id}/review", response_model=PaymentResponse)
async def review_payment(
    payment_id: int,
    payload: PaymentReview,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await BillingService(session).review_payment(payment_id, payload.approve, payload.admin_note)


@router.get("/admin/vouchers", response_model=VoucherListResponse)
async def list_vouchers(
    is_used: Optional[bool] = Query(None, alias="isUsed"),
    plan: Optional[str] = Query(None, pattern="^(annual|semester)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    vouchers, total = await BillingService(session).list_vouchers(is_used, plan, page, limit)
    return VoucherListResponse(items=vouchers, total=total, page=page, limit=limit)


@router.post("/admin/vouchers", response_model=List[VoucherResponse], status_code=status.HTTP_201_CREATED)
async def create_vouchers(
    payload: VoucherCreate,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    """Выпуск пачки одноразовых кодов (1-100)"""
    return await BillingService(session).create_vouchers(admin, payload)
