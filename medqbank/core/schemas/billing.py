# medqbank/core/schemas/billing.py
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime


class PricingResponse(BaseModel):
    annual_price: float
    semester_price: float
    discount_percent: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class PricingUpdate(BaseModel):
    annual_price: float = Field(..., ge=0)
    semester_price: float = Field(..., ge=0)
    discount_percent: Optional[int] = Field(None, ge=1, le=100)


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=40)
    discount_percent: int = Field(..., ge=1, le=100)
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = Field(None, ge=1)


class CouponResponse(BaseModel):
    id: int
    code: str
    discount_percent: int
    is_active: bool
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None
    used_count: int

    model_config = ConfigDict(from_attributes=True)


class CouponCheck(BaseModel):
    code: str
    plan: str = Field("annual", pattern="^(annual|semester)$")


class PriceQuote(BaseModel):
    plan: str
    base_price: float
    discount_percent: int = 0
    final_price: float
    coupon_code: Optional[str] = None


class PaymentCreate(BaseModel):
    method: str = Field(..., pattern="^(cash|transfer|voucher|konnect)$")
    plan: str = Field("annual", pattern="^(annual|semester)$")
    coupon_code: Optional[str] = None
    # Только для method=voucher; план берётся из кода
    voucher_code: Optional[str] = Field(None, max_length=40)
    reference: Optional[str] = Field(None, max_length=200)


class PaymentReview(BaseModel):
    approve: bool
    admin_note: Optional[str] = Field(None, max_length=1000)


class PaymentResponse(BaseModel):
    id: int
    user_id: int
    amount: float
    method: str
    plan: str
    status: str
    coupon_code: Optional[str] = None
    voucher_code_id: Optional[int] = None
    reference: Optional[str] = None
    admin_note: Optional[str] = None
    created_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class VoucherCreate(BaseModel):
    plan: str = Field(..., pattern="^(annual|semester)$")
    count: int = Field(1, ge=1, le=100)
    expires_in_days: Optional[int] = Field(None, ge=1, le=3650)


class VoucherResponse(BaseModel):
    id: int
    code: str
    plan: str
    is_used: bool
    used_at: Optional[datetime] = None
    used_by: Optional[int] = None
    expires_at: Optional[datetime] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class VoucherListResponse(BaseModel):
    items: List[VoucherResponse]
    total: int
    page: int
    limit: int
