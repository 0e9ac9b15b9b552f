from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
from app.infrastructure.db import get_db
from app.infrastructure.payment_gateway import PaymentGateway
from app.application.payments import PaymentService
from app.application.pricing import PricingService
from app.application.schemas import (
    CheckoutSettingsRead, CouponRead, CouponValidateRequest, PaymentIntentRead, PaymentIntentRequest,
)
from app.domain.errors import CheckoutError
from .deps import CurrentUser, get_current_user_optional, get_payment_gateway, rate_limited, to_http

router = APIRouter(prefix="/checkout", tags=["checkout"])

@router.post("/payment-intents", response_model=PaymentIntentRead, status_code=201, dependencies=[Depends(rate_limited)])
def create_payment_intent(
    payload: PaymentIntentRequest,
    user: Optional[CurrentUser] = Depends(get_current_user_optional),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    try:
        return PaymentService(db, gateway).create_intent(
            payload.items,
            user_id=user.id if user else None,
            coupon_code=payload.coupon_code,
            shipping_zone_id=payload.shipping_zone_id,
        )
    except CheckoutError as e:
        raise to_http(e)

@router.post("/coupons/validate", response_model=CouponRead, dependencies=[Depends(rate_limited)])
def validate_coupon(payload: CouponValidateRequest, db: Session = Depends(get_db)):
    try:
        return PricingService(db).validate_coupon(payload.code)
    except CheckoutError as e:
        raise to_http(e)

@router.get("/settings", response_model=CheckoutSettingsRead)
def checkout_settings(db: Session = Depends(get_db)):
    pricing = PricingService(db)
    return CheckoutSettingsRead(zones=pricing.shipping_zones(), tax_rate=pricing.tax_rate())
