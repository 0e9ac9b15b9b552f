from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
from app.infrastructure.db import get_db
from app.infrastructure.payment_gateway import PaymentGateway
from app.application.orders import OrderService
from app.application.schemas import OrderRead, PlaceOrderRequest, PlaceOrderResult
from app.domain.errors import CheckoutError
from .deps import CurrentUser, get_current_user, get_current_user_optional, get_payment_gateway, rate_limited, to_http
from shared.core import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

@router.post("/", response_model=PlaceOrderResult, status_code=201, dependencies=[Depends(rate_limited)])
def place_order(
    payload: PlaceOrderRequest,
    user: Optional[CurrentUser] = Depends(get_current_user_optional),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    """Turn the submitted cart into an order. Guests may check out."""
    try:
        order = OrderService(db, gateway).place_order(payload, user_id=user.id if user else None)
    except CheckoutError as e:
        raise to_http(e)
    except Exception:
        logger.error("Unexpected error while placing order", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={"success": False, "code": "transaction_failure", "error": "Failed to place order"},
        )
    return PlaceOrderResult(
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        total_amount=order.total_amount,
    )

@router.get("/me", response_model=list[OrderRead])
def list_my_orders(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return OrderService(db).list_for_user(user.id)

@router.get("/{order_number}", response_model=OrderRead)
def get_order(
    order_number: str,
    user: Optional[CurrentUser] = Depends(get_current_user_optional),
    db: Session = Depends(get_db),
):
    try:
        order = OrderService(db).get_by_number(order_number)
    except CheckoutError as e:
        raise to_http(e)
    # Guest orders are reachable by their (unguessable) number alone
    if order.user_id is not None and not (user and (user.id == order.user_id or user.is_admin)):
        raise HTTPException(status_code=404, detail="Order not found")
    return order
