from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from app.infrastructure.db import get_db
from app.application.inventory import InventoryService
from app.application.orders import OrderService
from app.application.reaper import ReservationReaper
from app.application.schemas import (
    BulkStockUpdate, OrderRead, OrderStatusUpdate, ReapResult, StockLogRead,
)
from app.domain.errors import CheckoutError
from .deps import CurrentUser, require_admin, to_http

router = APIRouter(prefix="/admin", tags=["admin"])

@router.post("/reservations/reap", response_model=ReapResult)
def reap_expired_reservations(_: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    """Run one reservation sweep now instead of waiting for the scheduled job."""
    return ReapResult(reclaimed=ReservationReaper(db).run())

@router.get("/stock-logs", response_model=list[StockLogRead])
def list_stock_logs(
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of records to return"),
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return InventoryService(db).list_logs(limit)

@router.post("/inventory/bulk")
def bulk_update_stock(
    payload: BulkStockUpdate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        updated = InventoryService(db).bulk_update(payload.updates, payload.reason, user_id=admin.id)
    except CheckoutError as e:
        raise to_http(e)
    return {"success": True, "updated": updated}

@router.patch("/orders/{order_number}/status", response_model=OrderRead)
def update_order_status(
    order_number: str,
    payload: OrderStatusUpdate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        return OrderService(db).update_status(order_number, payload.status, actor_id=admin.id)
    except CheckoutError as e:
        raise to_http(e)
