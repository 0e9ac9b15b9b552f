from datetime import datetime
from sqlalchemy import select
from sqlalchemy.orm import Session
from typing import Optional
from app.domain.models import StockReservation, utcnow
from app.domain.errors import ProductNotFound
from app.infrastructure.db import atomic
from .inventory import adjust_stock, lock_product
from shared.core import get_logger

logger = get_logger(__name__)

class ReservationReaper:
    """Returns stock held by expired cart reservations.

    Each reservation is reclaimed in its own transaction so one bad row
    cannot block the rest of the sweep.
    """

    def __init__(self, db: Session):
        self.db = db

    def expired_ids(self, now: datetime) -> list[int]:
        return list(self.db.execute(
            select(StockReservation.id)
            .where(StockReservation.expires_at < now)
            .order_by(StockReservation.expires_at)
        ).scalars().all())

    def reclaim(self, reservation_id: int, now: datetime) -> bool:
        """Restore one reservation's stock and delete it. False if it no longer needs reclaiming.

        The product row is locked before the reservation row, the same order
        cart and order transactions take them in.
        """
        with atomic(self.db):
            product_id = self.db.execute(
                select(StockReservation.product_id).where(StockReservation.id == reservation_id)
            ).scalar_one_or_none()
            if product_id is None:
                return False
            product = lock_product(self.db, product_id)
            if product is None:
                raise ProductNotFound(product_id)
            reservation = self.db.execute(
                select(StockReservation).where(StockReservation.id == reservation_id)
                .with_for_update().execution_options(populate_existing=True)
            ).scalar_one_or_none()
            # Consumed by an order or refreshed by a cart touch since the scan
            if reservation is None or not reservation.is_expired(now):
                return False
            adjust_stock(self.db, product, reservation.quantity, "reservation-expired", reservation.user_id)
            self.db.delete(reservation)
        logger.info(
            f"Released {reservation.quantity} units for product {reservation.product_id}",
            extra={'extra_fields': {
                'reservation_id': reservation_id,
                'product_id': reservation.product_id,
                'user_id': reservation.user_id,
                'quantity': reservation.quantity,
            }}
        )
        return True

    def run(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        expired = self.expired_ids(now)
        if not expired:
            logger.info("No expired reservations found")
            return 0

        logger.info(f"Found {len(expired)} expired reservations, releasing stock")
        reclaimed = 0
        for reservation_id in expired:
            try:
                if self.reclaim(reservation_id, now):
                    reclaimed += 1
            except Exception:
                logger.error(f"Failed to release reservation {reservation_id}", exc_info=True)
        logger.info(
            f"Reservation sweep completed: {reclaimed}/{len(expired)} reclaimed",
            extra={'extra_fields': {'found': len(expired), 'reclaimed': reclaimed}}
        )
        return reclaimed
