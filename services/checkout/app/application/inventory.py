from sqlalchemy import select
from sqlalchemy.orm import Session
from typing import Iterable, Optional
from app.domain.models import Product, StockLog
from app.domain.errors import ProductNotFound
from app.infrastructure.db import atomic
from .schemas import StockUpdate
from shared.core import get_logger

logger = get_logger(__name__)

def lock_product(db: Session, product_id: int) -> Optional[Product]:
    """Read a product row and hold its lock until the surrounding transaction ends."""
    return db.execute(
        select(Product).where(Product.id == product_id).with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()

def lock_products(db: Session, product_ids: Iterable[int]) -> dict[int, Product]:
    # Sorted so concurrent multi-product transactions lock rows in the same order
    ids = sorted(set(product_ids))
    rows = db.execute(
        select(Product).where(Product.id.in_(ids)).order_by(Product.id).with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all()
    return {p.id: p for p in rows}

def adjust_stock(
    db: Session,
    product: Product,
    change: int,
    reason: str,
    user_id: Optional[str] = None,
) -> None:
    """Apply a signed stock change to an already-locked product and record it.

    Callers must have checked availability in the same transaction.
    """
    if change == 0:
        return
    old_stock = product.stock
    product.stock = old_stock + change
    db.add(StockLog(
        product_id=product.id,
        user_id=user_id,
        old_stock=old_stock,
        new_stock=product.stock,
        change=change,
        reason=reason,
    ))

class InventoryService:
    def __init__(self, db: Session):
        self.db = db

    def list_logs(self, limit: int = 100):
        return self.db.execute(
            select(StockLog).order_by(StockLog.created_at.desc(), StockLog.id.desc()).limit(limit)
        ).scalars().all()

    def bulk_update(self, updates: list[StockUpdate], reason: str, user_id: Optional[str] = None) -> int:
        """Set absolute stock values. All or nothing."""
        with atomic(self.db):
            products = lock_products(self.db, [u.product_id for u in updates])
            for update in updates:
                product = products.get(update.product_id)
                if product is None:
                    raise ProductNotFound(update.product_id)
                adjust_stock(self.db, product, update.stock - product.stock, reason, user_id)
        logger.info(
            f"Bulk stock update applied to {len(updates)} product(s)",
            extra={'extra_fields': {'reason': reason, 'user_id': user_id}}
        )
        return len(updates)
