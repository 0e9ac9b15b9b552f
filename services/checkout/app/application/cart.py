from sqlalchemy import select
from sqlalchemy.orm import Session
from typing import Optional
from app.core_settings import Settings, get_settings
from app.domain.models import CartItem, Product, StockReservation
from app.domain.errors import InsufficientStock, ProductNotFound
from app.infrastructure.db import atomic
from .inventory import adjust_stock, lock_product, lock_products
from .schemas import CartLineRead, CartSyncResult, GuestCartItem
from shared.core import get_logger

logger = get_logger(__name__)

class CartService:
    """Cart mutations that keep Product.stock in step with per-user reservations.

    A reservation's quantity is what the user currently holds out of stock for
    that product. Every mutation locks the product row, compares the requested
    quantity against the held quantity, moves only the difference in or out of
    stock, and refreshes the reservation's expiry, all in one transaction.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def list_lines(self, user_id: str) -> list[CartLineRead]:
        items = self.db.execute(
            select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.created_at.desc(), CartItem.id.desc())
        ).scalars().all()
        reservations = {
            r.product_id: r for r in self.db.execute(
                select(StockReservation).where(StockReservation.user_id == user_id)
            ).scalars().all()
        }
        lines = []
        for item in items:
            reservation = reservations.get(item.product_id)
            held = reservation.quantity if reservation else 0
            lines.append(CartLineRead(
                product_id=item.product_id,
                name=item.product.name,
                price=item.product.price,
                image=item.product.image,
                quantity=item.quantity,
                max_stock=item.product.stock + held,
                reserved_until=reservation.expires_at if reservation else None,
            ))
        return lines

    def upsert_item(self, user_id: str, product_id: int, quantity: int) -> Optional[CartItem]:
        """Set the cart quantity for one product. Returns None when the line was removed."""
        with atomic(self.db):
            product = lock_product(self.db, product_id)
            if product is None:
                raise ProductNotFound(product_id)
            item = self._apply(user_id, product, quantity)
        logger.info(
            f"Cart line set: product {product_id} qty {quantity}",
            extra={'extra_fields': {'user_id': user_id, 'product_id': product_id, 'quantity': quantity}}
        )
        return item

    def sync_guest_cart(self, user_id: str, items: list[GuestCartItem]) -> CartSyncResult:
        """Merge a guest cart into the user's account cart, best effort per item."""
        synced, skipped = [], []
        with atomic(self.db):
            products = lock_products(self.db, [i.product_id for i in items])
            for entry in items:
                product = products.get(entry.product_id)
                if product is None:
                    # Stale client-side data; nothing to reserve
                    skipped.append(entry.product_id)
                    continue
                try:
                    self._apply(user_id, product, entry.quantity)
                except InsufficientStock:
                    skipped.append(entry.product_id)
                    continue
                synced.append(entry.product_id)
        logger.info(
            f"Guest cart synced: {len(synced)} applied, {len(skipped)} skipped",
            extra={'extra_fields': {'user_id': user_id, 'skipped': skipped}}
        )
        return CartSyncResult(synced=synced, skipped=skipped)

    def remove_item(self, user_id: str, product_id: int) -> None:
        with atomic(self.db):
            product = lock_product(self.db, product_id)
            if product is None:
                raise ProductNotFound(product_id)
            self._release(
                user_id,
                product,
                self._locked_cart_item(user_id, product_id),
                self._locked_reservation(user_id, product_id),
            )
        logger.info(
            f"Cart line removed: product {product_id}",
            extra={'extra_fields': {'user_id': user_id, 'product_id': product_id}}
        )

    def _locked_cart_item(self, user_id: str, product_id: int) -> Optional[CartItem]:
        return self.db.execute(
            select(CartItem).where(
                CartItem.user_id == user_id, CartItem.product_id == product_id
            ).with_for_update().execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _locked_reservation(self, user_id: str, product_id: int) -> Optional[StockReservation]:
        return self.db.execute(
            select(StockReservation).where(
                StockReservation.user_id == user_id, StockReservation.product_id == product_id
            ).with_for_update().execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _apply(self, user_id: str, product: Product, target: int) -> Optional[CartItem]:
        # Caller holds the product row lock and owns the transaction
        item = self._locked_cart_item(user_id, product.id)
        reservation = self._locked_reservation(user_id, product.id)

        if target < 1:
            self._release(user_id, product, item, reservation)
            return None

        held = reservation.quantity if reservation else 0
        delta = target - held
        if delta > 0 and product.stock < delta:
            raise InsufficientStock(product.id, available=product.stock, requested=delta)

        reason = "cart:reserve" if delta > 0 else "cart:release"
        adjust_stock(self.db, product, -delta, reason, user_id)

        if item is None:
            item = CartItem(user_id=user_id, product_id=product.id, quantity=target)
            self.db.add(item)
        else:
            item.quantity = target

        expires_at = StockReservation.expiry_from_now(self.settings.RESERVATION_TTL_MINUTES)
        if reservation is None:
            self.db.add(StockReservation(
                product_id=product.id, user_id=user_id, quantity=target, expires_at=expires_at,
            ))
        else:
            reservation.quantity = target
            reservation.expires_at = expires_at

        # Sessions don't autoflush; later lookups in the same batch must see these rows
        self.db.flush()
        return item

    def _release(
        self,
        user_id: str,
        product: Product,
        item: Optional[CartItem],
        reservation: Optional[StockReservation],
    ) -> None:
        if item is not None:
            self.db.delete(item)
        if reservation is not None:
            adjust_stock(self.db, product, reservation.quantity, "cart:remove", user_id)
            self.db.delete(reservation)
        self.db.flush()
