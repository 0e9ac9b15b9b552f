from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from typing import Callable, Optional
import secrets
from app.core_settings import Settings, get_settings
from app.domain.models import (
    CartItem, Coupon, Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus,
    StockReservation, utcnow,
)
from app.domain.errors import (
    CheckoutError, InvalidCoupon, InvalidInput, InvalidItems, InvalidStatusTransition,
    OrderNotFound, OrderNumberExhausted, OutOfStock, PaymentGatewayError,
    PaymentVerificationFailed, TransactionFailure,
)
from app.infrastructure.db import atomic
from app.infrastructure.payment_gateway import PaymentGateway
from .inventory import adjust_stock, lock_products
from .payments import PaymentService
from .pricing import PricingService, Quote, from_cents
from .schemas import PlaceOrderRequest
from shared.core import get_logger

logger = get_logger(__name__)

# Statuses an order may move to from each status; DELIVERED and CANCELLED are final
STATUS_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

def generate_order_number(prefix: str = "IG") -> str:
    """Prefix + two-digit year + 12 random hex characters, e.g. IG26A1B2C3D4E5F6."""
    year = utcnow().strftime("%y")
    return f"{prefix}{year}{secrets.token_hex(6).upper()}"

def unique_code(generate: Callable[[], str], is_taken: Callable[[str], bool], max_attempts: int) -> str:
    """Draw codes until one is free. Randomness alone is never trusted for uniqueness."""
    for attempt in range(1, max_attempts + 1):
        code = generate()
        if not is_taken(code):
            return code
        logger.warning(f"Order number collision on attempt {attempt}: {code}")
    raise OrderNumberExhausted()

class OrderService:
    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        settings: Optional[Settings] = None,
        number_generator: Optional[Callable[[], str]] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.number_generator = number_generator or (
            lambda: generate_order_number(self.settings.ORDER_NUMBER_PREFIX)
        )

    def get_by_number(self, order_number: str) -> Order:
        order = self.db.execute(
            select(Order).options(selectinload(Order.items)).where(Order.order_number == order_number)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFound(order_number)
        return order

    def list_for_user(self, user_id: str):
        return self.db.execute(
            select(Order).options(selectinload(Order.items))
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        ).scalars().all()

    def _order_number_taken(self, order_number: str) -> bool:
        return self.db.execute(
            select(Order.id).where(Order.order_number == order_number)
        ).first() is not None

    def new_order_number(self) -> str:
        return unique_code(
            self.number_generator,
            self._order_number_taken,
            self.settings.ORDER_NUMBER_MAX_ATTEMPTS,
        )

    def _intent_already_used(self, payment_intent_id: str) -> bool:
        return self.db.execute(
            select(Order.id).where(Order.payment_intent_id == payment_intent_id)
        ).first() is not None

    def place_order(self, request: PlaceOrderRequest, user_id: Optional[str] = None) -> Order:
        """Validate, price, verify payment, then commit the order and its stock changes atomically.

        Raises a ``CheckoutError`` subclass on any failure; no order row exists afterwards.
        """
        quote = PricingService(self.db, self.settings).quote(
            request.items,
            user_id=user_id,
            coupon_code=request.coupon_code,
            shipping_zone_id=request.shipping_zone_id,
        )

        method = PaymentMethod.COD if request.payment_method == "cod" else PaymentMethod.STRIPE
        paid = False
        if method == PaymentMethod.STRIPE:
            if not request.payment_intent_id:
                raise InvalidInput("Missing payment intent")
            if self.gateway is None:
                raise PaymentGatewayError("Stripe is not configured")
            if self._intent_already_used(request.payment_intent_id):
                raise PaymentVerificationFailed("Payment already used for another order")
            PaymentService(self.db, self.gateway, self.settings).verify(
                request.payment_intent_id, quote.total_cents
            )
            paid = True

        order_number = self.new_order_number()

        try:
            with atomic(self.db):
                order = self._commit(request, quote, order_number, method, paid, user_id)
        except CheckoutError:
            raise
        except SQLAlchemyError as e:
            logger.error(
                f"Order transaction failed for {order_number}",
                exc_info=True,
                extra={'extra_fields': {'order_number': order_number, 'user_id': user_id}}
            )
            raise TransactionFailure() from e

        logger.info(
            f"Order {order.order_number} placed",
            extra={'extra_fields': {
                'order_number': order.order_number,
                'user_id': user_id,
                'total_cents': quote.total_cents,
                'payment_method': method.value,
                'payment_status': order.payment_status,
            }}
        )
        return order

    def _commit(
        self,
        request: PlaceOrderRequest,
        quote: Quote,
        order_number: str,
        method: PaymentMethod,
        paid: bool,
        user_id: Optional[str],
    ) -> Order:
        product_ids = [line.product_id for line in quote.lines]
        products = lock_products(self.db, product_ids)

        consume = bool(user_id) and self.settings.CONSUME_RESERVATIONS_ON_ORDER
        reservations = {}
        if consume:
            reservations = {
                r.product_id: r for r in self.db.execute(
                    select(StockReservation).where(
                        StockReservation.user_id == user_id,
                        StockReservation.product_id.in_(product_ids),
                    ).with_for_update().execution_options(populate_existing=True)
                ).scalars().all()
            }

        # Stock may have moved since pricing; check again under the row locks
        for line in quote.lines:
            product = products.get(line.product_id)
            if product is None:
                raise InvalidItems()
            held = reservations[line.product_id].quantity if line.product_id in reservations else 0
            if line.quantity > product.stock + held:
                raise OutOfStock(product.name)

        shipping = request.shipping
        order = Order(
            order_number=order_number,
            user_id=user_id,
            name=shipping.full_name,
            phone=shipping.phone,
            address=shipping.address,
            email=shipping.email,
            total_amount=from_cents(quote.total_cents),
            shipping_amount=from_cents(quote.shipping_cents),
            discount_amount=from_cents(quote.discount_cents),
            tax_amount=from_cents(quote.tax_cents),
            status=(OrderStatus.PROCESSING if paid else OrderStatus.PENDING).value,
            payment_status=(PaymentStatus.PAID if paid else PaymentStatus.PENDING).value,
            payment_method=method.value,
            payment_intent_id=request.payment_intent_id if method == PaymentMethod.STRIPE else None,
            coupon_id=quote.coupon_id,
            items=[
                OrderItem(
                    product_id=line.product_id,
                    name=line.name,
                    price=line.unit_price,
                    quantity=line.quantity,
                    image=line.image,
                )
                for line in quote.lines
            ],
        )
        self.db.add(order)

        reason = f"order:{order_number}"
        for line in quote.lines:
            product = products[line.product_id]
            reservation = reservations.get(line.product_id)
            if reservation is not None:
                # Reserved units already left stock when they were added to the cart
                adjust_stock(self.db, product, reservation.quantity - line.quantity, reason, user_id)
                self.db.delete(reservation)
            else:
                adjust_stock(self.db, product, -line.quantity, reason, user_id)

        if quote.coupon_id is not None:
            coupon = self.db.execute(
                select(Coupon).where(Coupon.id == quote.coupon_id)
                .with_for_update().execution_options(populate_existing=True)
            ).scalar_one()
            if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
                raise InvalidCoupon("Coupon usage limit reached")
            coupon.usage_count += 1

        if user_id:
            self.db.execute(
                delete(CartItem).where(CartItem.user_id == user_id, CartItem.product_id.in_(product_ids))
            )

        self.db.flush()
        return order

    def update_status(self, order_number: str, new_status: OrderStatus, actor_id: Optional[str] = None) -> Order:
        """Move an order along its lifecycle. Cancelling returns its units to stock."""
        with atomic(self.db):
            order = self.db.execute(
                select(Order).options(selectinload(Order.items))
                .where(Order.order_number == order_number)
                .with_for_update().execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if order is None:
                raise OrderNotFound(order_number)

            current = OrderStatus(order.status)
            if new_status == current:
                return order
            if new_status not in STATUS_TRANSITIONS[current]:
                raise InvalidStatusTransition(
                    f"Cannot change order status from {current.value} to {new_status.value}"
                )

            if new_status == OrderStatus.CANCELLED:
                products = lock_products(self.db, [item.product_id for item in order.items])
                for item in order.items:
                    adjust_stock(
                        self.db, products[item.product_id], item.quantity,
                        f"order-cancelled:{order_number}", actor_id,
                    )
            order.status = new_status.value

        logger.info(
            f"Order {order_number} moved from {current.value} to {new_status.value}",
            extra={'extra_fields': {'order_number': order_number, 'actor_id': actor_id}}
        )
        return order
