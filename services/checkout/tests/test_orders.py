from decimal import Decimal
from itertools import chain, repeat

import pytest
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.application.cart import CartService
from app.application.orders import OrderService, generate_order_number, unique_code
from app.application.schemas import CheckoutLine, PlaceOrderRequest, ShippingInfo
from app.domain.errors import (
    InvalidCoupon, InvalidInput, InvalidStatusTransition, OrderNotFound, OrderNumberExhausted,
    OutOfStock, PaymentNotFound, PaymentVerificationFailed, TransactionFailure,
)
from app.domain.models import CartItem, Order, OrderStatus, StockLog, StockReservation

@pytest.fixture
def order_request(shipping_payload):
    def _build(items, payment_method="cod", **kwargs) -> PlaceOrderRequest:
        return PlaceOrderRequest(
            shipping=ShippingInfo(**shipping_payload),
            items=[CheckoutLine(product_id=pid, quantity=qty) for pid, qty in items],
            payment_method=payment_method,
            **kwargs,
        )
    return _build

@pytest.fixture
def catalog(make_product):
    return make_product(name="P", price="45.00", stock=10), make_product(name="Q", price="10.00", stock=10)

def order_count(db) -> int:
    return db.query(Order).count()

class TestPlaceOrderCashOnDelivery:
    def test_cod_order_is_pending(self, db, catalog, order_request):
        p, q = catalog

        order = OrderService(db).place_order(order_request([(p.id, 2), (q.id, 1)]))

        assert order.total_amount == Decimal("160.00")
        assert order.shipping_amount == Decimal("60.00")
        assert order.status == "PENDING"
        assert order.payment_status == "PENDING"
        assert order.payment_method == "COD"
        assert order.user_id is None
        assert p.stock == 8 and q.stock == 9

    def test_items_keep_their_purchase_snapshot(self, db, catalog, order_request):
        p, _ = catalog
        order = OrderService(db).place_order(order_request([(p.id, 1)]))

        p.price = Decimal("99.00")
        p.name = "P renamed"
        db.commit()

        stored = OrderService(db).get_by_number(order.order_number)
        assert stored.items[0].name == "P"
        assert stored.items[0].price == Decimal("45.00")

    def test_exact_remaining_stock_can_be_ordered(self, db, make_product, order_request):
        p = make_product(stock=3)
        OrderService(db).place_order(order_request([(p.id, 3)]))
        assert p.stock == 0

    def test_one_more_than_stock_changes_nothing(self, db, make_product, order_request):
        p = make_product(stock=3)
        with pytest.raises(OutOfStock):
            OrderService(db).place_order(order_request([(p.id, 4)]))
        assert p.stock == 3
        assert order_count(db) == 0
        assert db.query(StockLog).count() == 0

    def test_stock_changes_are_logged_with_order_number(self, db, catalog, order_request):
        p, _ = catalog
        order = OrderService(db).place_order(order_request([(p.id, 2)]))
        log = db.execute(select(StockLog)).scalar_one()
        assert log.reason == f"order:{order.order_number}"
        assert log.change == -2

    def test_coupon_usage_is_counted(self, db, catalog, make_coupon, order_request):
        p, _ = catalog
        coupon = make_coupon(code="ONCE", type="FIXED", value="5.00", usage_limit=1)

        order = OrderService(db).place_order(order_request([(p.id, 1)], coupon_code="ONCE"))

        assert order.discount_amount == Decimal("5.00")
        assert order.coupon_id == coupon.id
        assert coupon.usage_count == 1
        with pytest.raises(InvalidCoupon):
            OrderService(db).place_order(order_request([(p.id, 1)], coupon_code="ONCE"))

class TestPlaceOrderWithGateway:
    def test_verified_payment_marks_order_paid(self, db, gateway, catalog, order_request):
        p, q = catalog
        gateway.settle("pi_paid", amount=16000)

        order = OrderService(db, gateway).place_order(
            order_request([(p.id, 2), (q.id, 1)], payment_method="stripe", payment_intent_id="pi_paid")
        )

        assert order.payment_status == "PAID"
        assert order.status == "PROCESSING"
        assert order.payment_intent_id == "pi_paid"

    def test_amount_mismatch_creates_no_order(self, db, gateway, catalog, order_request):
        p, q = catalog
        gateway.settle("pi_short", amount=15000)

        with pytest.raises(PaymentVerificationFailed):
            OrderService(db, gateway).place_order(
                order_request([(p.id, 2), (q.id, 1)], payment_method="stripe", payment_intent_id="pi_short")
            )

        assert order_count(db) == 0
        assert p.stock == 10 and q.stock == 10

    def test_missing_intent_id(self, db, gateway, catalog, order_request):
        p, _ = catalog
        with pytest.raises(InvalidInput):
            OrderService(db, gateway).place_order(order_request([(p.id, 1)], payment_method="stripe"))

    def test_intent_cannot_pay_for_two_orders(self, db, gateway, catalog, order_request):
        p, _ = catalog
        gateway.settle("pi_once", amount=10500)
        request = order_request([(p.id, 1)], payment_method="stripe", payment_intent_id="pi_once")
        OrderService(db, gateway).place_order(request)

        with pytest.raises(PaymentVerificationFailed):
            OrderService(db, gateway).place_order(request)
        assert order_count(db) == 1

class TestReservationsOnOrder:
    def test_order_consumes_the_users_reservation(self, db, catalog, order_request):
        p, _ = catalog
        CartService(db).upsert_item("user-1", p.id, 3)
        assert p.stock == 7

        OrderService(db).place_order(order_request([(p.id, 3)]), user_id="user-1")

        assert p.stock == 7
        assert db.execute(select(StockReservation)).scalars().all() == []
        assert db.execute(select(CartItem)).scalars().all() == []

    def test_ordering_fewer_than_reserved_returns_the_rest(self, db, catalog, order_request):
        p, _ = catalog
        CartService(db).upsert_item("user-1", p.id, 5)

        OrderService(db).place_order(order_request([(p.id, 2)]), user_id="user-1")

        assert p.stock == 8

    def test_fully_reserved_stock_can_still_be_ordered_by_holder(self, db, make_product, order_request):
        p = make_product(stock=2)
        CartService(db).upsert_item("user-1", p.id, 2)

        OrderService(db).place_order(order_request([(p.id, 2)]), user_id="user-1")

        assert p.stock == 0

    def test_legacy_mode_decrements_again(self, db, settings, catalog, order_request):
        p, _ = catalog
        legacy = settings.model_copy(update={"CONSUME_RESERVATIONS_ON_ORDER": False})
        CartService(db, legacy).upsert_item("user-1", p.id, 3)

        OrderService(db, settings=legacy).place_order(order_request([(p.id, 3)]), user_id="user-1")

        assert p.stock == 4
        assert db.execute(select(StockReservation)).scalar_one().quantity == 3

    def test_only_ordered_lines_leave_the_cart(self, db, catalog, order_request):
        p, q = catalog
        service = CartService(db)
        service.upsert_item("user-1", p.id, 1)
        service.upsert_item("user-1", q.id, 1)

        OrderService(db).place_order(order_request([(p.id, 1)]), user_id="user-1")

        remaining = db.execute(select(CartItem)).scalars().all()
        assert [item.product_id for item in remaining] == [q.id]

class TestOrderNumbers:
    def test_format(self):
        number = generate_order_number("IG")
        assert number.startswith("IG")
        assert len(number) == 2 + 2 + 12

    def test_collision_is_retried(self, db, catalog, order_request):
        p, _ = catalog
        numbers = chain(["IG26TAKEN"], repeat("IG26FRESH"))
        service = OrderService(db, number_generator=lambda: next(numbers))
        first = service.place_order(order_request([(p.id, 1)]))
        assert first.order_number == "IG26TAKEN"

        numbers = chain(["IG26TAKEN", "IG26TAKEN"], repeat("IG26FRESH"))
        service = OrderService(db, number_generator=lambda: next(numbers))
        assert service.place_order(order_request([(p.id, 1)])).order_number == "IG26FRESH"

    def test_retries_are_bounded(self):
        calls = []

        def generate():
            calls.append(1)
            return "SAME"

        with pytest.raises(OrderNumberExhausted):
            unique_code(generate, lambda code: True, max_attempts=4)
        assert len(calls) == 4

class TestOrderStatus:
    def test_lookup_missing_order(self, db):
        with pytest.raises(OrderNotFound):
            OrderService(db).get_by_number("IG26NOPE")

    def test_status_moves_one_step_at_a_time(self, db, catalog, order_request):
        p, _ = catalog
        order = OrderService(db).place_order(order_request([(p.id, 1)]))
        service = OrderService(db)

        for status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            assert service.update_status(order.order_number, status, actor_id="admin-1").status == status.value

    @pytest.mark.parametrize("target", [OrderStatus.SHIPPED, OrderStatus.DELIVERED])
    def test_pending_cannot_skip_processing(self, db, catalog, order_request, target):
        p, _ = catalog
        order = OrderService(db).place_order(order_request([(p.id, 1)]))

        with pytest.raises(InvalidStatusTransition):
            OrderService(db).update_status(order.order_number, target)
        assert OrderService(db).get_by_number(order.order_number).status == "PENDING"

    def test_shipped_orders_cannot_be_cancelled(self, db, catalog, order_request):
        p, _ = catalog
        order = OrderService(db).place_order(order_request([(p.id, 1)]))
        service = OrderService(db)
        service.update_status(order.order_number, OrderStatus.PROCESSING)
        service.update_status(order.order_number, OrderStatus.SHIPPED)

        with pytest.raises(InvalidStatusTransition):
            service.update_status(order.order_number, OrderStatus.CANCELLED)
        assert p.stock == 9

    def test_cancelling_restores_stock(self, db, catalog, order_request):
        p, _ = catalog
        order = OrderService(db).place_order(order_request([(p.id, 4)]))
        assert p.stock == 6

        OrderService(db).update_status(order.order_number, OrderStatus.CANCELLED, actor_id="admin-1")

        assert p.stock == 10
        log = db.execute(select(StockLog).order_by(StockLog.id.desc())).scalars().first()
        assert log.reason == f"order-cancelled:{order.order_number}"

    def test_final_statuses_cannot_change(self, db, catalog, order_request):
        p, _ = catalog
        order = OrderService(db).place_order(order_request([(p.id, 1)]))
        OrderService(db).update_status(order.order_number, OrderStatus.CANCELLED)

        with pytest.raises(InvalidStatusTransition):
            OrderService(db).update_status(order.order_number, OrderStatus.PROCESSING)
        assert p.stock == 10

class TestShippingEmail:
    @pytest.mark.parametrize("email", ["", "   "])
    def test_blank_email_means_none(self, shipping_payload, email):
        assert ShippingInfo(**{**shipping_payload, "email": email}).email is None

    def test_email_can_be_left_out(self, shipping_payload):
        payload = {k: v for k, v in shipping_payload.items() if k != "email"}
        assert ShippingInfo(**payload).email is None

    def test_malformed_email_is_still_rejected(self, shipping_payload):
        with pytest.raises(ValidationError):
            ShippingInfo(**{**shipping_payload, "email": "not-an-email"})

    def test_order_without_email(self, db, catalog, shipping_payload):
        p, _ = catalog
        request = PlaceOrderRequest(
            shipping=ShippingInfo(**{**shipping_payload, "email": ""}),
            items=[CheckoutLine(product_id=p.id, quantity=1)],
            payment_method="cod",
        )

        order = OrderService(db).place_order(request)

        assert OrderService(db).get_by_number(order.order_number).email is None

class TestOrderTransactionFailure:
    def test_database_error_rolls_back_everything(self, db, monkeypatch, catalog, order_request):
        p, q = catalog
        CartService(db).upsert_item("user-1", p.id, 2)

        def locked(*args, **kwargs):
            raise OperationalError("UPDATE products", {}, Exception("database is locked"))

        monkeypatch.setattr("app.application.orders.adjust_stock", locked)
        with pytest.raises(TransactionFailure) as exc:
            OrderService(db).place_order(order_request([(p.id, 3), (q.id, 1)]), user_id="user-1")

        assert exc.value.message == "Failed to place order"
        assert exc.value.status_code == 500
        assert order_count(db) == 0
        assert p.stock == 8 and q.stock == 10
        assert db.execute(select(StockReservation)).scalar_one().quantity == 2
        assert len(db.execute(select(CartItem)).scalars().all()) == 1

class TestUnknownPaymentIntent:
    def test_unknown_intent_creates_no_order(self, db, gateway, catalog, order_request):
        p, _ = catalog

        with pytest.raises(PaymentVerificationFailed) as exc:
            OrderService(db, gateway).place_order(
                order_request([(p.id, 1)], payment_method="stripe", payment_intent_id="pi_forged")
            )

        assert isinstance(exc.value, PaymentNotFound)
        assert exc.value.status_code == 402
        assert order_count(db) == 0
        assert p.stock == 10
