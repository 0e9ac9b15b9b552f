"""Authoritative cart pricing.

Both the payment-intent path and the order path price a cart through
``PricingService.quote`` so the amount charged and the amount recorded on the
order cannot disagree. All arithmetic is done in integer cents; client-sent
prices are never read.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core_settings import Settings, get_settings
from app.domain.models import (
    Coupon, CouponType, Product, ShippingZone, SiteSettings, StockReservation, utcnow,
)
from app.domain.errors import InvalidCoupon, InvalidInput, InvalidItems, OutOfStock
from .schemas import CheckoutLine

def to_cents(amount) -> int:
    dec = Decimal(str(amount))
    return int((dec * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))

def percent_of(cents: int, rate) -> int:
    return int((Decimal(cents) * Decimal(str(rate)) / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def merge_lines(items: Iterable[CheckoutLine]) -> list[tuple[int, int]]:
    """Collapse repeated product ids into one (product_id, quantity) pair, keeping first-seen order."""
    merged: dict[int, int] = {}
    for item in items:
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
    return list(merged.items())

@dataclass
class PricedLine:
    product_id: int
    name: str
    unit_price: Decimal
    unit_price_cents: int
    quantity: int
    image: Optional[str] = None

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

@dataclass
class Quote:
    lines: list[PricedLine] = field(default_factory=list)
    subtotal_cents: int = 0
    discount_cents: int = 0
    shipping_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0
    coupon_id: Optional[int] = None

    @property
    def total_amount(self) -> Decimal:
        return from_cents(self.total_cents)

class PricingService:
    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def held_quantities(self, user_id: Optional[str], product_ids: Iterable[int]) -> dict[int, int]:
        """Units this user already took out of stock through cart reservations."""
        if not user_id or not self.settings.CONSUME_RESERVATIONS_ON_ORDER:
            return {}
        rows = self.db.execute(
            select(StockReservation).where(
                StockReservation.user_id == user_id,
                StockReservation.product_id.in_(list(product_ids)),
            )
        ).scalars().all()
        return {r.product_id: r.quantity for r in rows}

    def validate_coupon(self, code: str) -> Coupon:
        coupon = self.db.execute(
            select(Coupon).where(Coupon.code == code.strip().upper())
        ).scalar_one_or_none()
        if coupon is None:
            raise InvalidCoupon("Invalid coupon code")
        if not coupon.is_active:
            raise InvalidCoupon("This coupon is no longer active")
        if coupon.expires_at < utcnow():
            raise InvalidCoupon("This coupon has expired")
        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            raise InvalidCoupon("Coupon usage limit reached")
        return coupon

    def discount_cents(self, coupon: Coupon, subtotal_cents: int) -> int:
        if coupon.type == CouponType.PERCENTAGE.value:
            return percent_of(subtotal_cents, coupon.value)
        return to_cents(coupon.value)

    def shipping_cents(self, subtotal_cents: int, zone: Optional[ShippingZone] = None) -> int:
        if zone is not None:
            return to_cents(zone.charge)
        if subtotal_cents > self.settings.FREE_SHIPPING_THRESHOLD_CENTS:
            return 0
        return self.settings.SHIPPING_FEE_CENTS

    def tax_rate(self) -> Decimal:
        site = self.db.get(SiteSettings, "general")
        return Decimal(site.tax_rate) if site is not None else Decimal("0")

    def shipping_zones(self):
        return self.db.execute(select(ShippingZone).order_by(ShippingZone.name)).scalars().all()

    def quote(
        self,
        items: list[CheckoutLine],
        user_id: Optional[str] = None,
        coupon_code: Optional[str] = None,
        shipping_zone_id: Optional[int] = None,
    ) -> Quote:
        merged = merge_lines(items)
        if not merged:
            raise InvalidInput("Cart is empty")
        product_ids = [pid for pid, _ in merged]

        products = {
            p.id: p for p in self.db.execute(
                select(Product).where(Product.id.in_(product_ids))
            ).scalars().all()
        }
        if len(products) != len(product_ids):
            raise InvalidItems()

        held = self.held_quantities(user_id, product_ids)
        quote = Quote()
        for product_id, quantity in merged:
            product = products[product_id]
            if quantity > product.stock + held.get(product_id, 0):
                raise OutOfStock(product.name)
            quote.lines.append(PricedLine(
                product_id=product.id,
                name=product.name,
                unit_price=Decimal(product.price),
                unit_price_cents=to_cents(product.price),
                quantity=quantity,
                image=product.image,
            ))

        zone = None
        if shipping_zone_id is not None:
            zone = self.db.get(ShippingZone, shipping_zone_id)
            if zone is None:
                raise InvalidInput("Unknown shipping zone")

        quote.subtotal_cents = sum(line.line_total_cents for line in quote.lines)
        if coupon_code:
            coupon = self.validate_coupon(coupon_code)
            quote.coupon_id = coupon.id
            quote.discount_cents = self.discount_cents(coupon, quote.subtotal_cents)
        quote.shipping_cents = self.shipping_cents(quote.subtotal_cents, zone)
        quote.tax_cents = percent_of(quote.subtotal_cents, self.tax_rate())
        quote.total_cents = max(
            0,
            quote.subtotal_cents - quote.discount_cents + quote.shipping_cents + quote.tax_cents,
        )
        return quote
