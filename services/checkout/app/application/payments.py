from sqlalchemy.orm import Session
from typing import Optional
from app.core_settings import Settings, get_settings
from app.domain.errors import PaymentVerificationFailed
from app.infrastructure.payment_gateway import GatewayIntent, PaymentGateway
from .pricing import PricingService
from .schemas import CheckoutLine, PaymentIntentRead
from shared.core import get_logger

logger = get_logger(__name__)

class PaymentService:
    def __init__(self, db: Session, gateway: PaymentGateway, settings: Optional[Settings] = None):
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()

    def create_intent(
        self,
        items: list[CheckoutLine],
        user_id: Optional[str] = None,
        coupon_code: Optional[str] = None,
        shipping_zone_id: Optional[int] = None,
    ) -> PaymentIntentRead:
        """Price the cart from the database and open a gateway intent for that exact total.

        Reads only: nothing is reserved and nothing is written.
        """
        quote = PricingService(self.db, self.settings).quote(
            items, user_id=user_id, coupon_code=coupon_code, shipping_zone_id=shipping_zone_id,
        )
        intent = self.gateway.create_intent(
            amount=quote.total_cents,
            currency=self.settings.CURRENCY,
            metadata={"user_id": user_id or ""},
        )
        logger.info(
            f"Payment intent {intent.id} created for {quote.total_cents} {self.settings.CURRENCY}",
            extra={'extra_fields': {'payment_intent_id': intent.id, 'amount': quote.total_cents}}
        )
        return PaymentIntentRead(
            client_secret=intent.client_secret or "",
            payment_intent_id=intent.id,
            amount=quote.total_cents,
            currency=self.settings.CURRENCY,
        )

    def verify(self, payment_intent_id: str, expected_total_cents: int) -> GatewayIntent:
        """Require a succeeded intent for exactly the expected amount and currency."""
        intent = self.gateway.retrieve_intent(payment_intent_id)
        mismatches = []
        if intent.status != "succeeded":
            mismatches.append(f"status={intent.status}")
        if intent.amount != expected_total_cents:
            mismatches.append(f"amount={intent.amount} expected={expected_total_cents}")
        if (intent.currency or "").lower() != self.settings.CURRENCY.lower():
            mismatches.append(f"currency={intent.currency}")
        if mismatches:
            logger.warning(
                f"Payment verification failed for {payment_intent_id}: {', '.join(mismatches)}",
                extra={'extra_fields': {'payment_intent_id': payment_intent_id}}
            )
            raise PaymentVerificationFailed()
        return intent
