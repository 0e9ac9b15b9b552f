"""Payment gateway client.

``StripeGateway`` wraps Stripe PaymentIntents. Anything with the same two
methods can stand in for it (tests use an in-memory fake).
"""

from dataclasses import dataclass, field
from typing import Optional

import stripe

from app.domain.errors import PaymentGatewayError, PaymentNotFound

@dataclass
class GatewayIntent:
    id: str
    status: str
    amount: int
    currency: str
    client_secret: Optional[str] = None
    metadata: dict = field(default_factory=dict)

class PaymentGateway:
    def create_intent(self, amount: int, currency: str, metadata: Optional[dict] = None) -> GatewayIntent:
        raise NotImplementedError

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        raise NotImplementedError

class StripeGateway(PaymentGateway):
    def __init__(self, api_key: str):
        self.api_key = api_key

    def _require_key(self) -> None:
        if not self.api_key:
            raise PaymentGatewayError("Stripe is not configured")

    @staticmethod
    def _to_intent(intent) -> GatewayIntent:
        return GatewayIntent(
            id=intent.id,
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
            client_secret=intent.client_secret,
            metadata=dict(intent.metadata or {}),
        )

    def create_intent(self, amount: int, currency: str, metadata: Optional[dict] = None) -> GatewayIntent:
        self._require_key()
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                automatic_payment_methods={"enabled": True},
                metadata=metadata or {},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Could not create payment: {e.user_message or 'provider error'}") from e
        return self._to_intent(intent)

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        self._require_key()
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
        except stripe.InvalidRequestError as e:
            # Unknown or malformed intent id
            raise PaymentNotFound() from e
        except stripe.StripeError as e:
            raise PaymentGatewayError() from e
        return self._to_intent(intent)
