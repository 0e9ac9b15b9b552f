"""
Shared fixtures for the checkout service tests.

Everything runs against an in-memory SQLite database and an in-memory
payment gateway, so no Postgres, Redis or Stripe account is needed.
"""

import os

# Must be set before any app module builds its settings or engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["RATE_LIMIT_REQUESTS"] = "100000"
os.environ.pop("REDIS_URL", None)

from datetime import timedelta
from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core_settings import get_settings
from app.domain.models import Base, Coupon, Product, ShippingZone, SiteSettings, utcnow
from app.domain.errors import PaymentNotFound
from app.infrastructure.db import get_db
from app.infrastructure.payment_gateway import GatewayIntent, PaymentGateway
from app.api.deps import get_payment_gateway
from app.security import create_access_token
from app.main import app

class FakeGateway(PaymentGateway):
    """In-memory stand-in for Stripe PaymentIntents."""

    def __init__(self):
        self.intents: dict[str, GatewayIntent] = {}

    def create_intent(self, amount: int, currency: str, metadata: Optional[dict] = None) -> GatewayIntent:
        intent_id = f"pi_test_{len(self.intents) + 1}"
        intent = GatewayIntent(
            id=intent_id,
            status="requires_payment_method",
            amount=amount,
            currency=currency,
            client_secret=f"{intent_id}_secret",
            metadata=metadata or {},
        )
        self.intents[intent_id] = intent
        return intent

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        if intent_id not in self.intents:
            raise PaymentNotFound()
        return self.intents[intent_id]

    def settle(self, intent_id: str, amount: int, status: str = "succeeded", currency: str = "usd") -> GatewayIntent:
        """Record what the provider would report for an intent after the customer pays."""
        intent = GatewayIntent(id=intent_id, status=status, amount=amount, currency=currency)
        self.intents[intent_id] = intent
        return intent

@pytest.fixture
def settings():
    return get_settings()

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()

@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()

@pytest.fixture
def gateway():
    return FakeGateway()

@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()

@pytest.fixture
def auth_headers():
    def _headers(user_id: str = "user-1", role: str = "user") -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}
    return _headers

@pytest.fixture
def make_product(db):
    def _make(name: str = "Widget", price: str = "10.00", stock: int = 10, image: Optional[str] = None) -> Product:
        product = Product(name=name, price=Decimal(price), stock=stock, image=image)
        db.add(product)
        db.commit()
        return product
    return _make

@pytest.fixture
def make_coupon(db):
    def _make(
        code: str = "SAVE10",
        type: str = "PERCENTAGE",
        value: str = "10",
        is_active: bool = True,
        expires_in_days: int = 30,
        usage_limit: Optional[int] = None,
        usage_count: int = 0,
    ) -> Coupon:
        coupon = Coupon(
            code=code,
            type=type,
            value=Decimal(value),
            is_active=is_active,
            expires_at=utcnow() + timedelta(days=expires_in_days),
            usage_limit=usage_limit,
            usage_count=usage_count,
        )
        db.add(coupon)
        db.commit()
        return coupon
    return _make

@pytest.fixture
def make_zone(db):
    def _make(name: str = "Inside City", charge: str = "5.00") -> ShippingZone:
        zone = ShippingZone(name=name, charge=Decimal(charge))
        db.add(zone)
        db.commit()
        return zone
    return _make

@pytest.fixture
def set_tax_rate(db):
    def _set(rate: str) -> None:
        db.merge(SiteSettings(id="general", tax_rate=Decimal(rate)))
        db.commit()
    return _set

@pytest.fixture
def shipping_payload():
    return {
        "full_name": "Jane Doe",
        "phone": "01712345678",
        "address": "42 Example Street, Springfield",
        "email": "jane@example.com",
    }
