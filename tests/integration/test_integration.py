"""
Integration tests for a running checkout service.

Start the stack (service + Postgres, migrations applied, at least one product
seeded), then run:

    CHECKOUT_URL=http://localhost:8000 INTEGRATION_PRODUCT_ID=1 pytest -m integration

Tokens are minted locally, so JWT_SECRET must match the service's.
"""

import os
import time
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest

BASE_URL = os.getenv("CHECKOUT_URL", "http://localhost:8000")
JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
PRODUCT_ID = int(os.getenv("INTEGRATION_PRODUCT_ID", "1"))
HEALTH_CHECK_RETRIES = 30
HEALTH_CHECK_DELAY = 2

pytestmark = pytest.mark.integration

def bearer(subject: str, role: str = "user") -> dict:
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": subject, "role": role, "iat": now, "exp": now + timedelta(minutes=10)},
        JWT_SECRET,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}

class TestCheckoutIntegration:
    """End-to-end checks against a deployed checkout service"""

    @classmethod
    def setup_class(cls):
        cls.client = httpx.Client(base_url=BASE_URL, timeout=30.0)
        cls.user = f"it-user-{int(time.time())}"
        cls.headers = bearer(cls.user)
        cls.admin_headers = bearer("it-admin", role="admin")
        cls.wait_for_service()

    @classmethod
    def teardown_class(cls):
        cls.client.close()

    @classmethod
    def wait_for_service(cls):
        for attempt in range(HEALTH_CHECK_RETRIES):
            try:
                if cls.client.get("/health").status_code == 200:
                    return
            except httpx.HTTPError as e:
                print(f"Attempt {attempt + 1}/{HEALTH_CHECK_RETRIES}: {e}")
            time.sleep(HEALTH_CHECK_DELAY)
        raise RuntimeError("Checkout service failed to start within timeout period")

    def test_health_endpoints(self):
        for endpoint in ["/health", "/health/live", "/health/ready", "/health/startup"]:
            response = self.client.get(endpoint)
            assert response.status_code in [200, 503]
            assert "status" in response.json()

    def test_metrics_endpoint(self):
        data = self.client.get("/metrics").json()
        assert data["service"] == "checkout-service"
        assert "uptime_seconds" in data

    def test_cart_reservation_cycle(self):
        path = f"/cart/items/{PRODUCT_ID}"
        response = self.client.put(path, json={"quantity": 1}, headers=self.headers)
        assert response.status_code == 200

        cart = self.client.get("/cart/", headers=self.headers).json()
        line = next(line for line in cart if line["product_id"] == PRODUCT_ID)
        assert line["quantity"] == 1
        assert line["reserved_until"] is not None

        assert self.client.delete(path, headers=self.headers).status_code == 204
        cart = self.client.get("/cart/", headers=self.headers).json()
        assert all(line["product_id"] != PRODUCT_ID for line in cart)

    def test_cod_order_workflow(self):
        self.client.put(f"/cart/items/{PRODUCT_ID}", json={"quantity": 1}, headers=self.headers)

        response = self.client.post("/orders/", headers=self.headers, json={
            "shipping": {
                "full_name": "Integration Tester",
                "phone": "01700000000",
                "address": "1 Integration Way, Testville",
                "email": "it@example.com",
            },
            "items": [{"product_id": PRODUCT_ID, "quantity": 1}],
            "payment_method": "cod",
        })
        assert response.status_code == 201
        order = response.json()
        assert order["status"] == "PENDING"
        assert order["payment_status"] == "PENDING"

        mine = self.client.get("/orders/me", headers=self.headers).json()
        assert order["order_number"] in [o["order_number"] for o in mine]

        response = self.client.patch(
            f"/admin/orders/{order['order_number']}/status",
            json={"status": "CANCELLED"},
            headers=self.admin_headers,
        )
        assert response.status_code == 200

    def test_reaper_endpoint(self):
        response = self.client.post("/admin/reservations/reap", headers=self.admin_headers)
        assert response.status_code == 200
        assert response.json()["reclaimed"] >= 0

    def test_error_handling(self):
        assert self.client.get("/cart/").status_code == 401
        assert self.client.post("/admin/reservations/reap", headers=self.headers).status_code == 403
        response = self.client.post("/checkout/payment-intents", json={"items": [{"product_id": 0}]})
        assert response.status_code in [400, 422]

    def test_request_tracking(self):
        response = self.client.get("/", headers={"X-Request-ID": "it-trace-1"})
        assert response.headers.get("X-Request-ID") == "it-trace-1"

    @pytest.mark.performance
    def test_performance_baseline(self):
        for endpoint in ["/health", "/checkout/settings"]:
            start = time.time()
            response = self.client.get(endpoint)
            duration = time.time() - start
            assert response.status_code == 200
            assert duration < 1.0, f"{endpoint} took {duration:.3f}s"

if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s", "-m", "integration"])
