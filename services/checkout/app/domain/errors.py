"""Checkout failure taxonomy.

Services raise these; the API layer turns them into HTTP responses. Every
error carries a stable ``code`` for clients and a user-safe ``message``.
"""

class CheckoutError(Exception):
    code = "checkout_error"
    status_code = 400

    def __init__(self, message: str = "Checkout failed"):
        super().__init__(message)
        self.message = message

class InvalidInput(CheckoutError):
    code = "invalid_input"
    status_code = 400

class InvalidItems(CheckoutError):
    code = "invalid_items"
    status_code = 400

    def __init__(self, message: str = "Invalid cart items"):
        super().__init__(message)

class ProductNotFound(CheckoutError):
    code = "product_not_found"
    status_code = 404

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id

class InsufficientStock(CheckoutError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__("Insufficient stock")
        self.product_id = product_id
        self.available = available
        self.requested = requested

class OutOfStock(CheckoutError):
    code = "out_of_stock"
    status_code = 409

    def __init__(self, product_name: str = ""):
        super().__init__(f"Out of stock for {product_name}" if product_name else "Out of stock")
        self.product_name = product_name

class InvalidCoupon(CheckoutError):
    code = "invalid_coupon"
    status_code = 400

class PaymentVerificationFailed(CheckoutError):
    code = "payment_verification_failed"
    status_code = 402

    def __init__(self, message: str = "Payment verification failed"):
        super().__init__(message)

class PaymentNotFound(PaymentVerificationFailed):
    """The gateway has no intent with the id the client sent."""
    code = "payment_not_found"

    def __init__(self, message: str = "Payment not found"):
        super().__init__(message)

class PaymentGatewayError(CheckoutError):
    code = "payment_gateway_error"
    status_code = 502

    def __init__(self, message: str = "Payment provider unavailable"):
        super().__init__(message)

class OrderNotFound(CheckoutError):
    code = "order_not_found"
    status_code = 404

    def __init__(self, order_number: str):
        super().__init__(f"Order {order_number} not found")

class InvalidStatusTransition(CheckoutError):
    code = "invalid_status_transition"
    status_code = 409

class TransactionFailure(CheckoutError):
    code = "transaction_failure"
    status_code = 500

    def __init__(self, message: str = "Failed to place order"):
        super().__init__(message)

class OrderNumberExhausted(TransactionFailure):
    code = "order_number_exhausted"
