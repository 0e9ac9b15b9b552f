from pydantic import AfterValidator, BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional
from app.core_settings import get_settings
from app.domain.models import OrderStatus

def _check_line_quantity(value: int) -> int:
    limit = get_settings().MAX_LINE_QUANTITY
    if value > limit:
        raise ValueError(f"quantity must be at most {limit}")
    return value

LineQuantity = Annotated[int, AfterValidator(_check_line_quantity)]

# --- Cart ---

class CartItemUpsert(BaseModel):
    # Absolute target quantity; anything below 1 removes the line
    quantity: LineQuantity

class GuestCartItem(BaseModel):
    product_id: int
    quantity: LineQuantity

class CartSyncRequest(BaseModel):
    items: list[GuestCartItem]

class CartLineRead(BaseModel):
    product_id: int
    name: str
    price: Decimal
    image: Optional[str] = None
    quantity: int
    max_stock: int
    reserved_until: Optional[datetime] = None

class CartItemRead(BaseModel):
    id: int
    product_id: int
    quantity: int
    class Config:
        from_attributes = True

class CartSyncResult(BaseModel):
    synced: list[int]
    skipped: list[int]

# --- Checkout ---

class CheckoutLine(BaseModel):
    """One cart line as submitted by the client. Any price it carries is ignored."""
    product_id: int
    quantity: LineQuantity = Field(..., gt=0)

class ShippingInfo(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=200)
    phone: str = Field(..., min_length=11, max_length=50)
    address: str = Field(..., min_length=10)
    # Optional for guest and cash-on-delivery checkout; a blank field means none
    email: Optional[EmailStr] = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

class PaymentIntentRequest(BaseModel):
    items: list[CheckoutLine] = Field(..., min_length=1)
    coupon_code: Optional[str] = None
    shipping_zone_id: Optional[int] = None

class PaymentIntentRead(BaseModel):
    client_secret: str
    payment_intent_id: str
    amount: int
    currency: str

class PlaceOrderRequest(BaseModel):
    shipping: ShippingInfo
    items: list[CheckoutLine] = Field(..., min_length=1)
    payment_method: Literal["cod", "stripe"]
    payment_intent_id: Optional[str] = None
    coupon_code: Optional[str] = None
    shipping_zone_id: Optional[int] = None

class PlaceOrderResult(BaseModel):
    success: bool = True
    order_number: str
    status: str
    payment_status: str
    total_amount: Decimal

class CouponValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)

class CouponRead(BaseModel):
    id: int
    code: str
    type: str
    value: Decimal
    class Config:
        from_attributes = True

class ShippingZoneRead(BaseModel):
    id: int
    name: str
    charge: Decimal
    class Config:
        from_attributes = True

class CheckoutSettingsRead(BaseModel):
    zones: list[ShippingZoneRead]
    tax_rate: Decimal

# --- Orders ---

class OrderItemRead(BaseModel):
    id: int
    product_id: int
    name: str
    price: Decimal
    quantity: int
    image: Optional[str] = None
    class Config:
        from_attributes = True

class OrderRead(BaseModel):
    id: int
    order_number: str
    user_id: Optional[str] = None
    name: str
    phone: str
    address: str
    email: Optional[str] = None
    total_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    status: str
    payment_status: str
    payment_method: str
    payment_intent_id: Optional[str] = None
    created_at: datetime
    items: list[OrderItemRead]
    class Config:
        from_attributes = True

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

# --- Inventory admin ---

class StockUpdate(BaseModel):
    product_id: int
    stock: int = Field(..., ge=0)

class BulkStockUpdate(BaseModel):
    updates: list[StockUpdate] = Field(..., min_length=1)
    reason: str = "Manual Bulk Update"

class StockLogRead(BaseModel):
    id: int
    product_id: int
    user_id: Optional[str] = None
    old_stock: int
    new_stock: int
    change: int
    reason: Optional[str] = None
    created_at: datetime
    class Config:
        from_attributes = True

class ReapResult(BaseModel):
    reclaimed: int
