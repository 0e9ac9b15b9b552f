from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session
from app.infrastructure.db import get_db
from app.application.cart import CartService
from app.application.schemas import (
    CartItemRead, CartItemUpsert, CartLineRead, CartSyncRequest, CartSyncResult,
)
from app.domain.errors import CheckoutError
from .deps import CurrentUser, get_current_user, to_http

router = APIRouter(prefix="/cart", tags=["cart"])

@router.get("/", response_model=list[CartLineRead])
def get_cart(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return CartService(db).list_lines(user.id)

@router.put("/items/{product_id}", response_model=CartItemRead, responses={204: {"description": "Line removed"}})
def upsert_cart_item(
    product_id: int,
    payload: CartItemUpsert,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Set the absolute quantity of a product in the cart; below 1 removes it."""
    try:
        item = CartService(db).upsert_item(user.id, product_id, payload.quantity)
    except CheckoutError as e:
        raise to_http(e)
    if item is None:
        return Response(status_code=204)
    return item

@router.post("/sync", response_model=CartSyncResult)
def sync_guest_cart(
    payload: CartSyncRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Move a guest (client-side) cart into the signed-in user's cart."""
    return CartService(db).sync_guest_cart(user.id, payload.items)

@router.delete("/items/{product_id}", status_code=204)
def remove_cart_item(
    product_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        CartService(db).remove_item(user.id, product_id)
    except CheckoutError as e:
        raise to_http(e)
    return None
