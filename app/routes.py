from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app import catalog, orders, payments
from app.auth import Identity, require_admin, verify_token
from app.cart import CartStore, calculate_totals
from app.database import get_db
from app.errors import InsufficientStock, InvalidInput, NotFound
from app.schemas import (
    AddCartItemRequest,
    CheckoutSessionRequest,
    CreateOrderRequest,
    OrderStatus,
    UpdateCartItemRequest,
    UpdateStatusRequest,
    pagination,
    serialize_order,
)


def get_cart_store(request: Request) -> CartStore:
    return request.app.state.cart_store


cart_router = APIRouter(prefix="/cart", tags=["cart"])
order_router = APIRouter(prefix="/orders", tags=["orders"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@cart_router.get("")
def get_cart(identity: Identity = Depends(verify_token), store: CartStore = Depends(get_cart_store)):
    return calculate_totals(store.get(identity.id))


@cart_router.post("/items")
def add_cart_item(
    request: AddCartItemRequest,
    identity: Identity = Depends(verify_token),
    store: CartStore = Depends(get_cart_store),
    db: Session = Depends(get_db),
):
    if request.quantity < 1:
        raise InvalidInput("Quantity must be at least 1")

    product = catalog.get_active_product(db, request.product_id)

    existing = store.get(identity.id).find(product.id)
    in_cart = existing.quantity if existing else 0
    if in_cart + request.quantity > product.stock:
        raise InsufficientStock(product.id, product.name, in_cart + request.quantity, product.stock)

    cart = store.add_item(identity.id, product, request.quantity)
    return {"message": "Product added to cart", "cart": calculate_totals(cart)}


@cart_router.put("/items/{product_id}")
def update_cart_item(
    product_id: str,
    request: UpdateCartItemRequest,
    identity: Identity = Depends(verify_token),
    store: CartStore = Depends(get_cart_store),
    db: Session = Depends(get_db),
):
    if request.quantity > 0:
        product = catalog.get_active_product(db, product_id)
        if request.quantity > product.stock:
            raise InsufficientStock(product.id, product.name, request.quantity, product.stock)

    cart = store.update_item(identity.id, product_id, request.quantity)
    if cart is None:
        raise NotFound("Product not in cart", productId=product_id)

    message = "Product removed from cart" if request.quantity <= 0 else "Cart updated"
    return {"message": message, "cart": calculate_totals(cart)}


@cart_router.delete("/items/{product_id}")
def remove_cart_item(
    product_id: str,
    identity: Identity = Depends(verify_token),
    store: CartStore = Depends(get_cart_store),
):
    cart = store.remove_item(identity.id, product_id)
    return {"message": "Product removed from cart", "cart": calculate_totals(cart)}


@cart_router.delete("")
def clear_cart(identity: Identity = Depends(verify_token), store: CartStore = Depends(get_cart_store)):
    store.clear(identity.id)
    return {"message": "Cart cleared"}


@order_router.get("/my-orders")
def my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    identity: Identity = Depends(verify_token),
    db: Session = Depends(get_db),
):
    rows, total = orders.list_orders(db, owner_id=identity.id, status=status, page=page, limit=limit)
    return {"orders": [serialize_order(o) for o in rows], "pagination": pagination(total, page, limit)}


@order_router.get("/my-orders/{order_number}")
def my_order(order_number: str, identity: Identity = Depends(verify_token), db: Session = Depends(get_db)):
    order = orders.get_order(db, order_number, owner_id=identity.id)
    return {"order": serialize_order(order)}


@order_router.post("", status_code=201)
def create_order(
    request: CreateOrderRequest,
    identity: Identity = Depends(verify_token),
    store: CartStore = Depends(get_cart_store),
    db: Session = Depends(get_db),
):
    order = orders.create_order(db, identity, store, request.shipping_address, request.notes)
    return {"message": "Order created", "order": serialize_order(order)}


@order_router.put("/{order_number}/cancel")
def cancel_order(order_number: str, identity: Identity = Depends(verify_token), db: Session = Depends(get_db)):
    order = orders.cancel_order(db, identity, order_number)
    return {"message": "Order cancelled", "order": serialize_order(order)}


@order_router.get("")
def all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = orders.list_orders(db, status=status, page=page, limit=limit)
    return {"orders": [serialize_order(o) for o in rows], "pagination": pagination(total, page, limit)}


@order_router.put("/{order_number}/status")
def update_order_status(
    order_number: str,
    request: UpdateStatusRequest,
    admin: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    order = orders.update_order_status(db, order_number, request.status)
    return {"message": "Order status updated", "order": serialize_order(order)}


@payment_router.post("/webhook")
async def gateway_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    # Raw bytes: the signature covers the body exactly as sent.
    payload = await request.body()
    # Sync ORM work, possibly waiting on the SQLite write lock, stays off the event loop.
    return await run_in_threadpool(payments.handle_gateway_event, db, payload, stripe_signature)


@payment_router.get("/success")
def payment_success(session_id: str, order_number: str):
    return payments.confirm_checkout_success(session_id, order_number)


@payment_router.get("/cancel")
def payment_cancel(order_number: Optional[str] = None):
    return {"success": False, "message": "Payment cancelled", "orderNumber": order_number}


@payment_router.post("/create-checkout-session")
def create_checkout_session(
    request: CheckoutSessionRequest,
    identity: Identity = Depends(verify_token),
    db: Session = Depends(get_db),
):
    return payments.create_checkout_session(db, identity, request.order_id)


@payment_router.get("/status/{order_id}")
def payment_status(order_id: str, identity: Identity = Depends(verify_token), db: Session = Depends(get_db)):
    return payments.get_payment_status(db, identity, order_id)
