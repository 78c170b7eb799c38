"""Order ledger: checkout, cancellation and status changes."""

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from app import catalog
from app.config import allow_cancel_after_payment, order_number_attempts
from app.errors import Conflict, EmptyCart, InvalidInput, InvalidStateTransition, NotFound
from app.helpers import calculate_order_totals, generate_order_number, line_subtotal, round_money
from app.models import ORDER_STATUSES, Order, OrderItem

logger = structlog.get_logger(__name__)

ADDRESS_FIELDS = ("street", "city", "state", "zipCode", "country")


def validate_shipping_address(address) -> dict:
    if not isinstance(address, dict):
        raise InvalidInput("Shipping address is required", fields=list(ADDRESS_FIELDS))

    missing = [f for f in ADDRESS_FIELDS if not str(address.get(f) or "").strip()]
    if missing:
        raise InvalidInput(
            "Shipping address must include: " + ", ".join(ADDRESS_FIELDS),
            missing=missing,
        )
    return dict(address)


def _with_items(query):
    return query.options(selectinload(Order.items).selectinload(OrderItem.product))


def load_order(db, order_id: str) -> Order:
    order = db.scalar(_with_items(select(Order).where(Order.id == order_id)))
    if order is None:
        raise NotFound("Order not found", orderId=order_id)
    return order


def get_order(db, order_number: str, owner_id: str = None, for_update: bool = False) -> Order:
    query = select(Order).where(Order.order_number == order_number)
    if owner_id is not None:
        query = query.where(Order.owner_id == owner_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    else:
        query = _with_items(query)

    order = db.scalar(query)
    if order is None:
        raise NotFound("Order not found", orderNumber=order_number)
    return order


def list_orders(db, owner_id: str = None, status: str = None, page: int = 1, limit: int = 10):
    count_query = select(func.count()).select_from(Order)
    query = _with_items(select(Order))
    if owner_id is not None:
        count_query = count_query.where(Order.owner_id == owner_id)
        query = query.where(Order.owner_id == owner_id)
    if status:
        count_query = count_query.where(Order.status == status)
        query = query.where(Order.status == status)

    total = db.scalar(count_query)
    rows = db.scalars(
        query.order_by(Order.created_at.desc(), Order.order_number.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).all()
    return rows, total


def _price_lines(db, cart_lines):
    lines = []
    # Lock in id order so two carts never wait on each other's rows.
    for product_id, name, quantity in sorted(cart_lines):
        product = catalog.lock_product(db, product_id, name)
        catalog.ensure_stock(product, quantity)
        lines.append(
            {
                "product": product,
                "product_id": product.id,
                "quantity": quantity,
                "unit_price": round_money(product.price),
                "subtotal": line_subtotal(product.price, quantity),
            }
        )
    return lines


def _insert_order(db, owner_id, address, notes, totals, lines) -> Order:
    attempts = order_number_attempts()
    for attempt in range(1, attempts + 1):
        order = Order(
            order_number=generate_order_number(),
            owner_id=owner_id,
            status="pending",
            payment_status="pending",
            shipping_address=address,
            notes=notes,
            **totals,
        )
        order.items = [
            OrderItem(
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price=line["unit_price"],
                subtotal=line["subtotal"],
            )
            for line in lines
        ]
        try:
            with db.begin_nested():
                db.add(order)
            return order
        except IntegrityError:
            logger.warning("Order number collision", order_number=order.order_number, attempt=attempt)

    raise Conflict("Could not allocate a unique order number")


def create_order(db, identity, cart_store, shipping_address, notes=None) -> Order:
    address = validate_shipping_address(shipping_address)

    cart = cart_store.get(identity.id)
    if not cart.items:
        raise EmptyCart("Cart is empty")
    cart_lines = [(i.product_id, i.name, i.quantity) for i in cart.items]

    try:
        lines = _price_lines(db, cart_lines)
        totals = calculate_order_totals(lines)

        for line in lines:
            catalog.reserve_stock(db, line["product"], line["quantity"])

        order = _insert_order(db, identity.id, address, notes, totals, lines)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Order created",
        order_number=order.order_number,
        owner_id=identity.id,
        total=str(order.total),
        item_count=len(cart_lines),
    )

    try:
        purchased = {product_id: quantity for product_id, _, quantity in cart_lines}
        cart_store.discard_purchased(identity.id, purchased)
    except Exception:
        logger.exception("Cart clear failed after order commit", owner_id=identity.id, order_number=order.order_number)

    return load_order(db, order.id)


def cancellable_statuses():
    if allow_cancel_after_payment():
        return ("pending", "paid")
    return ("pending",)


def cancel_and_restock(db, order: Order) -> None:
    """Release the order's reservation and mark it cancelled.

    Must run in the same transaction as the caller's status checks.
    """
    catalog.restore_stock(db, order.items)
    order.status = "cancelled"


def cancel_order(db, identity, order_number: str) -> Order:
    try:
        order = get_order(db, order_number, owner_id=identity.id, for_update=True)
        if order.status not in cancellable_statuses():
            raise InvalidStateTransition(
                f'Cannot cancel an order with status "{order.status}"',
                status=order.status,
            )
        cancel_and_restock(db, order)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Order cancelled", order_number=order_number, owner_id=identity.id)
    return load_order(db, order.id)


def update_order_status(db, order_number: str, status: str) -> Order:
    if status not in ORDER_STATUSES:
        raise InvalidInput("Invalid order status", allowed=list(ORDER_STATUSES))

    try:
        order = get_order(db, order_number, for_update=True)
        previous = order.status
        if previous == status:
            db.rollback()
            return load_order(db, order.id)

        if previous == "cancelled":
            raise InvalidStateTransition(
                "A cancelled order cannot be reopened; its stock was already released",
                status=previous,
            )

        if status == "cancelled":
            cancel_and_restock(db, order)
        else:
            order.status = status
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Order status overridden", order_number=order_number, from_status=previous, to_status=status)
    return load_order(db, order.id)
