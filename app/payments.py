from datetime import datetime, timezone

import stripe
import structlog
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app import orders, stripe_service
from app.config import cancel_on_payment_failure
from app.errors import InvalidInput, InvalidOrderState, NotFound
from app.helpers import format_money
from app.models import Order, OrderItem

logger = structlog.get_logger(__name__)


def _owned_order(db, identity, order_id: str) -> Order:
    order = db.scalar(
        select(Order)
        .where(Order.id == order_id, Order.owner_id == identity.id)
        .options(selectinload(Order.items).selectinload(OrderItem.product))
    )
    if order is None:
        raise NotFound("Order not found", orderId=order_id)
    return order


def _locked_order(db, *criteria):
    return db.scalar(
        select(Order).where(*criteria).with_for_update().execution_options(populate_existing=True)
    )


def build_line_items(order: Order) -> list:
    line_items = [
        stripe_service.price_line(item.product.name, item.unit_price, item.quantity, item.product.images)
        for item in order.items
    ]
    if order.shipping_cost and order.shipping_cost > 0:
        line_items.append(stripe_service.price_line("Shipping", order.shipping_cost, 1))
    if order.tax and order.tax > 0:
        line_items.append(stripe_service.price_line("Tax", order.tax, 1))
    return line_items


def _open_session(session_id: str):
    try:
        session = stripe_service.retrieve_checkout_session(session_id)
    except stripe.StripeError as exc:
        # An expired or unknown session just means we need a new one.
        logger.info("Previous checkout session unavailable", session_id=session_id, error=str(exc))
        return None
    if getattr(session, "status", None) != "open":
        return None
    return session


def create_checkout_session(db, identity, order_id: str) -> dict:
    order = _owned_order(db, identity, order_id)
    if order.status != "pending":
        raise InvalidOrderState(
            f'Cannot take payment for an order with status "{order.status}"',
            status=order.status,
        )

    previous_session_id = order.gateway_session_id
    if previous_session_id:
        existing = _open_session(previous_session_id)
        if existing is not None:
            logger.info("Reusing open checkout session", order_number=order.order_number, session_id=existing.id)
            return {"sessionId": existing.id, "url": existing.url}

    metadata = {"orderId": order.id, "orderNumber": order.order_number, "userId": identity.id}
    session = stripe_service.create_checkout_session(
        build_line_items(order),
        metadata=metadata,
        order_number=order.order_number,
        customer_email=identity.email,
        idempotency_key=f"checkout-{order.id}-{previous_session_id or 'initial'}",
    )

    try:
        order.gateway_session_id = session.id
        order.payment_method = "stripe"
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Checkout session created", order_number=metadata["orderNumber"], session_id=session.id)
    return {"sessionId": session.id, "url": session.url}


def _on_session_completed(db, session: dict) -> None:
    order_id = (session.get("metadata") or {}).get("orderId")
    order = _locked_order(db, Order.id == order_id) if order_id else None
    if order is None:
        logger.warning("Completed session has no matching order", session_id=session.get("id"), order_id=order_id)
        return

    if order.status == "paid":
        logger.info("Order already paid, ignoring replay", order_number=order.order_number)
        return
    if order.status != "pending":
        logger.warning(
            "Payment completed for an order that is no longer pending",
            order_number=order.order_number,
            status=order.status,
            session_id=session.get("id"),
        )
        return

    order.status = "paid"
    order.payment_status = "completed"
    order.gateway_payment_id = session.get("payment_intent")
    order.paid_at = datetime.now(timezone.utc)
    if not order.gateway_session_id:
        order.gateway_session_id = session.get("id")
    logger.info("Payment completed", order_number=order.order_number)


def _on_payment_succeeded(db, intent: dict) -> None:
    logger.info("Payment intent succeeded", payment_id=intent.get("id"))


def _on_payment_failed(db, intent: dict) -> None:
    payment_id = intent.get("id")
    order = _locked_order(db, Order.gateway_payment_id == payment_id) if payment_id else None
    if order is None:
        order_id = (intent.get("metadata") or {}).get("orderId")
        order = _locked_order(db, Order.id == order_id) if order_id else None
    if order is None:
        logger.warning("Failed payment has no matching order", payment_id=payment_id)
        return

    if order.payment_status == "completed":
        logger.warning("Ignoring failure for a settled payment", order_number=order.order_number, payment_id=payment_id)
        return

    order.payment_status = "failed"
    if not order.gateway_payment_id:
        order.gateway_payment_id = payment_id
    logger.info("Payment failed", order_number=order.order_number, payment_id=payment_id)

    if cancel_on_payment_failure() and order.status == "pending":
        orders.cancel_and_restock(db, order)
        logger.info("Order cancelled after payment failure", order_number=order.order_number)


EVENT_HANDLERS = {
    "checkout.session.completed": _on_session_completed,
    "payment_intent.succeeded": _on_payment_succeeded,
    "payment_intent.payment_failed": _on_payment_failed,
}


def handle_gateway_event(db, payload: bytes, signature) -> dict:
    """Apply one gateway event.

    Signature failures propagate as ``InvalidSignature``. Anything that
    goes wrong after that is logged and acknowledged so the gateway does
    not keep redelivering.
    """
    event = stripe_service.parse_webhook(payload, signature)
    kind = event.get("type")
    obj = event["data"]["object"]

    handler = EVENT_HANDLERS.get(kind)
    if handler is None:
        logger.info("Ignoring unhandled gateway event", event_id=event.get("id"), kind=kind)
        return {"received": True}

    try:
        handler(db, obj)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Gateway event processing failed", event_id=event.get("id"), kind=kind)
    return {"received": True}


def get_payment_status(db, identity, order_id: str) -> dict:
    order = db.scalar(select(Order).where(Order.id == order_id, Order.owner_id == identity.id))
    if order is None:
        raise NotFound("Order not found", orderId=order_id)
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "total": format_money(order.total),
        "paidAt": order.paid_at.isoformat() if order.paid_at else None,
    }


def confirm_checkout_success(session_id: str, order_number: str) -> dict:
    try:
        session = stripe_service.retrieve_checkout_session(session_id)
    except stripe.StripeError:
        raise NotFound("Checkout session not found", sessionId=session_id)

    if session.payment_status != "paid":
        raise InvalidInput("Payment has not been completed", status=session.payment_status)
    return {"success": True, "orderNumber": order_number, "sessionId": session_id}
