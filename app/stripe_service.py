import json

import stripe

from app.config import (
    frontend_url,
    payment_currency,
    stripe_secret_key,
    stripe_webhook_secret,
    stripe_webhook_tolerance,
)
from app.errors import InvalidInput, InvalidSignature
from app.helpers import to_money


def _configure():
    stripe.api_key = stripe_secret_key()


def to_minor_units(amount) -> int:
    return int((to_money(amount) * 100).to_integral_value())


def price_line(name: str, unit_amount, quantity: int, images=None) -> dict:
    product_data = {"name": name}
    if images:
        product_data["images"] = list(images[:1])
    return {
        "price_data": {
            "currency": payment_currency(),
            "product_data": product_data,
            "unit_amount": to_minor_units(unit_amount),
        },
        "quantity": quantity,
    }


def create_checkout_session(line_items, metadata: dict, order_number: str, customer_email=None, idempotency_key=None):
    _configure()
    base_url = frontend_url()
    params = {
        "payment_method_types": ["card"],
        "line_items": line_items,
        "mode": "payment",
        "success_url": f"{base_url}/payments/success?session_id={{CHECKOUT_SESSION_ID}}&order_number={order_number}",
        "cancel_url": f"{base_url}/payments/cancel?order_number={order_number}",
        "metadata": metadata,
        "payment_intent_data": {"metadata": metadata},
    }
    if customer_email:
        params["customer_email"] = customer_email
    if idempotency_key:
        params["idempotency_key"] = idempotency_key
    return stripe.checkout.Session.create(**params)


def retrieve_checkout_session(session_id: str):
    _configure()
    return stripe.checkout.Session.retrieve(session_id)


def parse_webhook(payload: bytes, signature) -> dict:
    """Verify the signature over the raw body, then decode it.

    Nothing is parsed until the signature has been checked.
    """
    secret = stripe_webhook_secret()
    if not signature or not secret:
        raise InvalidSignature("Invalid signature")

    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidSignature("Invalid signature")

    try:
        stripe.WebhookSignature.verify_header(text, signature, secret, stripe_webhook_tolerance())
    except stripe.SignatureVerificationError:
        raise InvalidSignature("Invalid signature")

    try:
        event = json.loads(text)
    except ValueError:
        raise InvalidInput("Invalid payload")
    if not isinstance(event, dict):
        raise InvalidInput("Invalid payload")

    data = event.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise InvalidInput("Invalid payload", eventId=event.get("id"))
    return event
