import secrets
import string
import time
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
_BASE36 = string.digits + string.ascii_uppercase


def to_money(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 10.005 from picking up binary noise
    return Decimal(str(value))


def round_money(value) -> Decimal:
    return to_money(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value) -> str:
    return str(round_money(value))


def line_subtotal(unit_price, quantity: int) -> Decimal:
    return round_money(to_money(unit_price) * quantity)


def calculate_order_totals(items, shipping_cost=0, tax_rate=0) -> dict:
    """Totals for a list of ``{"unit_price", "quantity"}`` mappings.

    Each line is rounded to cents before it is summed, then tax and the
    grand total are rounded again, so rounding never compounds.
    """
    subtotal = round_money(sum((line_subtotal(i["unit_price"], i["quantity"]) for i in items), Decimal("0")))
    shipping = round_money(shipping_cost)
    tax = round_money(subtotal * to_money(tax_rate))
    total = round_money(subtotal + tax + shipping)
    return {
        "subtotal": subtotal,
        "shipping_cost": shipping,
        "tax": tax,
        "total": total,
    }


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number() -> str:
    timestamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"ORD-{timestamp}-{suffix}"
