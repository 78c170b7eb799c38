from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.helpers import format_money

OrderStatus = Literal["pending", "paid", "processing", "shipped", "delivered", "cancelled", "refunded"]


class AddCartItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId", min_length=1)
    quantity: int = 1


class UpdateCartItemRequest(BaseModel):
    quantity: int


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shipping_address: Optional[dict] = Field(default=None, alias="shippingAddress")
    notes: Optional[str] = None


class UpdateStatusRequest(BaseModel):
    status: OrderStatus


class CheckoutSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)


def _iso(value):
    return value.isoformat() if value else None


def serialize_product(product) -> Optional[dict]:
    if product is None:
        return None
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "images": list(product.images or []),
    }


def serialize_order_item(item) -> dict:
    return {
        "id": item.id,
        "productId": item.product_id,
        "quantity": item.quantity,
        "unitPrice": format_money(item.unit_price),
        "subtotal": format_money(item.subtotal),
        "product": serialize_product(item.product),
    }


def serialize_order(order) -> dict:
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "ownerId": order.owner_id,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "shippingAddress": order.shipping_address,
        "notes": order.notes,
        "subtotal": format_money(order.subtotal),
        "shippingCost": format_money(order.shipping_cost),
        "tax": format_money(order.tax),
        "total": format_money(order.total),
        "paymentMethod": order.payment_method,
        "gatewaySessionId": order.gateway_session_id,
        "gatewayPaymentId": order.gateway_payment_id,
        "paidAt": _iso(order.paid_at),
        "createdAt": _iso(order.created_at),
        "updatedAt": _iso(order.updated_at),
        "items": [serialize_order_item(i) for i in order.items],
    }


def pagination(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": (total + limit - 1) // limit,
    }
