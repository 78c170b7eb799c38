class ShopError(Exception):
    status_code = 500
    kind = "internal_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, **self.details}


class InvalidInput(ShopError):
    status_code = 400
    kind = "invalid_input"


class EmptyCart(InvalidInput):
    kind = "empty_cart"


class NotFound(ShopError):
    status_code = 404
    kind = "not_found"


class Conflict(ShopError):
    status_code = 409
    kind = "conflict"


class InvalidStateTransition(ShopError):
    status_code = 400
    kind = "invalid_state_transition"


class InvalidOrderState(InvalidStateTransition):
    kind = "invalid_order_state"


class InsufficientStock(ShopError):
    status_code = 400
    kind = "insufficient_stock"

    def __init__(self, product_id: str, name: str, requested: int, available: int):
        super().__init__(
            f'Insufficient stock for "{name}": requested {requested}, available {available}',
            productId=product_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ProductUnavailable(ShopError):
    status_code = 400
    kind = "product_unavailable"


class InvalidSignature(ShopError):
    status_code = 400
    kind = "invalid_signature"


class Unauthorized(ShopError):
    status_code = 401
    kind = "unauthorized"


class Forbidden(ShopError):
    status_code = 403
    kind = "forbidden"
