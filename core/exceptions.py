"""Domain errors for order placement, stock and order status.

Services raise these internally and convert them into result objects and a
notification at their boundary; routes only ever see the results.
"""
from typing import Iterable


class StorefrontError(Exception):
    """Base class for every failure the storefront reports to a caller."""

    code = "storefront_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class EmptyCart(StorefrontError):
    code = "empty_cart"

    def __init__(self):
        super().__init__("Order must contain items")


class StockShortfall(StorefrontError):
    """One or more cart lines cannot be fulfilled from current stock."""

    code = "stock_shortfall"

    def __init__(self, item_names: Iterable[str]):
        self.item_names = list(item_names)
        super().__init__(f"Insufficient stock for: {', '.join(self.item_names)}")


class PaymentMethodNotAllowed(StorefrontError):
    code = "payment_method_not_allowed"

    def __init__(self, method: str, categories: Iterable[str]):
        self.method = method
        self.categories = sorted(set(categories))
        super().__init__(
            f"Payment method '{method}' is not available for: {', '.join(self.categories)}. "
            "Please pay by bank transfer"
        )


class PersistenceFailure(StorefrontError):
    """The store rejected a call; `detail` carries the store's own message."""

    code = "persistence_failure"

    def __init__(self, step: str, detail: str):
        self.step = step
        self.detail = detail
        super().__init__(f"Could not {step}: {detail}")


class StoreTimeout(StorefrontError):
    code = "timeout"

    def __init__(self, operation: str, seconds: float):
        self.operation = operation
        self.seconds = seconds
        super().__init__(f"Timed out after {seconds:g}s while trying to {operation}")


class OrderNotFound(StorefrontError):
    code = "not_found"

    def __init__(self, reference):
        self.reference = reference
        super().__init__("Order not found")


class IllegalStatusTransition(StorefrontError):
    code = "illegal_transition"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change order status from {current} to {requested}")


# HTTP status for each error code, used by the routes and the app-level handler
HTTP_STATUS_BY_CODE = {
    EmptyCart.code: 400,
    PaymentMethodNotAllowed.code: 400,
    "invalid_status": 400,
    "invalid_quantity": 400,
    OrderNotFound.code: 404,
    StockShortfall.code: 409,
    IllegalStatusTransition.code: 409,
    PersistenceFailure.code: 500,
    StoreTimeout.code: 504,
}


def http_status_for(code: str | None) -> int:
    return HTTP_STATUS_BY_CODE.get(code, 500)
