"""Cart failures, mapped onto the shared error taxonomy."""
from __future__ import annotations

from services.shared.errors import (
    BadRequestError,
    ConcurrencyError,
    NotFoundError,
    ValidationError,
)


class CartNotFoundError(NotFoundError):
    code = "CART_NOT_FOUND"

    def __init__(self, message: str = "Cart not found") -> None:
        super().__init__(message)


class CartItemNotFoundError(NotFoundError):
    code = "CART_ITEM_NOT_FOUND"

    def __init__(self, message: str = "Cart item not found") -> None:
        super().__init__(message)


class CartValidationError(ValidationError):
    code = "CART_VALIDATION_FAILED"


class CartConcurrencyError(ConcurrencyError):
    code = "CART_CONFLICT"

    def __init__(self, message: str = "Cart update conflicted, please retry") -> None:
        super().__init__(message)


class CartCheckoutError(BadRequestError):
    code = "CART_CHECKOUT_FAILED"
