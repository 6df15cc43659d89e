"""Custom exceptions for the storefront API."""

from typing import Optional


class StoreError(Exception):
    """Base exception for all storefront errors."""

    pass


class ValidationError(StoreError):
    """Raised when a request is well-formed but semantically empty or invalid."""

    pass


class NotFoundError(StoreError):
    """Raised when a referenced document doesn't exist."""

    def __init__(self, entity: str, entity_id: Optional[str] = None, message: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(message or f"{entity} not found")


class InsufficientStockError(StoreError):
    """Raised when the requested quantity exceeds what a size has in stock."""

    def __init__(self, product_name: str, size: str, product_id: Optional[str] = None):
        self.product_name = product_name
        self.size = size
        self.product_id = product_id
        super().__init__(f"Not enough stock for {product_name} size {size}")


class InvalidStateError(StoreError):
    """Raised when an order status change is not allowed from its current status."""

    def __init__(self, message: str, status: Optional[str] = None):
        self.status = status
        super().__init__(message)


class UnauthorizedError(StoreError):
    """Raised when a bearer token is missing, invalid or expired."""

    def __init__(self, message: str = "Not authorized, token failed"):
        super().__init__(message)


class ForbiddenError(StoreError):
    """Raised when an authenticated user lacks the rights for an action."""

    def __init__(self, message: str = "Not authorized as an admin"):
        super().__init__(message)


ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    NotFoundError: 404,
    InsufficientStockError: 400,
    InvalidStateError: 400,
    UnauthorizedError: 401,
    ForbiddenError: 403,
}
