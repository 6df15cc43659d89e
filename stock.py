"""Per-size stock counters stored on product documents.

Every mutation is a single atomic update on one product document. Nothing
here spans products; callers that touch several products (order creation,
cancellation) compensate on failure themselves.
"""

from typing import Dict

import structlog
from pymongo import ReturnDocument
from pymongo.database import Database

from database import PRODUCTS, now, to_object_id
from errors import InsufficientStockError, NotFoundError, ValidationError
from schemas import check_size_label

logger = structlog.get_logger(__name__)


def _size_path(size: str) -> str:
    try:
        return f"sizes.{check_size_label(size)}"
    except ValueError as e:
        raise ValidationError(str(e)) from e


def available(product: dict, size: str) -> int:
    """Quantity in stock for a size, 0 when the size isn't listed."""
    return int((product.get("sizes") or {}).get(str(size), 0) or 0)


def find_product(db: Database, product_id) -> dict:
    oid = to_object_id(product_id)
    product = db[PRODUCTS].find_one({"_id": oid}) if oid else None
    if not product:
        raise NotFoundError("Product", str(product_id))
    return product


def decrement(db: Database, product_id, size: str, qty: int) -> dict:
    """Take qty units of a size out of stock.

    The quantity check and the decrement are one conditional update, so two
    concurrent callers can never drive a counter below zero.
    """
    if qty < 1:
        raise ValidationError("Quantity must be at least 1")
    path = _size_path(size)
    oid = to_object_id(product_id)
    updated = None
    if oid is not None:
        updated = db[PRODUCTS].find_one_and_update(
            {"_id": oid, path: {"$gte": qty}},
            {"$inc": {path: -qty}, "$set": {"updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        # Either the product is gone or the size can't cover qty
        product = find_product(db, product_id)
        raise InsufficientStockError(product.get("name", str(product_id)), str(size), str(product_id))
    logger.debug("stock.decremented", product_id=str(product_id), size=str(size), quantity=qty,
                 remaining=available(updated, size))
    return updated


def increment(db: Database, product_id, size: str, qty: int) -> dict:
    """Put qty units of a size back in stock, creating the size entry if needed."""
    if qty < 0:
        raise ValidationError("Quantity must not be negative")
    path = _size_path(size)
    oid = to_object_id(product_id)
    updated = None
    if oid is not None:
        updated = db[PRODUCTS].find_one_and_update(
            {"_id": oid},
            {"$inc": {path: qty}, "$set": {"updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        raise NotFoundError("Product", str(product_id))
    logger.debug("stock.incremented", product_id=str(product_id), size=str(size), quantity=qty,
                 remaining=available(updated, size))
    return updated


def restock(db: Database, product_id, sizes: Dict[str, int]) -> dict:
    """Add stock for several sizes of one product in a single update."""
    if not sizes:
        raise ValidationError("No sizes to restock")
    increments = {}
    for size, quantity in sizes.items():
        quantity = int(quantity)
        if quantity < 0:
            raise ValidationError(f"Restock quantity for size {size} must not be negative")
        increments[_size_path(size)] = quantity

    oid = to_object_id(product_id)
    updated = None
    if oid is not None:
        updated = db[PRODUCTS].find_one_and_update(
            {"_id": oid},
            {"$inc": increments, "$set": {"updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        raise NotFoundError("Product", str(product_id))
    logger.info("stock.restocked", product_id=str(product_id), sizes=dict(sizes))
    return updated
