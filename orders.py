"""Order lifecycle: placing orders, status changes and cancellation.

Stock moves together with the order status:
- placing an order takes stock out, size by size, before the order is saved
- cancelling puts it back before the order is marked Cancelled

Cancelled is terminal. The other statuses can be set in any order by an
admin; there is no forward-only progression.
"""

from typing import Iterable, List, Optional

import structlog
from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

import stock
from auth import CurrentUser
from database import ORDERS, USERS, create_document, get_documents, now, serialize_document, to_object_id
from errors import (
    ForbiddenError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from schemas import (
    CANCELLABLE_STATUSES,
    CANCELLED,
    ORDER_STATUSES,
    STATUS_TIMESTAMPS,
    Order,
    OrderItem,
)

logger = structlog.get_logger(__name__)

# Statuses an admin may cancel from; users are limited to CANCELLABLE_STATUSES
ACTIVE_STATUSES = tuple(s for s in ORDER_STATUSES if s != CANCELLED)


def _find_order(db: Database, order_id) -> dict:
    oid = to_object_id(order_id)
    order = db[ORDERS].find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFoundError("Order", str(order_id))
    return order


def _check_access(order: dict, actor: CurrentUser) -> None:
    if not actor.is_admin and order.get("user") != actor.id:
        raise ForbiddenError("Not authorized to access this order")


def _with_owners(db: Database, orders: List[dict]) -> List[dict]:
    """Embed {id, username} of each order's owner in place of the bare id."""
    owner_ids = {to_object_id(o.get("user")) for o in orders} - {None}
    owners = {}
    if owner_ids:
        for user in db[USERS].find({"_id": {"$in": list(owner_ids)}}, {"username": 1}):
            owners[str(user["_id"])] = {"id": str(user["_id"]), "username": user.get("username")}
    result = []
    for order in orders:
        order = serialize_document(order)
        user_id = order.get("user")
        order["user"] = owners.get(user_id, {"id": user_id, "username": None})
        result.append(order)
    return result


def _restore_stock(db: Database, items: Iterable[dict], order_id=None) -> List[dict]:
    """Put each line item's quantity back; returns the items actually restored."""
    restored = []
    for item in items:
        try:
            stock.increment(db, item["product"], item["size"], item["quantity"])
        except NotFoundError:
            logger.warning("stock.restore_skipped", order_id=str(order_id), product_id=item["product"],
                           reason="product deleted")
            continue
        restored.append(item)
    return restored


def _take_stock_back(db: Database, items: Iterable[dict], order_id=None) -> None:
    """Undo a restore whose order write did not go through."""
    for item in items:
        try:
            stock.decrement(db, item["product"], item["size"], item["quantity"])
        except (InsufficientStockError, NotFoundError) as e:
            logger.error("stock.compensation_failed", order_id=str(order_id), product_id=item["product"],
                         size=item["size"], quantity=item["quantity"], error=str(e))


def create_order(
    db: Database,
    user_id: str,
    order_items: Optional[list],
    shipping_address,
    payment_method: Optional[str] = None,
    payment_details=None,
) -> dict:
    """Place an order for user_id and take its items out of stock.

    Runs in two passes over the items. The first only reads and fails on the
    first product that is missing or short. The second takes stock with
    conditional decrements; if one of them loses a race against another
    order, what this call already took is put back and the call fails. The
    order itself is written last, so a failure never leaves an order without
    its stock.

    total_price is computed from the prices on the submitted items.
    """
    if not order_items:
        raise ValidationError("No order items found")

    try:
        items = [i if isinstance(i, OrderItem) else OrderItem.model_validate(i) for i in order_items]
    except SchemaError as e:
        raise ValidationError(f"Invalid order items: {e.errors()[0]['msg']}") from e

    # Check stock availability
    for item in items:
        product = stock.find_product(db, item.product)
        if stock.available(product, item.size) < item.quantity:
            raise InsufficientStockError(product.get("name", item.product), item.size, item.product)

    details = payment_details.model_dump() if hasattr(payment_details, "model_dump") else dict(payment_details or {})
    if payment_method and not details.get("method"):
        details["method"] = payment_method

    try:
        order = Order(
            user=str(user_id),
            order_items=items,
            shipping_address=shipping_address,
            payment_details=details,
        )
    except SchemaError as e:
        raise ValidationError(f"Invalid order: {e.errors()[0]['msg']}") from e

    taken = []
    try:
        for item in items:
            stock.decrement(db, item.product, item.size, item.quantity)
            taken.append(item.model_dump())
    except (InsufficientStockError, NotFoundError):
        logger.warning("order.stock_race_lost", user_id=str(user_id), restored=len(taken))
        _restore_stock(db, taken)
        raise
    except PyMongoError:
        logger.error("order.stock_write_failed", user_id=str(user_id), restored=len(taken))
        _restore_stock(db, taken)
        raise

    try:
        order_id = create_document(db, ORDERS, order.model_dump())
    except PyMongoError:
        _restore_stock(db, taken)
        raise

    logger.info("order.created", order_id=order_id, user_id=str(user_id), items=len(items),
                total_price=order.total_price)
    return serialize_document(_find_order(db, order_id))


def transition_order(db: Database, order_id, new_status: str, actor: CurrentUser) -> dict:
    """Set an order's status (admin).

    Entering Confirmed/Shipped/Delivered stamps the matching *_at field.
    Setting the status the order already has changes nothing. Cancelling
    this way restores stock like a user cancellation, from any status.
    """
    _find_order(db, order_id)
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid order status: {new_status}")

    if new_status == CANCELLED:
        return _cancel(db, order_id, actor, ACTIVE_STATUSES, "Cannot update a cancelled order")

    timestamp = now()
    changes = {"order_status": new_status, "updated_at": timestamp}
    stamp_field = STATUS_TIMESTAMPS.get(new_status)
    if stamp_field:
        changes[stamp_field] = timestamp

    oid = to_object_id(order_id)
    updated = None
    if oid is not None:
        # Cancelled is re-checked by the write itself
        updated = db[ORDERS].find_one_and_update(
            {"_id": oid, "order_status": {"$nin": [CANCELLED, new_status]}},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        order = _find_order(db, order_id)
        if order.get("order_status") == CANCELLED:
            raise InvalidStateError("Cannot update a cancelled order", CANCELLED)
        return serialize_document(order)

    logger.info("order.status_changed", order_id=str(order_id), status=new_status, actor=actor.id)
    return serialize_document(updated)


def cancel_order(db: Database, order_id, actor: CurrentUser) -> dict:
    """Cancel a Pending or Confirmed order and return its items to stock."""
    return _cancel(db, order_id, actor, CANCELLABLE_STATUSES, "Order cannot be cancelled at this stage")


def _cancel(db: Database, order_id, actor: CurrentUser, allowed_from: tuple, refusal: str) -> dict:
    order = _find_order(db, order_id)
    _check_access(order, actor)

    status = order.get("order_status")
    if status not in allowed_from:
        raise InvalidStateError(refusal, status)

    # Stock first: a crash before the status write leaves the order
    # cancellable with its stock already back, never Cancelled without it.
    restored = _restore_stock(db, order.get("order_items", []), order["_id"])

    timestamp = now()
    updated = db[ORDERS].find_one_and_update(
        {"_id": order["_id"], "order_status": {"$in": list(allowed_from)}},
        {"$set": {"order_status": CANCELLED, "cancelled_at": timestamp, "updated_at": timestamp}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # Status changed under us (concurrent cancel or transition)
        _take_stock_back(db, restored, order["_id"])
        raise InvalidStateError(refusal)

    logger.info("order.cancelled", order_id=str(order["_id"]), previous_status=status, actor=actor.id,
                items_restored=len(restored))
    return serialize_document(updated)


def list_orders(db: Database) -> List[dict]:
    orders = get_documents(db, ORDERS, newest_first=True)
    return _with_owners(db, orders)


def list_user_orders(db: Database, user_id: str) -> List[dict]:
    orders = get_documents(db, ORDERS, {"user": str(user_id)}, newest_first=True)
    if not orders:
        raise NotFoundError("Order", message="No orders found for this user")
    return [serialize_document(o) for o in orders]


def get_order(db: Database, order_id, actor: CurrentUser) -> dict:
    order = _find_order(db, order_id)
    _check_access(order, actor)
    return _with_owners(db, [order])[0]


def delete_order(db: Database, order_id) -> None:
    order = _find_order(db, order_id)
    db[ORDERS].delete_one({"_id": order["_id"]})
    logger.info("order.deleted", order_id=str(order["_id"]), status=order.get("order_status"))
