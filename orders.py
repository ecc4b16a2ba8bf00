"""
Order assembly and the order status lifecycle.

An order is accepted whole or not at all: every submitted line is validated
before anything is written. Totals are re-derived from the line snapshots with
the cart engine and must agree with the submitted total.

Writes happen in two steps without a multi-document transaction. The order id
is allocated up front, the items are upserted under (order_id, line) and the
order document is inserted last, so an order is never visible without its
items and a retried call with the same order id is harmless.
"""
import logging
from collections import defaultdict
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from bson import ObjectId
from pydantic import ValidationError
from pymongo.database import Database

from cart import CENT, SHIPPING_COST, TAX_RATE, Cart, CartLine, to_money
from database import now, oid, to_public
from errors import InvalidTransition, NotFound, ValidationFailed
from schemas import BankLinkPayment, CardPayment, Order, OrderItem, ShippingInfo

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


def can_transition(current: str, new: str) -> bool:
    try:
        return OrderStatus(new) in TRANSITIONS[OrderStatus(current)]
    except ValueError:
        return False


def validate_items(items: Sequence[Union[OrderItem, Mapping[str, Any]]]) -> Tuple[List[OrderItem], List[dict]]:
    parsed, errors = [], []
    for index, raw in enumerate(items):
        try:
            item = raw if isinstance(raw, OrderItem) else OrderItem.model_validate(raw)
        except ValidationError as exc:
            for err in exc.errors():
                loc = ".".join(str(part) for part in err["loc"])
                errors.append({"field": f"items.{index}.{loc}", "message": err["msg"]})
            continue
        if oid(item.product_id) is None:
            errors.append({"field": f"items.{index}.product_id", "message": "Invalid product id"})
            continue
        parsed.append(item)
    return parsed, errors


def price_items(items: List[OrderItem], tax_rate: Decimal = TAX_RATE,
                shipping_cost: Decimal = SHIPPING_COST) -> Cart:
    lines = [
        CartLine(product_id=i.product_id, name=i.name, price=i.price, quantity=i.quantity, variant=i.variant)
        for i in items
    ]
    return Cart(lines, tax_rate=tax_rate, shipping_cost=shipping_cost)


def create_order(db: Database, user_id: str, shipping: Union[ShippingInfo, Mapping[str, Any]],
                 payment_method: Union[CardPayment, BankLinkPayment], total: Any,
                 items: Sequence[Union[OrderItem, Mapping[str, Any]]],
                 tax_rate: Decimal = TAX_RATE, shipping_cost: Decimal = SHIPPING_COST,
                 order_id: Optional[str] = None) -> dict:
    errors = []
    if not items:
        errors.append({"field": "items", "message": "Order must contain at least one item"})
    if total is None or to_money(total) <= 0:
        errors.append({"field": "total", "message": "Total must be positive"})
    parsed, item_errors = validate_items(items or [])
    errors.extend(item_errors)
    if errors:
        raise ValidationFailed(errors)

    if not isinstance(shipping, ShippingInfo):
        try:
            shipping = ShippingInfo.model_validate(shipping)
        except ValidationError as exc:
            raise ValidationFailed([
                {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]} for e in exc.errors()
            ])

    priced = price_items(parsed, tax_rate, shipping_cost)
    expected = priced.grand_total()
    if abs(to_money(total) - expected) > CENT:
        raise ValidationFailed.single("total", f"Total does not match items, tax and shipping ({expected})")

    order_oid = oid(order_id) if order_id else ObjectId()
    if order_oid is None:
        raise ValidationFailed.single("order_id", "Invalid order id")
    existing = db["order"].find_one({"_id": order_oid})
    if existing is not None:
        if existing.get("user_id") != user_id:
            raise ValidationFailed.single("order_id", "Order id already in use")
        return get_order(db, str(order_oid))

    # lines left by an interrupted attempt may not match this payload
    db["order_item"].delete_many({"order_id": str(order_oid)})
    stamp = now()
    for line, item in enumerate(parsed):
        doc = {**item.model_dump(), "order_id": str(order_oid), "line": line, "created_at": stamp}
        db["order_item"].update_one(
            {"order_id": str(order_oid), "line": line}, {"$setOnInsert": doc}, upsert=True
        )

    order = Order(
        user_id=user_id,
        subtotal=float(priced.subtotal()),
        tax=float(priced.tax()),
        shipping=float(priced.shipping_cost()),
        total=float(expected),
        status=OrderStatus.PENDING.value,
        payment_method=payment_method.stored(),
        created_at=stamp,
        **shipping.model_dump(),
    )
    db["order"].insert_one({"_id": order_oid, **order.model_dump(), "updated_at": stamp})
    logger.info("Order %s created for user %s with %d items, total %s", order_oid, user_id, len(parsed), expected)
    return get_order(db, str(order_oid))


def _items_by_order(db: Database, order_ids: List[str]) -> Dict[str, List[dict]]:
    grouped = defaultdict(list)
    if order_ids:
        cursor = db["order_item"].find({"order_id": {"$in": order_ids}}).sort([("order_id", 1), ("line", 1)])
        for item in cursor:
            grouped[item["order_id"]].append(to_public(item))
    return grouped


def get_order(db: Database, order_id: str) -> Optional[dict]:
    order_oid = oid(order_id)
    if order_oid is None:
        return None
    order = to_public(db["order"].find_one({"_id": order_oid}))
    if order is None:
        return None
    order["items"] = _items_by_order(db, [order["id"]]).get(order["id"], [])
    return order


def list_orders(db: Database, user_id: str) -> List[dict]:
    """The user's orders, newest first, with their items."""
    orders = [to_public(o) for o in db["order"].find({"user_id": user_id}).sort([("created_at", -1), ("_id", -1)])]
    items = _items_by_order(db, [o["id"] for o in orders])
    for order in orders:
        order["items"] = items.get(order["id"], [])
    return orders


def update_order_status(db: Database, order_id: str, new_status: str, payment_id: Optional[str] = None) -> dict:
    try:
        status = OrderStatus(new_status)
    except ValueError:
        raise ValidationFailed.single("status", f"Unknown order status: {new_status}")
    order_oid = oid(order_id)
    order = db["order"].find_one({"_id": order_oid}) if order_oid else None
    if order is None:
        raise NotFound("Order not found")

    current = order.get("status", OrderStatus.PENDING.value)
    if not can_transition(current, status.value):
        raise InvalidTransition(current, status.value)

    update = {"status": status.value, "updated_at": now()}
    if payment_id is not None:
        update["payment_id"] = payment_id
    # status in the filter so a concurrent change cannot be overwritten
    result = db["order"].update_one({"_id": order_oid, "status": current}, {"$set": update})
    if result.modified_count == 0:
        latest = db["order"].find_one({"_id": order_oid}) or {}
        raise InvalidTransition(latest.get("status", current), status.value)
    logger.info("Order %s moved from %s to %s", order_id, current, status.value)
    return get_order(db, order_id)


def cancel_order(db: Database, order_id: str) -> dict:
    return update_order_status(db, order_id, OrderStatus.CANCELLED.value)
