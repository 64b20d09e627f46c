"""
Order lifecycle.

    PENDING -> CONFIRMED -> PROCESSING -> SHIPPED -> OUT_FOR_DELIVERY -> DELIVERED
    PENDING | CONFIRMED -> CANCELLED -> REFUNDED

Customers may cancel a CONFIRMED order within CANCELLATION_WINDOW_HOURS of its
confirmation; a CANCELLATION_FEE_RATE share of the total is kept. Every status
change appends an ordertracking entry, and those entries are never edited.

Each order carries an ``inventory_state``: "reserved" while its stock is held
for payment, "committed" once sold, "released" once handed back.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

import config
import inventory
from database import create_document, find_by_id, serialize, utcnow
from errors import InvalidOrderState, NotFound, ValidationError, WindowExpired
from logger import get_logger
from schemas import OrderStatus, OrderTracking, PaymentStatus

logger = get_logger("orders")

ACTIVE_STATUSES = [
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.OUT_FOR_DELIVERY.value,
]

TRANSITIONS = {
    OrderStatus.PENDING.value: {OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value},
    OrderStatus.CONFIRMED.value: {OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value},
    OrderStatus.PROCESSING.value: {OrderStatus.SHIPPED.value},
    OrderStatus.SHIPPED.value: {OrderStatus.OUT_FOR_DELIVERY.value, OrderStatus.DELIVERED.value},
    OrderStatus.OUT_FOR_DELIVERY.value: {OrderStatus.DELIVERED.value},
    OrderStatus.CANCELLED.value: {OrderStatus.REFUNDED.value},
    OrderStatus.DELIVERED.value: set(),
    OrderStatus.REFUNDED.value: set(),
}

DEFAULT_MESSAGES = {
    OrderStatus.CONFIRMED.value: "Order confirmed",
    OrderStatus.PROCESSING.value: "Order is being processed",
    OrderStatus.SHIPPED.value: "Order shipped",
    OrderStatus.OUT_FOR_DELIVERY.value: "Order is out for delivery",
    OrderStatus.DELIVERED.value: "Order delivered",
    OrderStatus.CANCELLED.value: "Order cancelled",
    OrderStatus.REFUNDED.value: "Refund processed",
}


def append_tracking(db: Database, order_id: str, status: str, message: str, at: datetime = None) -> str:
    doc = OrderTracking(order_id=order_id, status=status, message=message).model_dump()
    if at is not None:
        doc["created_at"] = at
    return create_document(db, "ordertracking", doc)


def tracking_for(db: Database, order_id: str) -> List[Dict[str, Any]]:
    cursor = db["ordertracking"].find({"order_id": order_id}).sort([("created_at", 1), ("_id", 1)])
    return [serialize(t) for t in cursor]


def confirmed_at(db: Database, order: Dict[str, Any]) -> datetime:
    """When the order was confirmed: the first CONFIRMED tracking entry, else its last update."""
    entry = db["ordertracking"].find_one(
        {"order_id": str(order["_id"]), "status": OrderStatus.CONFIRMED.value},
        sort=[("created_at", 1), ("_id", 1)],
    )
    if entry:
        return entry["created_at"]
    return order.get("updated_at") or order["created_at"]


def refund_amount(total: float, fee_rate: float = None) -> float:
    rate = config.CANCELLATION_FEE_RATE if fee_rate is None else fee_rate
    refund = Decimal(str(total)) * (Decimal("1") - Decimal(str(rate)))
    return float(refund.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _lines(order: Dict[str, Any]):
    return [(item["product_id"], item["quantity"]) for item in order.get("items", [])]


def commit_inventory(db: Database, order: Dict[str, Any]) -> bool:
    """Turn the order's reservation into a sale. Runs at most once per order."""
    result = db["order"].update_one(
        {"_id": order["_id"], "inventory_state": "reserved"},
        {"$set": {"inventory_state": "committed"}},
    )
    if result.modified_count == 0:
        return False
    for product_id, quantity in _lines(order):
        inventory.commit(db, product_id, quantity)
    return True


def return_inventory(db: Database, order: Dict[str, Any]) -> bool:
    """Hand the order's stock back: release a reservation, or restock a sale."""
    for state in ("reserved", "committed"):
        result = db["order"].update_one(
            {"_id": order["_id"], "inventory_state": state},
            {"$set": {"inventory_state": "released"}},
        )
        if result.modified_count == 1:
            for product_id, quantity in _lines(order):
                if state == "reserved":
                    inventory.release(db, product_id, quantity)
                else:
                    inventory.restock(db, product_id, quantity)
            logger.info("Inventory returned for order %s (was %s)", order.get("order_number"), state)
            return True
    return False


def cancel_order(db: Database, user_id: str, order_id: str, reason: str = None,
                 now: datetime = None) -> Dict[str, Any]:
    """
    Customer cancellation of a confirmed order.

    Only a CONFIRMED order may be cancelled and only within the cancellation
    window, measured from confirmation. The refund is the total less the
    cancellation fee, rounded half-up to two decimals.
    """
    order = find_by_id(db, "order", order_id, user_id=user_id)
    if not order:
        raise NotFound("Order not found")
    if order["status"] != OrderStatus.CONFIRMED.value:
        raise InvalidOrderState("Order cannot be cancelled at this stage")

    now = now or utcnow()
    hours = (now - confirmed_at(db, order)).total_seconds() / 3600
    window = config.CANCELLATION_WINDOW_HOURS
    if hours > window:
        raise WindowExpired(
            f"Cancellation window expired. Orders can be cancelled within {window:g} hours of confirmation."
        )

    refund = refund_amount(order["total_amount"])
    fee_pct = config.CANCELLATION_FEE_RATE * 100
    notes = (
        f"Order cancelled by customer. Reason: {reason or 'N/A'}. "
        f"Refund after {fee_pct:g}% deduction: {refund:.2f}."
    )
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": OrderStatus.CONFIRMED.value},
        {"$set": {
            "status": OrderStatus.CANCELLED.value,
            "payment_status": PaymentStatus.REFUNDED.value,
            "refund_amount": refund,
            "notes": notes,
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidOrderState("Order cannot be cancelled at this stage")

    append_tracking(
        db, order_id, OrderStatus.CANCELLED.value,
        f"Order cancelled within {window:g} hours. {fee_pct:g}% fee deducted. Refund: {refund:.2f}.",
        at=now,
    )
    return_inventory(db, updated)
    logger.info("Order %s cancelled by user_id=%s refund=%.2f", updated["order_number"], user_id, refund)
    return {
        "order": serialize(find_by_id(db, "order", order_id)),
        "refund_amount": refund,
        "deduction_rate": config.CANCELLATION_FEE_RATE,
    }


def _paginate(db: Database, filt: Dict[str, Any], page: int, limit: int):
    total = db["order"].count_documents(filt)
    cursor = db["order"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit if limit else 0,
    }
    return list(cursor), pagination


def list_orders(db: Database, user_id: str, page: int = 1, limit: int = 10,
                status: Optional[str] = None) -> Dict[str, Any]:
    filt: Dict[str, Any] = {"user_id": user_id}
    if status:
        filt["status"] = status
    docs, pagination = _paginate(db, filt, page, limit)
    return {"orders": [serialize(o) for o in docs], "pagination": pagination}


def get_order(db: Database, user_id: str, order_id: str) -> Dict[str, Any]:
    order = find_by_id(db, "order", order_id, user_id=user_id)
    if not order:
        raise NotFound("Order not found")
    out = serialize(order)
    out["tracking"] = tracking_for(db, order_id)
    out["shipping_address"] = serialize(find_by_id(db, "address", order.get("shipping_address_id")))
    out["payments"] = [serialize(p) for p in db["payment"].find({"order_id": order_id}).sort("created_at", 1)]
    return out


# Admin

def list_all_orders(db: Database, status: Optional[str] = None, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if status:
        filt["status"] = status
    docs, pagination = _paginate(db, filt, page, limit)
    out = []
    for order in docs:
        item = serialize(order)
        user = find_by_id(db, "user", order["user_id"])
        item["user"] = {"name": user.get("name"), "email": user.get("email")} if user else None
        out.append(item)
    return {"orders": out, "pagination": pagination}


def update_status(db: Database, order_id: str, status: str, message: str = None) -> Dict[str, Any]:
    order = find_by_id(db, "order", order_id)
    if not order:
        raise NotFound("Order not found")
    current = order["status"]
    if status not in TRANSITIONS:
        raise ValidationError(f"Unknown order status {status}")
    if status not in TRANSITIONS[current]:
        raise InvalidOrderState(f"Cannot change order status from {current} to {status}")

    update: Dict[str, Any] = {"status": status, "updated_at": utcnow()}
    if status == OrderStatus.REFUNDED.value:
        update["payment_status"] = PaymentStatus.REFUNDED.value
    result = db["order"].update_one({"_id": order["_id"], "status": current}, {"$set": update})
    if result.modified_count == 0:
        raise InvalidOrderState("Order status changed concurrently, please retry")

    append_tracking(db, order_id, status, message or DEFAULT_MESSAGES.get(status, status))
    if status == OrderStatus.CONFIRMED.value:
        commit_inventory(db, order)
    elif status == OrderStatus.CANCELLED.value:
        return_inventory(db, order)
    logger.info("Order %s status %s -> %s", order["order_number"], current, status)
    return serialize(find_by_id(db, "order", order_id))


def has_active_orders(db: Database, **filt: Any) -> bool:
    return db["order"].count_documents({"status": {"$in": ACTIVE_STATUSES}, **filt}) > 0
