"""
Per-user shopping cart stored as one cartitem document per (user, product).

Every mutation is checked against the inventory ledger's available stock.
"""
from typing import Any, Dict

from pymongo import ReturnDocument
from pymongo.database import Database

import inventory
from catalog import get_active_product, product_card
from database import find_by_id, utcnow
from errors import InsufficientStock, NotFound, ProductUnavailable
from logger import get_logger

logger = get_logger("cart")


def _item_view(db: Database, item: Dict[str, Any], product: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(item["_id"]),
        "user_id": item["user_id"],
        "product_id": item["product_id"],
        "quantity": item["quantity"],
        "created_at": item.get("created_at"),
        "updated_at": item.get("updated_at"),
        "product": product_card(db, product),
    }


def get_cart(db: Database, user_id: str) -> Dict[str, Any]:
    """Cart lines with availability plus money totals. Lines for withdrawn products are hidden."""
    items = []
    summary = {"total_items": 0, "total_amount": 0.0, "total_mrp": 0.0, "total_savings": 0.0}
    for item in db["cartitem"].find({"user_id": user_id}).sort("created_at", 1):
        product = get_active_product(db, item["product_id"])
        if not product:
            continue
        available = inventory.available_stock(inventory.get_inventory(db, item["product_id"]))
        view = _item_view(db, item, product)
        view["available_stock"] = available
        view["in_stock"] = available >= item["quantity"]
        view["max_quantity"] = available
        items.append(view)

        price = view["product"]["price"]
        mrp = view["product"]["mrp"]
        summary["total_items"] += item["quantity"]
        summary["total_amount"] += price * item["quantity"]
        summary["total_mrp"] += mrp * item["quantity"]
    summary["total_savings"] = summary["total_mrp"] - summary["total_amount"]
    summary = {k: round(v, 2) if isinstance(v, float) else v for k, v in summary.items()}
    return {"items": items, "summary": summary}


def add_item(db: Database, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
    product = get_active_product(db, product_id)
    if not product:
        raise NotFound("Product not found or not available")
    available = inventory.available_stock(inventory.get_inventory(db, product_id))
    if quantity > available:
        raise InsufficientStock(available, quantity)

    existing = db["cartitem"].find_one({"user_id": user_id, "product_id": product_id})
    now = utcnow()
    if existing:
        total = existing["quantity"] + quantity
        if total > available:
            raise InsufficientStock(
                available, quantity,
                "Insufficient stock for total quantity",
                current_quantity=existing["quantity"],
                total_quantity=total,
            )
        item = db["cartitem"].find_one_and_update(
            {"_id": existing["_id"]},
            {"$set": {"quantity": total, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
    else:
        item = db["cartitem"].find_one_and_update(
            {"user_id": user_id, "product_id": product_id},
            {
                "$inc": {"quantity": quantity},
                "$set": {"updated_at": now},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    logger.info("cart add user_id=%s product_id=%s quantity=%s", user_id, product_id, item["quantity"])
    return _item_view(db, item, product)


def update_item(db: Database, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
    """Set a line's quantity. The line must exist and the quantity must fit available stock."""
    existing = db["cartitem"].find_one({"user_id": user_id, "product_id": product_id})
    if not existing:
        raise NotFound("Cart item not found")
    product = get_active_product(db, product_id)
    if not product:
        raise ProductUnavailable("Product is no longer available")
    available = inventory.available_stock(inventory.get_inventory(db, product_id))
    if quantity > available:
        raise InsufficientStock(available, quantity)

    item = db["cartitem"].find_one_and_update(
        {"_id": existing["_id"]},
        {"$set": {"quantity": quantity, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return _item_view(db, item, product)


def remove_item(db: Database, user_id: str, product_id: str) -> Dict[str, Any]:
    existing = db["cartitem"].find_one({"user_id": user_id, "product_id": product_id})
    if not existing:
        raise NotFound("Cart item not found")
    db["cartitem"].delete_one({"_id": existing["_id"]})
    product = find_by_id(db, "product", product_id)
    return {
        "product_id": product_id,
        "product_name": product["name"] if product else "Unknown Product",
    }


def clear_cart(db: Database, user_id: str) -> int:
    result = db["cartitem"].delete_many({"user_id": user_id})
    return result.deleted_count


def cart_lines(db: Database, user_id: str):
    """(product_id, quantity) pairs in the order they were added."""
    return [
        {"product_id": item["product_id"], "quantity": item["quantity"]}
        for item in db["cartitem"].find({"user_id": user_id}).sort("created_at", 1)
    ]
