"""Per-user wishlist. Moving an item to the cart follows the cart's stock rules."""
from typing import Any, Dict

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import cart
import inventory
from catalog import get_active_product, product_card
from database import create_document, utcnow
from errors import BusinessRuleError, NotFound
from schemas import WishlistItem


def list_items(db: Database, user_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    filt = {"user_id": user_id}
    total = db["wishlistitem"].count_documents(filt)
    cursor = (
        db["wishlistitem"].find(filt)
        .sort("created_at", -1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    items = []
    for item in cursor:
        product = get_active_product(db, item["product_id"])
        if not product:
            continue
        available = inventory.available_stock(inventory.get_inventory(db, item["product_id"]))
        items.append({
            "id": str(item["_id"]),
            "product_id": item["product_id"],
            "created_at": item.get("created_at"),
            "product": product_card(db, product),
            "available_stock": available,
            "in_stock": available > 0,
        })
    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if limit else 0,
        },
    }


def add_item(db: Database, user_id: str, product_id: str) -> Dict[str, Any]:
    product = get_active_product(db, product_id)
    if not product:
        raise NotFound("Product not found or not available")
    if db["wishlistitem"].find_one({"user_id": user_id, "product_id": product_id}):
        raise BusinessRuleError("Product already in wishlist")
    try:
        item_id = create_document(db, "wishlistitem", WishlistItem(user_id=user_id, product_id=product_id))
    except DuplicateKeyError:
        raise BusinessRuleError("Product already in wishlist")
    return {"id": item_id, "product_id": product_id, "product": product_card(db, product), "created_at": utcnow()}


def remove_item(db: Database, user_id: str, product_id: str) -> None:
    result = db["wishlistitem"].delete_one({"user_id": user_id, "product_id": product_id})
    if result.deleted_count == 0:
        raise NotFound("Item not found in wishlist")


def move_to_cart(db: Database, user_id: str, product_id: str, quantity: int = 1) -> Dict[str, Any]:
    if not db["wishlistitem"].find_one({"user_id": user_id, "product_id": product_id}):
        raise NotFound("Item not found in wishlist")
    item = cart.add_item(db, user_id, product_id, quantity)
    db["wishlistitem"].delete_one({"user_id": user_id, "product_id": product_id})
    return item
