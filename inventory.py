"""
Inventory ledger: stock and reserved quantities per product.

Every write is a compare-and-set on the document's ``version`` so that two
requests racing for the last unit cannot both succeed.
"""
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pymongo.database import Database

from database import utcnow
from errors import Conflict, InsufficientStock
from logger import get_logger

logger = get_logger("inventory")

MAX_RETRIES = 5


def available_stock(inventory: Optional[Dict[str, Any]]) -> int:
    """Stock minus reservations, floored at zero. Missing inventory counts as empty."""
    if not inventory:
        return 0
    stock = int(inventory.get("stock_quantity") or 0)
    reserved = int(inventory.get("reserved_quantity") or 0)
    return max(stock - reserved, 0)


def get_inventory(db: Database, product_id: str) -> Optional[Dict[str, Any]]:
    return db["inventory"].find_one({"product_id": product_id})


def inventories_for(db: Database, product_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    ids = list(product_ids)
    return {inv["product_id"]: inv for inv in db["inventory"].find({"product_id": {"$in": ids}})}


def _apply(db: Database, product_id: str,
           change: Callable[[Dict[str, Any]], Tuple[int, int]]) -> Dict[str, Any]:
    """
    Apply a (stock_delta, reserved_delta) computed from the current document.

    ``change`` may raise to refuse the write. The update only lands if nobody
    else wrote the document in between; otherwise the read is retried.
    """
    for _ in range(MAX_RETRIES):
        inv = get_inventory(db, product_id)
        if inv is None:
            # An empty ledger still gets to refuse, so reserve reports InsufficientStock.
            change({"product_id": product_id, "stock_quantity": 0, "reserved_quantity": 0})
            raise Conflict("No inventory record for product", product_id=product_id)
        stock_delta, reserved_delta = change(inv)
        if "version" in inv:
            version_filter = {"version": inv["version"]}
        else:
            version_filter = {"version": {"$exists": False}}
        result = db["inventory"].update_one(
            {"_id": inv["_id"], **version_filter},
            {
                "$inc": {"stock_quantity": stock_delta, "reserved_quantity": reserved_delta, "version": 1},
                "$set": {"updated_at": utcnow()},
            },
        )
        if result.modified_count == 1:
            return get_inventory(db, product_id)
        logger.debug("inventory version conflict product_id=%s, retrying", product_id)
    raise Conflict("Inventory is busy, please retry", product_id=product_id)


def reserve(db: Database, product_id: str, quantity: int) -> Dict[str, Any]:
    def change(inv):
        available = available_stock(inv)
        if quantity > available:
            raise InsufficientStock(available, quantity, product_id=product_id)
        return 0, quantity

    return _apply(db, product_id, change)


def release(db: Database, product_id: str, quantity: int) -> Dict[str, Any]:
    """Drop a reservation without selling it."""
    return _apply(db, product_id, lambda inv: (0, -min(quantity, int(inv.get("reserved_quantity") or 0))))


def commit(db: Database, product_id: str, quantity: int) -> Dict[str, Any]:
    """Turn a reservation into a sale: both stock and reservation go down."""
    def change(inv):
        stock = int(inv.get("stock_quantity") or 0)
        reserved = int(inv.get("reserved_quantity") or 0)
        return -min(quantity, stock), -min(quantity, reserved)

    return _apply(db, product_id, change)


def restock(db: Database, product_id: str, quantity: int) -> Dict[str, Any]:
    return _apply(db, product_id, lambda inv: (quantity, 0))


def reserve_lines(db: Database, lines: List[Dict[str, Any]]) -> None:
    """Reserve every (product_id, quantity) line or none of them."""
    done = []
    try:
        for line in lines:
            reserve(db, line["product_id"], line["quantity"])
            done.append(line)
    except Exception:
        for line in done:
            release(db, line["product_id"], line["quantity"])
        raise


def set_stock(db: Database, product_id: str, stock_quantity: int,
              low_stock_threshold: int = None) -> Dict[str, Any]:
    """Admin stock count. Creates the record if the product has none yet."""
    fields = {"stock_quantity": stock_quantity, "updated_at": utcnow()}
    if low_stock_threshold is not None:
        fields["low_stock_threshold"] = low_stock_threshold
    db["inventory"].update_one(
        {"product_id": product_id},
        {
            "$set": fields,
            "$inc": {"version": 1},
            "$setOnInsert": {"reserved_quantity": 0, "created_at": utcnow()},
        },
        upsert=True,
    )
    logger.info("Stock set product_id=%s stock_quantity=%s", product_id, stock_quantity)
    return get_inventory(db, product_id)


def low_stock(db: Database) -> List[Dict[str, Any]]:
    items = []
    for inv in db["inventory"].find({}):
        available = available_stock(inv)
        if available <= int(inv.get("low_stock_threshold", 5)):
            items.append({
                "product_id": inv["product_id"],
                "stock_quantity": inv.get("stock_quantity", 0),
                "reserved_quantity": inv.get("reserved_quantity", 0),
                "available_stock": available,
                "low_stock_threshold": inv.get("low_stock_threshold", 5),
            })
    return items
