"""
Products and categories: storefront browsing plus the admin write paths.
"""
import re
import time
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import inventory
from database import create_document, find_by_id, parse_oid, serialize, utcnow
from errors import BusinessRuleError, NotFound, ValidationError
from logger import get_logger
from schemas import Category, CategoryIn, CategoryUpdate, Product, ProductIn, ProductUpdate

logger = get_logger("catalog")

SORTS = {
    "price_asc": ("price", 1),
    "price_desc": ("price", -1),
    "newest": ("created_at", -1),
    "name": ("name", 1),
}


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def generate_sku(category: str, brand: str) -> str:
    category_code = (category or "GEN")[:3].upper()
    brand_code = (brand or "GEN")[:3].upper()
    stamp = str(int(time.time() * 1000))[-6:]
    # Tail of a fresh ObjectId keeps SKUs unique within the same millisecond.
    return f"{category_code}-{brand_code}-{stamp}-{str(ObjectId())[-4:].upper()}"


def category_ref(db: Database, category_id: Optional[str]) -> Dict[str, str]:
    category = find_by_id(db, "category", category_id) if category_id else None
    return {"name": category.get("name", "") if category else "", "slug": category.get("slug", "") if category else ""}


def product_card(db: Database, product: Dict[str, Any]) -> Dict[str, Any]:
    """Display fields shared by cart, wishlist and checkout responses."""
    return {
        "id": str(product["_id"]),
        "name": product.get("name"),
        "sku": product.get("sku"),
        "price": product.get("price"),
        "mrp": product.get("mrp") or product.get("price"),
        "image_url": product.get("image_url"),
        "category": category_ref(db, product.get("category_id")),
    }


def get_active_product(db: Database, product_id: str) -> Optional[Dict[str, Any]]:
    return find_by_id(db, "product", product_id, is_active=True)


def list_products(db: Database, q: str = None, category: str = None, brand: str = None,
                  min_price: float = None, max_price: float = None, sort: str = None,
                  page: int = 1, page_size: int = 12) -> Dict[str, Any]:
    filt: Dict[str, Any] = {"is_active": True}
    if q:
        filt["name"] = {"$regex": re.escape(q), "$options": "i"}
    if category:
        cat = db["category"].find_one({"slug": category})
        filt["category_id"] = str(cat["_id"]) if cat else "__none__"
    if brand:
        filt["brand"] = brand
    price_cond = {}
    if min_price is not None:
        price_cond["$gte"] = min_price
    if max_price is not None:
        price_cond["$lte"] = max_price
    if price_cond:
        filt["price"] = price_cond

    total = db["product"].count_documents(filt)
    cursor = db["product"].find(filt)
    if sort in SORTS:
        cursor = cursor.sort(*SORTS[sort])
    cursor = cursor.skip((page - 1) * page_size).limit(page_size)

    products = list(cursor)
    stock = inventory.inventories_for(db, [str(p["_id"]) for p in products])
    items = []
    for p in products:
        available = inventory.available_stock(stock.get(str(p["_id"])))
        item = serialize(p)
        item["available_stock"] = available
        item["in_stock"] = available > 0
        items.append(item)
    return {"items": items, "page": page, "page_size": page_size, "total": total}


def get_product(db: Database, id_or_slug: str) -> Dict[str, Any]:
    product = find_by_id(db, "product", id_or_slug, is_active=True)
    if product is None:
        product = db["product"].find_one({"slug": id_or_slug, "is_active": True})
    if not product:
        raise NotFound("Product not found")
    available = inventory.available_stock(inventory.get_inventory(db, str(product["_id"])))
    out = serialize(product)
    out["category"] = category_ref(db, product.get("category_id"))
    out["available_stock"] = available
    out["in_stock"] = available > 0
    return out


def list_categories(db: Database, active_only: bool = True, include_product_count: bool = False) -> List[Dict[str, Any]]:
    filt = {"is_active": True} if active_only else {}
    categories = []
    for c in db["category"].find(filt).sort("name", 1):
        item = serialize(c)
        if include_product_count:
            item["product_count"] = db["product"].count_documents({"category_id": item["id"]})
        categories.append(item)
    return categories


# Admin

def create_category(db: Database, payload: CategoryIn) -> Dict[str, Any]:
    if db["category"].find_one({"name": payload.name}):
        raise BusinessRuleError("Category already exists")
    doc = Category(
        name=payload.name,
        slug=payload.slug or slugify(payload.name),
        description=payload.description,
        image_url=payload.image_url,
        is_active=payload.is_active,
    )
    try:
        category_id = create_document(db, "category", doc)
    except DuplicateKeyError:
        raise BusinessRuleError("Category already exists")
    return serialize(find_by_id(db, "category", category_id))


def update_category(db: Database, category_id: str, payload: CategoryUpdate) -> Dict[str, Any]:
    """Partial update. A rename moves the slug along unless one is given explicitly."""
    existing = find_by_id(db, "category", category_id)
    if not existing:
        raise NotFound("Category not found")
    update: Dict[str, Any] = {}
    if payload.name and payload.name != existing["name"]:
        if db["category"].find_one({"name": payload.name}):
            raise BusinessRuleError("Category name already exists")
        update["name"] = payload.name
        update["slug"] = slugify(payload.name)
    if payload.slug:
        update["slug"] = slugify(payload.slug)
    if update.get("slug") == existing["slug"]:
        del update["slug"]
    elif "slug" in update and db["category"].find_one({"slug": update["slug"]}):
        raise BusinessRuleError("Category slug already exists")
    for field in ("description", "image_url", "is_active"):
        value = getattr(payload, field)
        if value is not None:
            update[field] = value
    update["updated_at"] = utcnow()
    db["category"].update_one({"_id": existing["_id"]}, {"$set": update})
    return serialize(find_by_id(db, "category", category_id))


def delete_category(db: Database, category_id: str) -> None:
    existing = find_by_id(db, "category", category_id)
    if not existing:
        raise NotFound("Category not found")
    in_use = db["product"].count_documents({"category_id": str(existing["_id"])})
    if in_use > 0:
        raise BusinessRuleError(f"Cannot delete category with {in_use} products")
    db["category"].delete_one({"_id": existing["_id"]})


def create_product(db: Database, payload: ProductIn) -> Dict[str, Any]:
    category = find_by_id(db, "category", payload.category_id)
    if not category:
        raise ValidationError("Category not found")
    doc = Product(
        name=payload.name,
        slug=payload.slug or slugify(payload.name),
        sku=payload.sku or generate_sku(category["name"], payload.brand),
        description=payload.description,
        brand=payload.brand,
        image_url=payload.image_url,
        price=payload.price,
        mrp=payload.mrp,
        category_id=str(category["_id"]),
        specifications=payload.specifications,
        is_active=payload.is_active,
    )
    try:
        product_id = create_document(db, "product", doc)
    except DuplicateKeyError:
        raise BusinessRuleError("A product with this slug or SKU already exists")
    inventory.set_stock(db, product_id, payload.stock_quantity, payload.low_stock_threshold)
    logger.info("Product created id=%s sku=%s", product_id, doc.sku)
    return _admin_view(db, product_id)


def update_product(db: Database, product_id: str, payload: ProductUpdate) -> Dict[str, Any]:
    existing = find_by_id(db, "product", product_id)
    if not existing:
        raise NotFound("Product not found")
    update = payload.model_dump(exclude_unset=True)
    if "category_id" in update and not find_by_id(db, "category", update["category_id"]):
        raise ValidationError("Category not found")
    update["updated_at"] = utcnow()
    db["product"].update_one({"_id": existing["_id"]}, {"$set": update})
    return _admin_view(db, product_id)


def deactivate_product(db: Database, product_id: str) -> None:
    """Products referenced by orders are never removed, only hidden."""
    result = db["product"].update_one(
        {"_id": parse_oid(product_id)},
        {"$set": {"is_active": False, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFound("Product not found")
    logger.info("Product deactivated id=%s", product_id)


def _admin_view(db: Database, product_id: str) -> Dict[str, Any]:
    out = serialize(find_by_id(db, "product", product_id))
    inv = inventory.get_inventory(db, out["id"])
    out["stock_quantity"] = (inv or {}).get("stock_quantity", 0)
    out["reserved_quantity"] = (inv or {}).get("reserved_quantity", 0)
    out["available_stock"] = inventory.available_stock(inv)
    return out


def list_all_products(db: Database, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    """Admin listing: inactive products included, with their stock."""
    total = db["product"].count_documents({})
    cursor = db["product"].find({}).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return {
        "products": [_admin_view(db, str(p["_id"])) for p in cursor],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }
