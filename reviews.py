"""
Product reviews.

A customer may review a product once, and only after an order containing it
was delivered. New reviews wait for an admin: approved reviews are public and
feed the product's rating, rejected ones carry the admin's note.
"""
from collections import Counter
from typing import Any, Dict, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import catalog
from database import create_document, find_by_id, parse_oid, serialize, utcnow
from errors import BusinessRuleError, NotFound
from logger import get_logger
from schemas import OrderStatus, Review, ReviewIn

logger = get_logger("reviews")

DEFAULT_REJECTION_NOTE = "Review rejected by admin"

MODERATION_FILTERS = {
    "pending": {"is_approved": False, "admin_note": None},
    "approved": {"is_approved": True},
    "rejected": {"is_approved": False, "admin_note": {"$ne": None}},
}


def _pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    pages = (total + limit - 1) // limit
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "has_next": page < pages,
        "has_prev": page > 1,
    }


def _author(db: Database, user_id: str, with_email: bool = False) -> Dict[str, Any]:
    user = find_by_id(db, "user", user_id) or {}
    author = {"id": user_id, "name": user.get("name"), "image": user.get("image")}
    if with_email:
        author["email"] = user.get("email")
    return author


def rating_summary(db: Database, product_id: str) -> Dict[str, Any]:
    ratings = [r["rating"] for r in db["review"].find({"product_id": product_id, "is_approved": True})]
    counts = Counter(ratings)
    return {
        "average_rating": round(sum(ratings) / len(ratings), 2) if ratings else 0,
        "total_reviews": len(ratings),
        "rating_distribution": [{"rating": n, "count": counts.get(n, 0)} for n in range(1, 6)],
    }


def refresh_product_rating(db: Database, product_id: str) -> None:
    summary = rating_summary(db, product_id)
    db["product"].update_one(
        {"_id": parse_oid(product_id)},
        {"$set": {"rating": summary["average_rating"], "rating_count": summary["total_reviews"]}},
    )


def list_reviews(db: Database, product_id: str, page: int = 1, limit: int = 10,
                 rating: Optional[int] = None) -> Dict[str, Any]:
    """Approved reviews of a product, newest first, with its rating statistics."""
    filt: Dict[str, Any] = {"product_id": product_id, "is_approved": True}
    if rating:
        filt["rating"] = rating
    total = db["review"].count_documents(filt)
    cursor = db["review"].find(filt).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    reviews = []
    for r in cursor:
        item = serialize(r)
        item.pop("admin_note", None)
        item["user"] = _author(db, r["user_id"])
        reviews.append(item)
    return {
        "reviews": reviews,
        "pagination": _pagination(page, limit, total),
        "statistics": rating_summary(db, product_id),
    }


def has_received(db: Database, user_id: str, product_id: str) -> bool:
    return db["order"].count_documents({
        "user_id": user_id,
        "status": OrderStatus.DELIVERED.value,
        "items.product_id": product_id,
    }) > 0


def submit_review(db: Database, user_id: str, payload: ReviewIn) -> Dict[str, Any]:
    product = catalog.get_active_product(db, payload.product_id)
    if not product:
        raise NotFound("Product not found")
    product_id = str(product["_id"])
    if not has_received(db, user_id, product_id):
        raise BusinessRuleError("You can only review products you have purchased and received")
    if db["review"].find_one({"user_id": user_id, "product_id": product_id}):
        raise BusinessRuleError("You have already reviewed this product")

    review = Review(user_id=user_id, product_id=product_id, rating=payload.rating,
                    title=payload.title, comment=payload.comment)
    try:
        review_id = create_document(db, "review", review)
    except DuplicateKeyError:
        raise BusinessRuleError("You have already reviewed this product")
    logger.info("Review %s submitted for product %s by user_id=%s", review_id, product_id, user_id)
    out = serialize(find_by_id(db, "review", review_id))
    out["product"] = {"id": product_id, "name": product.get("name")}
    return out


# Moderation

def _admin_view(db: Database, review: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(review)
    out["user"] = _author(db, review["user_id"], with_email=True)
    product = find_by_id(db, "product", review["product_id"]) or {}
    out["product"] = {
        "id": review["product_id"],
        "name": product.get("name"),
        "sku": product.get("sku"),
        "image_url": product.get("image_url"),
    }
    return out


def list_all_reviews(db: Database, status: Optional[str] = None, product_id: Optional[str] = None,
                     page: int = 1, limit: int = 20) -> Dict[str, Any]:
    filt: Dict[str, Any] = dict(MODERATION_FILTERS.get(status, {}))
    if product_id:
        filt["product_id"] = product_id
    total = db["review"].count_documents(filt)
    cursor = db["review"].find(filt).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    statistics = {name: db["review"].count_documents(f) for name, f in MODERATION_FILTERS.items()}
    statistics["total"] = sum(statistics.values())
    return {
        "reviews": [_admin_view(db, r) for r in cursor],
        "pagination": _pagination(page, limit, total),
        "statistics": statistics,
    }


def moderate_review(db: Database, review_id: str, is_approved: bool, admin_note: str = None) -> Dict[str, Any]:
    review = find_by_id(db, "review", review_id)
    if not review:
        raise NotFound("Review not found")
    db["review"].update_one(
        {"_id": review["_id"]},
        {"$set": {
            "is_approved": is_approved,
            "admin_note": None if is_approved else (admin_note or DEFAULT_REJECTION_NOTE),
            "updated_at": utcnow(),
        }},
    )
    refresh_product_rating(db, review["product_id"])
    logger.info("Review %s %s", review_id, "approved" if is_approved else "rejected")
    return _admin_view(db, find_by_id(db, "review", review_id))


def delete_review(db: Database, review_id: str) -> None:
    review = find_by_id(db, "review", review_id)
    if not review:
        raise NotFound("Review not found")
    db["review"].delete_one({"_id": review["_id"]})
    refresh_product_rating(db, review["product_id"])
    logger.info("Review %s deleted", review_id)
