"""
Coupon eligibility and discount calculation.

Coupon types:
  PERCENTAGE     value% off the order amount, optionally capped by max_discount_amount
  FIXED_AMOUNT   a flat value off
  FREE_SHIPPING  the shipping fee is waived

Redemption is recorded per (coupon, user, order) once payment is confirmed.
How often a single user may redeem a coupon is governed by
config.COUPON_SINGLE_USE_PER_USER: when set, any previous redemption makes
the coupon unavailable to that user; otherwise the coupon's own
per_user_limit applies.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import create_document, find_by_id, serialize, utcnow
from errors import BusinessRuleError, CouponError
from logger import get_logger
from schemas import Coupon, CouponIn, CouponType, CouponUsage

logger = get_logger("coupons")

MAX_RETRIES = 5


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _single_use(single_use: Optional[bool]) -> bool:
    return config.COUPON_SINGLE_USE_PER_USER if single_use is None else single_use


def user_redemptions(db: Database, coupon_id: str, user_id: str) -> int:
    return db["couponusage"].count_documents({"coupon_id": coupon_id, "user_id": user_id})


def user_may_redeem(db: Database, coupon: Dict[str, Any], user_id: str, single_use: bool = None) -> bool:
    used = user_redemptions(db, str(coupon["_id"]), user_id)
    if _single_use(single_use):
        return used == 0
    limit = coupon.get("per_user_limit")
    return limit is None or used < limit


def has_uses_left(coupon: Dict[str, Any]) -> bool:
    limit = coupon.get("usage_limit")
    return limit is None or int(coupon.get("used_count") or 0) < limit


def public_coupon(coupon: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(coupon["_id"]),
        "code": coupon["code"],
        "name": coupon.get("name"),
        "description": coupon.get("description"),
        "type": coupon["type"],
        "value": coupon["value"],
        "min_order_amount": coupon.get("min_order_amount"),
        "max_discount_amount": coupon.get("max_discount_amount"),
        "valid_until": coupon.get("valid_until"),
    }


def list_available(db: Database, user_id: str, now: datetime = None, single_use: bool = None) -> List[Dict[str, Any]]:
    """Active coupons inside their validity window that this user can still redeem, best value first."""
    now = now or utcnow()
    cursor = db["coupon"].find({
        "is_active": True,
        "valid_from": {"$lte": now},
        "valid_until": {"$gte": now},
    }).sort("value", -1)
    return [
        public_coupon(c)
        for c in cursor
        if has_uses_left(c) and user_may_redeem(db, c, user_id, single_use)
    ]


def compute_discount(coupon: Dict[str, Any], order_amount: float, shipping: float = None) -> float:
    if shipping is None:
        shipping = config.SHIPPING_FEE
    ctype = coupon["type"]
    value = float(coupon["value"])
    if ctype == CouponType.PERCENTAGE:
        discount = order_amount * value / 100
        cap = coupon.get("max_discount_amount")
        if cap:
            discount = min(discount, float(cap))
    elif ctype == CouponType.FIXED_AMOUNT:
        discount = value
    elif ctype == CouponType.FREE_SHIPPING:
        discount = shipping
    else:
        discount = 0.0
    discount = max(min(discount, order_amount), 0.0)
    return float(Decimal(str(discount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def find_coupon(db: Database, code: str, now: datetime = None) -> Optional[Dict[str, Any]]:
    now = now or utcnow()
    return db["coupon"].find_one({
        "code": code.strip().upper(),
        "is_active": True,
        "valid_from": {"$lte": now},
        "valid_until": {"$gte": now},
    })


def evaluate(db: Database, user_id: str, code: str, order_amount: float, shipping: float = None,
             now: datetime = None, single_use: bool = None) -> Dict[str, Any]:
    """
    Check a coupon code against an order amount and return the discount.

    Raises CouponError when the code is unknown, inactive, expired, below its
    minimum order amount, already redeemed by this user, or used up.
    """
    coupon = find_coupon(db, code, now)
    if not coupon:
        raise CouponError("Invalid or expired coupon code")

    minimum = coupon.get("min_order_amount")
    if minimum and order_amount < minimum:
        raise CouponError(f"Minimum order amount of {minimum:g} required")
    if not user_may_redeem(db, coupon, user_id, single_use):
        raise CouponError("Coupon has already been used")
    if not has_uses_left(coupon):
        raise CouponError("Coupon usage limit exceeded")

    return {
        "coupon": public_coupon(coupon),
        "discount": compute_discount(coupon, order_amount, shipping),
    }


def remove(code: str) -> Dict[str, Any]:
    # Applied coupons live on the client until checkout, so there is nothing to undo here.
    return {"code": code.strip().upper(), "removed": True}


def redeem(db: Database, coupon_id: str, user_id: str, order_id: str) -> bool:
    """
    Record a redemption for a paid order and bump the coupon's used_count.

    Returns False when the order already redeemed the coupon or the coupon
    ran out of uses in the meantime.
    """
    try:
        create_document(db, "couponusage", CouponUsage(coupon_id=coupon_id, user_id=user_id, order_id=order_id))
    except DuplicateKeyError:
        return False

    for _ in range(MAX_RETRIES):
        coupon = find_by_id(db, "coupon", coupon_id)
        if coupon is None:
            break
        if not has_uses_left(coupon):
            logger.warning("Coupon %s exhausted before order %s could redeem it", coupon.get("code"), order_id)
            break
        used = int(coupon.get("used_count") or 0)
        result = db["coupon"].update_one(
            {"_id": coupon["_id"], "used_count": coupon.get("used_count", 0)},
            {"$set": {"used_count": used + 1, "updated_at": utcnow()}},
        )
        if result.modified_count == 1:
            logger.info("Coupon %s redeemed by user_id=%s order_id=%s", coupon["code"], user_id, order_id)
            return True
    db["couponusage"].delete_one({"coupon_id": coupon_id, "user_id": user_id, "order_id": order_id})
    return False


# Admin

def create_coupon(db: Database, payload: CouponIn) -> Dict[str, Any]:
    data = payload.model_dump()
    data["valid_from"] = _naive_utc(data["valid_from"])
    data["valid_until"] = _naive_utc(data["valid_until"])
    doc = Coupon(**data)
    try:
        coupon_id = create_document(db, "coupon", doc)
    except DuplicateKeyError:
        raise BusinessRuleError("Coupon code already exists")
    logger.info("Coupon created code=%s", doc.code)
    return serialize(find_by_id(db, "coupon", coupon_id))


def list_coupons(db: Database, active_only: bool = False) -> List[Dict[str, Any]]:
    filt = {"is_active": True} if active_only else {}
    return [serialize(c) for c in db["coupon"].find(filt).sort("created_at", -1)]
