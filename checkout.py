"""
Checkout: cart validation, price calculation and order placement.

Validation is advisory and reserves nothing. Stock is only held once
create_order reserves it for a PENDING order, which then waits for payment.
"""
import secrets
import string
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from pymongo.database import Database

import cart
import config
import coupons
import inventory
import orders
from catalog import get_active_product
from database import create_document, find_by_id, serialize
from errors import BusinessRuleError, CouponError, NotFound, ValidationError
from logger import get_logger
from schemas import Order, OrderItem, OrderStatus

logger = get_logger("checkout")

_ORDER_SUFFIX_CHARS = string.ascii_uppercase + string.digits


def round_money(value: float) -> float:
    """Round half-up to two decimals."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_CHARS) for _ in range(6))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def shipping_for(subtotal: float) -> float:
    return 0.0 if subtotal >= config.FREE_SHIPPING_THRESHOLD else config.SHIPPING_FEE


def validate_items(db: Database, lines: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Check each (product_id, quantity) line for availability. The cart is valid only if every line is."""
    results = []
    is_valid = True
    for line in lines:
        product_id, quantity = line["product_id"], line["quantity"]
        product = get_active_product(db, product_id)
        if not product:
            results.append({
                "product_id": product_id,
                "is_valid": False,
                "error": "Product not found or not available",
            })
            is_valid = False
            continue

        available = inventory.available_stock(inventory.get_inventory(db, product_id))
        if quantity > available:
            results.append({
                "product_id": product_id,
                "is_valid": False,
                "error": "Insufficient stock",
                "available_stock": available,
                "requested_quantity": quantity,
            })
            is_valid = False
        else:
            results.append({
                "product_id": product_id,
                "is_valid": True,
                "product": {
                    "id": str(product["_id"]),
                    "name": product["name"],
                    "price": product["price"],
                    "mrp": product.get("mrp"),
                },
                "available_stock": available,
            })
    return {"is_valid": is_valid, "items": results}


def _price_lines(db: Database, lines: List[Dict[str, Any]]):
    items = []
    subtotal = 0.0
    total_mrp = 0.0
    for line in lines:
        product = get_active_product(db, line["product_id"])
        if not product:
            raise NotFound(f"Product {line['product_id']} not found")
        quantity = line["quantity"]
        price = float(product["price"])
        mrp = float(product.get("mrp") or price)
        subtotal += price * quantity
        total_mrp += mrp * quantity
        items.append({
            "product_id": str(product["_id"]),
            "name": product["name"],
            "sku": product.get("sku"),
            "price": price,
            "mrp": mrp,
            "quantity": quantity,
            "subtotal": round_money(price * quantity),
        })
    return items, round_money(subtotal), round_money(total_mrp)


def price_breakdown(subtotal: float, total_mrp: float, discount: float = 0.0) -> Dict[str, float]:
    shipping = shipping_for(subtotal)
    tax = round_money(subtotal * config.TAX_RATE)
    return {
        "subtotal": subtotal,
        "total_mrp": total_mrp,
        "total_savings": round_money(total_mrp - subtotal),
        "shipping_cost": shipping,
        "tax_amount": tax,
        "discount_amount": discount,
        "total": round_money(subtotal + shipping + tax - discount),
    }


def calculate(db: Database, user_id: str, lines: List[Dict[str, Any]],
              coupon_code: Optional[str] = None) -> Dict[str, Any]:
    """Totals for a prospective order. An unusable coupon is ignored rather than rejected."""
    items, subtotal, total_mrp = _price_lines(db, lines)
    discount = 0.0
    coupon_details = None
    if coupon_code:
        try:
            applied = coupons.evaluate(db, user_id, coupon_code, subtotal, shipping_for(subtotal))
        except CouponError as e:
            logger.info("Ignoring coupon %s in calculation: %s", coupon_code, e.message)
        else:
            discount = applied["discount"]
            coupon_details = dict(applied["coupon"], discount=discount)

    pricing = price_breakdown(subtotal, total_mrp, discount)
    return {
        "items": items,
        "pricing": pricing,
        "breakdown": {
            "item_count": len(lines),
            "total_quantity": sum(line["quantity"] for line in lines),
            "free_shipping_eligible": subtotal >= config.FREE_SHIPPING_THRESHOLD,
            "coupon_applied": discount > 0,
            "coupon_details": coupon_details,
        },
    }


def _stock_issues(db: Database, lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    issues = []
    for line in lines:
        product = find_by_id(db, "product", line["product_id"])
        name = product["name"] if product else "Unknown Product"
        if not product or not product.get("is_active", True):
            issues.append({
                "product_id": line["product_id"],
                "product_name": name,
                "issue": "Product is no longer available",
            })
            continue
        available = inventory.available_stock(inventory.get_inventory(db, line["product_id"]))
        if line["quantity"] > available:
            issues.append({
                "product_id": line["product_id"],
                "product_name": name,
                "issue": f"Insufficient stock. Available: {available}, Requested: {line['quantity']}",
                "available_stock": available,
                "requested_quantity": line["quantity"],
            })
    return issues


def create_order(db: Database, user_id: str, shipping_address_id: str, payment_method: str = "RAZORPAY",
                 notes: str = None, coupon_code: str = None) -> Dict[str, Any]:
    """
    Turn the user's cart into a PENDING order and reserve its stock.

    The cart itself is kept until payment is confirmed.
    """
    lines = cart.cart_lines(db, user_id)
    if not lines:
        raise ValidationError("Cart is empty")

    address = find_by_id(db, "address", shipping_address_id, user_id=user_id)
    if not address:
        raise ValidationError("Invalid shipping address")

    issues = _stock_issues(db, lines)
    if issues:
        raise BusinessRuleError("Stock validation failed", stock_issues=issues)

    items, subtotal, total_mrp = _price_lines(db, lines)
    discount = 0.0
    coupon = None
    if coupon_code:
        applied = coupons.evaluate(db, user_id, coupon_code, subtotal, shipping_for(subtotal))
        discount = applied["discount"]
        coupon = applied["coupon"]
    pricing = price_breakdown(subtotal, total_mrp, discount)

    inventory.reserve_lines(db, lines)

    order = Order(
        order_number=generate_order_number(),
        user_id=user_id,
        items=[OrderItem(**item) for item in items],
        payment_method=payment_method,
        subtotal=pricing["subtotal"],
        total_mrp=pricing["total_mrp"],
        total_savings=pricing["total_savings"],
        discount=discount,
        shipping_cost=pricing["shipping_cost"],
        tax_amount=pricing["tax_amount"],
        total_amount=pricing["total"],
        coupon_code=coupon["code"] if coupon else None,
        coupon_id=coupon["id"] if coupon else None,
        shipping_address_id=shipping_address_id,
        notes=notes,
    )
    try:
        order_id = create_document(db, "order", order)
    except Exception:
        for line in lines:
            inventory.release(db, line["product_id"], line["quantity"])
        raise
    orders.append_tracking(db, order_id, OrderStatus.PENDING, "Order placed, awaiting payment")
    logger.info("Order created order_number=%s user_id=%s total=%s", order.order_number, user_id, order.total_amount)

    out = serialize(find_by_id(db, "order", order_id))
    out["shipping_address"] = serialize(address)
    return out
