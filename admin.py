"""
Admin back office routes, mounted under /api/admin.

Everything except login requires an admin token (see auth.require_admin).
"""
import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Response
from pymongo.database import Database

import catalog
import config
import coupons
import inventory
import orders
import reviews
from accounts import authenticate
from auth import clear_token_cookie, create_token, public_user, require_admin, set_token_cookie
from context import StoreContext, get_context
from database import find_by_id, serialize, utcnow
from errors import BusinessRuleError, NotFound, Unauthorized
from logger import get_logger
from schemas import (
    CategoryIn,
    CategoryUpdate,
    CouponIn,
    InventoryUpdate,
    LoginRequest,
    OrderStatusUpdate,
    ProductIn,
    ProductUpdate,
    ReviewModeration,
    Role,
    UserUpdate,
)

logger = get_logger("admin")

router = APIRouter(prefix="/api/admin", tags=["admin"])


# User management

def list_users(db: Database, search: str = None, status: str = None, role: str = None,
               page: int = 1, limit: int = 10) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"email": pattern}]
    if status == "active":
        filt["is_active"] = True
    elif status == "inactive":
        filt["is_active"] = False
    if role and role != "all":
        filt["role"] = role.lower()

    total = db["user"].count_documents(filt)
    cursor = db["user"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    users = []
    for u in cursor:
        item = public_user(u)
        item["created_at"] = u.get("created_at")
        item["order_count"] = db["order"].count_documents({"user_id": str(u["_id"])})
        users.append(item)
    return {
        "users": users,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }


def update_user(db: Database, acting_user_id: str, user_id: str, payload: UserUpdate) -> Dict[str, Any]:
    user = find_by_id(db, "user", user_id)
    if not user:
        raise NotFound("User not found")
    if acting_user_id == user_id:
        if payload.is_active is False:
            raise BusinessRuleError("Cannot deactivate your own account")
        if payload.role is not None and payload.role != Role.ADMIN.value:
            raise BusinessRuleError("Cannot change your own role")

    update = payload.model_dump(exclude_none=True)
    update["updated_at"] = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    logger.info("User %s updated by %s: %s", user_id, acting_user_id, sorted(update))
    return public_user(find_by_id(db, "user", user_id))


def delete_user(db: Database, acting_user_id: str, user_id: str) -> None:
    """Deactivate an account and strip its personal details. Orders keep pointing at it."""
    user = find_by_id(db, "user", user_id)
    if not user:
        raise NotFound("User not found")
    if acting_user_id == user_id:
        raise BusinessRuleError("Cannot delete your own account")
    if orders.has_active_orders(db, user_id=user_id):
        raise BusinessRuleError("User has active orders and cannot be deleted")

    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "is_active": False,
            "name": "Deleted User",
            "email": f"deleted-{user_id}@deleted.invalid",
            "phone": None,
            "image": None,
            "hashed_password": "",
            "reset_token": None,
            "reset_token_expiry": None,
            "email_verification_otp": None,
            "updated_at": utcnow(),
        }},
    )
    db["cartitem"].delete_many({"user_id": user_id})
    db["wishlistitem"].delete_many({"user_id": user_id})
    logger.info("User %s deleted by %s", user_id, acting_user_id)


# Routes

@router.post("/login")
def admin_login(payload: LoginRequest, response: Response, ctx: StoreContext = Depends(get_context)):
    user = authenticate(ctx.db, payload.email, payload.password)
    if user.get("role") != Role.ADMIN.value:
        raise Unauthorized("Invalid credentials")
    token = create_token(user)
    set_token_cookie(response, config.ADMIN_COOKIE_NAME, token)
    logger.info("Admin login id=%s", user["_id"])
    return {"message": "Login successful", "token": token, "user": public_user(user)}


@router.post("/logout")
def admin_logout(response: Response):
    clear_token_cookie(response, config.ADMIN_COOKIE_NAME)
    return {"message": "Logged out successfully"}


@router.get("/categories")
def admin_categories(admin: dict = Depends(require_admin), ctx: StoreContext = Depends(get_context)):
    return {"categories": catalog.list_categories(ctx.db, active_only=False, include_product_count=True)}


@router.post("/categories", status_code=201)
def admin_create_category(payload: CategoryIn, admin: dict = Depends(require_admin),
                          ctx: StoreContext = Depends(get_context)):
    return {"message": "Category created successfully", "category": catalog.create_category(ctx.db, payload)}


@router.put("/categories/{category_id}")
def admin_update_category(category_id: str, payload: CategoryUpdate, admin: dict = Depends(require_admin),
                          ctx: StoreContext = Depends(get_context)):
    return {"message": "Category updated successfully",
            "category": catalog.update_category(ctx.db, category_id, payload)}


@router.delete("/categories/{category_id}")
def admin_delete_category(category_id: str, admin: dict = Depends(require_admin),
                          ctx: StoreContext = Depends(get_context)):
    catalog.delete_category(ctx.db, category_id)
    return {"message": "Category deleted successfully"}


@router.get("/users")
def admin_users(search: Optional[str] = None, status: Optional[str] = None, role: Optional[str] = None,
                page: int = 1, limit: int = 10, admin: dict = Depends(require_admin),
                ctx: StoreContext = Depends(get_context)):
    return list_users(ctx.db, search, status, role, max(page, 1), max(min(limit, 100), 1))


@router.patch("/users/{user_id}")
def admin_update_user(user_id: str, payload: UserUpdate, admin: dict = Depends(require_admin),
                      ctx: StoreContext = Depends(get_context)):
    return {"message": "User updated successfully",
            "user": update_user(ctx.db, str(admin["_id"]), user_id, payload)}


@router.delete("/users/{user_id}")
def admin_delete_user(user_id: str, admin: dict = Depends(require_admin), ctx: StoreContext = Depends(get_context)):
    delete_user(ctx.db, str(admin["_id"]), user_id)
    return {"message": "User deleted successfully"}


@router.get("/products")
def admin_products(page: int = 1, limit: int = 20, admin: dict = Depends(require_admin),
                   ctx: StoreContext = Depends(get_context)):
    return catalog.list_all_products(ctx.db, max(page, 1), max(min(limit, 100), 1))


@router.post("/products", status_code=201)
def admin_create_product(payload: ProductIn, admin: dict = Depends(require_admin),
                         ctx: StoreContext = Depends(get_context)):
    return {"message": "Product created successfully", "product": catalog.create_product(ctx.db, payload)}


@router.put("/products/{product_id}")
def admin_update_product(product_id: str, payload: ProductUpdate, admin: dict = Depends(require_admin),
                         ctx: StoreContext = Depends(get_context)):
    return {"message": "Product updated successfully",
            "product": catalog.update_product(ctx.db, product_id, payload)}


@router.delete("/products/{product_id}")
def admin_delete_product(product_id: str, admin: dict = Depends(require_admin),
                         ctx: StoreContext = Depends(get_context)):
    catalog.deactivate_product(ctx.db, product_id)
    return {"message": "Product deleted successfully"}


@router.get("/inventory/low-stock")
def admin_low_stock(admin: dict = Depends(require_admin), ctx: StoreContext = Depends(get_context)):
    return {"items": inventory.low_stock(ctx.db)}


@router.put("/inventory/{product_id}")
def admin_set_stock(product_id: str, payload: InventoryUpdate, admin: dict = Depends(require_admin),
                    ctx: StoreContext = Depends(get_context)):
    if not find_by_id(ctx.db, "product", product_id):
        raise NotFound("Product not found")
    inv = inventory.set_stock(ctx.db, product_id, payload.stock_quantity, payload.low_stock_threshold)
    out = serialize(inv)
    out["available_stock"] = inventory.available_stock(inv)
    return {"message": "Inventory updated successfully", "inventory": out}


@router.get("/coupons")
def admin_coupons(admin: dict = Depends(require_admin), ctx: StoreContext = Depends(get_context)):
    return {"coupons": coupons.list_coupons(ctx.db)}


@router.post("/coupons", status_code=201)
def admin_create_coupon(payload: CouponIn, admin: dict = Depends(require_admin),
                        ctx: StoreContext = Depends(get_context)):
    return {"message": "Coupon created successfully", "coupon": coupons.create_coupon(ctx.db, payload)}


@router.get("/orders")
def admin_orders(status: Optional[str] = None, page: int = 1, limit: int = 20,
                 admin: dict = Depends(require_admin), ctx: StoreContext = Depends(get_context)):
    return orders.list_all_orders(ctx.db, status, max(page, 1), max(min(limit, 100), 1))


@router.put("/orders/{order_id}/status")
def admin_update_order_status(order_id: str, payload: OrderStatusUpdate, admin: dict = Depends(require_admin),
                              ctx: StoreContext = Depends(get_context)):
    return {"message": "Order status updated successfully",
            "order": orders.update_status(ctx.db, order_id, payload.status, payload.message)}


@router.get("/reviews")
def admin_reviews(status: Optional[str] = None, product_id: Optional[str] = None, page: int = 1, limit: int = 20,
                  admin: dict = Depends(require_admin), ctx: StoreContext = Depends(get_context)):
    return reviews.list_all_reviews(ctx.db, status, product_id, max(page, 1), max(min(limit, 100), 1))


@router.put("/reviews/{review_id}")
def admin_moderate_review(review_id: str, payload: ReviewModeration, admin: dict = Depends(require_admin),
                          ctx: StoreContext = Depends(get_context)):
    review = reviews.moderate_review(ctx.db, review_id, payload.is_approved, payload.admin_note)
    verb = "approved" if payload.is_approved else "rejected"
    return {"message": f"Review {verb} successfully", "review": review}


@router.delete("/reviews/{review_id}")
def admin_delete_review(review_id: str, admin: dict = Depends(require_admin),
                        ctx: StoreContext = Depends(get_context)):
    reviews.delete_review(ctx.db, review_id)
    return {"message": "Review deleted successfully"}
