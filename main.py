import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from pymongo.errors import PyMongoError

import accounts
import addresses
import admin
import cart
import catalog
import checkout
import config
import coupons
import orders
import payments
import reviews
import wishlist
from auth import clear_token_cookie, get_current_user, public_user, set_token_cookie
from context import StoreContext, get_context
from errors import PaymentError, register_exception_handlers
from logger import get_logger
from schemas import (
    AddressIn,
    ApplyCouponRequest,
    CancelOrderRequest,
    CartItemIn,
    CartProductIn,
    CheckoutCalculateRequest,
    CheckoutValidateRequest,
    CreateOrderRequest,
    CreatePaymentRequest,
    ForgotPasswordRequest,
    GatewayOrderRequest,
    LoginRequest,
    ProfileUpdate,
    RemoveCouponRequest,
    ResendVerificationRequest,
    ResetPasswordRequest,
    ReviewIn,
    SignupRequest,
    VerifyEmailRequest,
    VerifyPaymentRequest,
)

logger = get_logger("api")

router = APIRouter()


# Health and helpers
@router.get("/")
def root():
    return {"message": "HVAC store API running"}


@router.get("/api/health")
def health(ctx: StoreContext = Depends(get_context)):
    response = {"backend": "running", "database": "unavailable", "collections": []}
    try:
        response["collections"] = sorted(ctx.db.list_collection_names())[:20]
        response["database"] = "connected"
    except PyMongoError as e:
        logger.error("Health check could not reach the database: %s", e)
        response["database"] = "error"
    return response


# Auth
@router.post("/api/auth/signup", status_code=201)
def signup(payload: SignupRequest, response: Response, background_tasks: BackgroundTasks,
           ctx: StoreContext = Depends(get_context)):
    user, otp, created = accounts.signup(ctx.db, payload)
    background_tasks.add_task(ctx.mailer.send_verification_code, user["email"], user.get("name") or "there", otp)
    if not created:
        response.status_code = 200
        message = "Account exists but is not verified. We sent a new verification code to your email."
    else:
        message = "User registered successfully. Please check your email for the verification code."
    return {"message": message, "user": public_user(user), "requires_verification": True}


@router.post("/api/auth/verify-email")
def verify_email(payload: VerifyEmailRequest, response: Response, ctx: StoreContext = Depends(get_context)):
    user, token = accounts.verify_email(ctx.db, payload.email, payload.otp)
    set_token_cookie(response, config.AUTH_COOKIE_NAME, token)
    return {"message": "Email verified successfully", "token": token, "user": public_user(user)}


@router.put("/api/auth/verify-email")
def resend_verification(payload: ResendVerificationRequest, background_tasks: BackgroundTasks,
                        ctx: StoreContext = Depends(get_context)):
    user, otp = accounts.resend_verification(ctx.db, payload.email)
    background_tasks.add_task(ctx.mailer.send_verification_code, user["email"], user.get("name") or "there", otp)
    return {"message": "Verification code sent successfully"}


@router.post("/api/auth/login")
def login(payload: LoginRequest, response: Response, ctx: StoreContext = Depends(get_context)):
    user, token = accounts.login(ctx.db, payload.email, payload.password)
    set_token_cookie(response, config.AUTH_COOKIE_NAME, token)
    return {"token": token, "user": public_user(user)}


@router.post("/api/auth/logout")
def logout(response: Response):
    clear_token_cookie(response, config.AUTH_COOKIE_NAME)
    return {"message": "Logged out successfully"}


@router.get("/api/auth/me")
def me(user: dict = Depends(get_current_user)):
    return {"user": public_user(user)}


@router.post("/api/auth/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, background_tasks: BackgroundTasks,
                    ctx: StoreContext = Depends(get_context)):
    issued = accounts.forgot_password(ctx.db, payload.email)
    if issued:
        user, link = issued
        background_tasks.add_task(ctx.mailer.send_password_reset, user["email"], user.get("name") or "there", link)
    return {"message": accounts.FORGOT_PASSWORD_MESSAGE}


@router.post("/api/auth/reset-password")
def reset_password(payload: ResetPasswordRequest, ctx: StoreContext = Depends(get_context)):
    accounts.reset_password(ctx.db, payload.token, payload.password)
    return {"message": "Password reset successfully"}


# Profile and addresses
@router.get("/api/user/profile")
def get_profile(request: Request, response: Response, user: dict = Depends(get_current_user),
                ctx: StoreContext = Depends(get_context)):
    profile = accounts.get_profile(ctx.db, user)
    etag = accounts.profile_etag(profile)
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers={"ETag": etag})
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = "private, no-cache"
    return {"user": profile}


@router.put("/api/user/profile")
def update_profile(payload: ProfileUpdate, user: dict = Depends(get_current_user),
                   ctx: StoreContext = Depends(get_context)):
    return {"message": "Profile updated successfully", "user": accounts.update_profile(ctx.db, user, payload)}


@router.get("/api/user/addresses")
def list_addresses(user: dict = Depends(get_current_user), ctx: StoreContext = Depends(get_context)):
    return {"addresses": addresses.list_addresses(ctx.db, str(user["_id"]))}


@router.post("/api/user/addresses", status_code=201)
def create_address(payload: AddressIn, user: dict = Depends(get_current_user),
                   ctx: StoreContext = Depends(get_context)):
    address = addresses.create_address(ctx.db, str(user["_id"]), payload)
    return {"message": "Address created successfully", "address": address}


@router.put("/api/user/addresses/{address_id}")
def update_address(address_id: str, payload: AddressIn, user: dict = Depends(get_current_user),
                   ctx: StoreContext = Depends(get_context)):
    address = addresses.update_address(ctx.db, str(user["_id"]), address_id, payload)
    return {"message": "Address updated successfully", "address": address}


@router.delete("/api/user/addresses/{address_id}")
def delete_address(address_id: str, user: dict = Depends(get_current_user),
                   ctx: StoreContext = Depends(get_context)):
    addresses.delete_address(ctx.db, str(user["_id"]), address_id)
    return {"message": "Address deleted successfully"}


# Catalog
@router.get("/api/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, brand: Optional[str] = None,
                  sort: Optional[str] = None, page: int = 1, page_size: int = 12,
                  min_price: Optional[float] = None, max_price: Optional[float] = None,
                  ctx: StoreContext = Depends(get_context)):
    return catalog.list_products(ctx.db, q, category, brand, min_price, max_price, sort,
                                 max(page, 1), max(min(page_size, 100), 1))


@router.get("/api/products/{product_ref}")
def get_product(product_ref: str, ctx: StoreContext = Depends(get_context)):
    return catalog.get_product(ctx.db, product_ref)


@router.get("/api/categories")
def list_categories(include_product_count: bool = False, ctx: StoreContext = Depends(get_context)):
    return {"categories": catalog.list_categories(ctx.db, include_product_count=include_product_count)}


# Reviews
@router.get("/api/reviews")
def list_reviews(product_id: str, page: int = 1, limit: int = 10, rating: Optional[int] = None,
                 ctx: StoreContext = Depends(get_context)):
    return reviews.list_reviews(ctx.db, product_id, max(page, 1), max(min(limit, 50), 1), rating)


@router.post("/api/reviews", status_code=201)
def submit_review(payload: ReviewIn, user: dict = Depends(get_current_user),
                  ctx: StoreContext = Depends(get_context)):
    review = reviews.submit_review(ctx.db, str(user["_id"]), payload)
    return {"message": "Review submitted successfully and is pending approval", "review": review}


# Cart
@router.get("/api/cart")
def get_cart(user: dict = Depends(get_current_user), ctx: StoreContext = Depends(get_context)):
    return cart.get_cart(ctx.db, str(user["_id"]))


@router.post("/api/cart/add", status_code=201)
def cart_add(item: CartItemIn, user: dict = Depends(get_current_user), ctx: StoreContext = Depends(get_context)):
    added = cart.add_item(ctx.db, str(user["_id"]), item.product_id, item.quantity)
    return {"message": "Item added to cart", "item": added}


@router.api_route("/api/cart/update", methods=["PUT", "POST"])
def cart_update(item: CartItemIn, user: dict = Depends(get_current_user), ctx: StoreContext = Depends(get_context)):
    updated = cart.update_item(ctx.db, str(user["_id"]), item.product_id, item.quantity)
    return {"message": "Cart updated successfully", "item": updated}


@router.api_route("/api/cart/remove", methods=["DELETE", "POST"])
def cart_remove(item: CartProductIn, user: dict = Depends(get_current_user),
                ctx: StoreContext = Depends(get_context)):
    removed = cart.remove_item(ctx.db, str(user["_id"]), item.product_id)
    return {"message": "Item removed from cart", **removed}


@router.delete("/api/cart")
def cart_clear(user: dict = Depends(get_current_user), ctx: StoreContext = Depends(get_context)):
    cart.clear_cart(ctx.db, str(user["_id"]))
    return {"message": "Cart cleared"}


# Wishlist
@router.get("/api/wishlist")
def get_wishlist(page: int = 1, limit: int = 20, user: dict = Depends(get_current_user),
                 ctx: StoreContext = Depends(get_context)):
    return wishlist.list_items(ctx.db, str(user["_id"]), max(page, 1), max(min(limit, 100), 1))


@router.post("/api/wishlist", status_code=201)
def wishlist_add(item: CartProductIn, user: dict = Depends(get_current_user),
                 ctx: StoreContext = Depends(get_context)):
    return {"message": "Added to wishlist", "item": wishlist.add_item(ctx.db, str(user["_id"]), item.product_id)}


@router.delete("/api/wishlist/{product_id}")
def wishlist_remove(product_id: str, user: dict = Depends(get_current_user),
                    ctx: StoreContext = Depends(get_context)):
    wishlist.remove_item(ctx.db, str(user["_id"]), product_id)
    return {"message": "Removed from wishlist"}


@router.post("/api/wishlist/{product_id}/move-to-cart")
def wishlist_move_to_cart(product_id: str, user: dict = Depends(get_current_user),
                          ctx: StoreContext = Depends(get_context)):
    item = wishlist.move_to_cart(ctx.db, str(user["_id"]), product_id)
    return {"message": "Moved to cart", "item": item}


# Coupons
@router.get("/api/coupons/available")
def available_coupons(user: dict = Depends(get_current_user), ctx: StoreContext = Depends(get_context)):
    return {"coupons": coupons.list_available(ctx.db, str(user["_id"]))}


@router.post("/api/coupons/apply")
def apply_coupon(payload: ApplyCouponRequest, user: dict = Depends(get_current_user),
                 ctx: StoreContext = Depends(get_context)):
    applied = coupons.evaluate(ctx.db, str(user["_id"]), payload.code, payload.order_amount)
    return {"success": True, **applied}


@router.post("/api/coupons/remove")
def remove_coupon(payload: RemoveCouponRequest, user: dict = Depends(get_current_user)):
    return {"success": True, "message": "Coupon removed", **coupons.remove(payload.code)}


# Checkout
@router.post("/api/checkout/validate")
def checkout_validate(payload: CheckoutValidateRequest, user: dict = Depends(get_current_user),
                      ctx: StoreContext = Depends(get_context)):
    return checkout.validate_items(ctx.db, [line.model_dump() for line in payload.items])


@router.post("/api/checkout/calculate")
def checkout_calculate(payload: CheckoutCalculateRequest, user: dict = Depends(get_current_user),
                       ctx: StoreContext = Depends(get_context)):
    lines = [line.model_dump() for line in payload.items]
    return checkout.calculate(ctx.db, str(user["_id"]), lines, payload.coupon_code)


@router.post("/api/checkout/create-order", status_code=201)
def checkout_create_order(payload: CreateOrderRequest, user: dict = Depends(get_current_user),
                          ctx: StoreContext = Depends(get_context)):
    order = checkout.create_order(ctx.db, str(user["_id"]), payload.shipping_address_id,
                                  payload.payment_method, payload.notes, payload.coupon_code)
    return {"message": "Order created successfully", "order": order}


# Payments
@router.post("/api/payments/create", status_code=201)
def payment_create(payload: CreatePaymentRequest, user: dict = Depends(get_current_user),
                   ctx: StoreContext = Depends(get_context)):
    return payments.start_payment(ctx.db, ctx.gateway, str(user["_id"]), payload.order_id)


def _confirm(ctx: StoreContext, user: dict, background_tasks: BackgroundTasks, fields: VerifyPaymentRequest):
    result = payments.confirm_payment(ctx.db, ctx.gateway, str(user["_id"]), fields.razorpay_order_id,
                                      fields.razorpay_payment_id, fields.razorpay_signature)
    if result.pop("confirmed_now") and user.get("email"):
        background_tasks.add_task(ctx.mailer.send_order_confirmation, user["email"],
                                  user.get("name") or "Customer", result["order"])
    return result


@router.post("/api/payments/verify")
def payment_verify(payload: VerifyPaymentRequest, background_tasks: BackgroundTasks,
                   user: dict = Depends(get_current_user), ctx: StoreContext = Depends(get_context)):
    return _confirm(ctx, user, background_tasks, payload)


@router.get("/api/payments/verify")
def payment_verify_query(background_tasks: BackgroundTasks, razorpay_order_id: Optional[str] = None,
                         razorpay_payment_id: Optional[str] = None, razorpay_signature: Optional[str] = None,
                         user: dict = Depends(get_current_user), ctx: StoreContext = Depends(get_context)):
    fields = VerifyPaymentRequest(razorpay_order_id=razorpay_order_id, razorpay_payment_id=razorpay_payment_id,
                                  razorpay_signature=razorpay_signature)
    return _confirm(ctx, user, background_tasks, fields)


@router.post("/payment/callback")
async def payment_callback(request: Request):
    form = await request.form()
    return RedirectResponse(payments.callback_redirect(form), status_code=303)


# Deprecated: prefer /api/payments/create and /api/payments/verify
@router.post("/api/create-order")
def legacy_create_order(payload: GatewayOrderRequest, ctx: StoreContext = Depends(get_context)):
    logger.warning("Deprecated endpoint /api/create-order used")
    order = ctx.gateway.create_order(payload.amount, payload.currency, receipt=f"receipt_{int(time.time() * 1000)}")
    return {"order_id": order.get("id"), "amount": order.get("amount"), "currency": order.get("currency")}


@router.post("/api/verify-payment")
def legacy_verify_payment(payload: VerifyPaymentRequest, ctx: StoreContext = Depends(get_context)):
    if not ctx.gateway.verify(payload.razorpay_order_id, payload.razorpay_payment_id, payload.razorpay_signature):
        raise PaymentError("Invalid signature", success=False)
    return {"success": True}


# Orders
@router.get("/api/orders")
def list_orders(page: int = 1, limit: int = 10, status: Optional[str] = None,
                user: dict = Depends(get_current_user), ctx: StoreContext = Depends(get_context)):
    return orders.list_orders(ctx.db, str(user["_id"]), max(page, 1), max(min(limit, 50), 1), status)


@router.get("/api/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user), ctx: StoreContext = Depends(get_context)):
    return {"order": orders.get_order(ctx.db, str(user["_id"]), order_id)}


@router.post("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, payload: Optional[CancelOrderRequest] = None,
                 user: dict = Depends(get_current_user), ctx: StoreContext = Depends(get_context)):
    result = orders.cancel_order(ctx.db, str(user["_id"]), order_id, payload.reason if payload else None)
    return {
        "success": True,
        "message": "Order cancelled successfully. Refund will be processed as per policy.",
        **result,
    }


def create_app(context: Optional[StoreContext] = None) -> FastAPI:
    """Build the API. Without a context one is created from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "context", None) is None
        if owned:
            app.state.context = StoreContext.from_env()
        logger.info("HVAC store API started")
        yield
        if owned:
            app.state.context.close()
            app.state.context = None

    app = FastAPI(title="HVAC Store API", version="1.0.0", lifespan=lifespan)
    app.state.context = context
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(router)
    app.include_router(admin.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
