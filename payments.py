"""
Razorpay payment bridge.

A PENDING order gets a gateway order via ``start_payment``. Once the customer
pays, the gateway hands back (order id, payment id, signature) and
``confirm_payment`` checks the signature before confirming the order.

The signature is the hex HMAC-SHA256 of "<gateway order id>|<payment id>"
keyed with the account's key secret.
"""
import hashlib
import hmac
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import httpx
from pymongo.database import Database

import cart
import config
import coupons
import orders
from database import create_document, find_by_id, serialize, utcnow
from errors import BusinessRuleError, Forbidden, GatewayError, NotFound, PaymentError, ValidationError
from logger import get_logger
from schemas import OrderStatus, Payment, PaymentStatus

logger = get_logger("payments")

CALLBACK_FIELDS = ("razorpay_order_id", "razorpay_payment_id", "razorpay_signature")
LATE_PAYMENT_MESSAGE = "Order is no longer payable. The payment will be refunded in full."


def to_subunits(amount: float) -> int:
    """Rupees to paise, rounded half-up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def expected_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: Optional[str], payment_id: Optional[str], signature: Optional[str],
                     secret: str) -> bool:
    if not order_id or not payment_id or not signature:
        raise ValidationError("Missing payment details")
    expected = expected_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected.encode(), signature.encode())


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, base_url: str = None,
                 transport: httpx.BaseTransport = None):
        self.key_id = key_id
        self.key_secret = key_secret
        self._client = httpx.Client(
            base_url=base_url or config.RAZORPAY_API_URL,
            auth=(key_id, key_secret),
            headers={"Content-Type": "application/json"},
            timeout=30.0,
            transport=transport,
        )

    @classmethod
    def from_config(cls) -> "RazorpayGateway":
        return cls(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET, config.RAZORPAY_API_URL)

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def create_order(self, amount: Optional[float], currency: Optional[str], receipt: str,
                     notes: Dict[str, Any] = None) -> Dict[str, Any]:
        """Create a gateway order. ``amount`` is in rupees and is sent in paise."""
        if not amount or not currency:
            raise ValidationError("Amount and currency are required")
        if not self.configured:
            logger.error("Razorpay keys not configured (key_id set=%s, key_secret set=%s)",
                         bool(self.key_id), bool(self.key_secret))
            raise GatewayError("Payment gateway not configured")

        payload = {
            "amount": to_subunits(amount),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            resp = self._client.post("/orders", json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Razorpay order creation failed receipt=%s: %s", receipt, e)
            raise GatewayError("Failed to create payment order") from e
        data = resp.json()
        logger.info("Razorpay order created id=%s amount=%s receipt=%s", data.get("id"), data.get("amount"), receipt)
        return data

    def verify(self, order_id: Optional[str], payment_id: Optional[str], signature: Optional[str]) -> bool:
        if not self.key_secret:
            raise GatewayError("Payment gateway not configured")
        return verify_signature(order_id, payment_id, signature, self.key_secret)

    def close(self) -> None:
        self._client.close()


def start_payment(db: Database, gateway: RazorpayGateway, user_id: str, order_id: str) -> Dict[str, Any]:
    order = find_by_id(db, "order", order_id, user_id=user_id)
    if not order or order["status"] not in (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value):
        raise NotFound("Order not found or not eligible for payment")

    existing = db["payment"].find_one({"order_id": order_id}, sort=[("created_at", -1)])
    if existing and existing["status"] == PaymentStatus.SUCCESS.value:
        raise BusinessRuleError("Payment already completed for this order")

    gateway_order = gateway.create_order(
        order["total_amount"],
        config.PAYMENT_CURRENCY,
        receipt=f"order_{order['order_number']}",
        notes={"order_id": order_id, "user_id": user_id, "order_number": order["order_number"]},
    )

    fields = {
        "amount": order["total_amount"],
        "currency": config.PAYMENT_CURRENCY,
        "status": PaymentStatus.PENDING.value,
        "payment_method": "RAZORPAY",
        "gateway_order_id": gateway_order["id"],
        "failure_reason": None,
    }
    if existing:
        db["payment"].update_one({"_id": existing["_id"]}, {"$set": dict(fields, updated_at=utcnow())})
        payment_id = str(existing["_id"])
    else:
        payment_id = create_document(db, "payment", Payment(order_id=order_id, user_id=user_id, **fields))
    payment = find_by_id(db, "payment", payment_id)

    return {
        "message": "Payment initiated successfully",
        "payment": {
            "id": payment_id,
            "amount": payment["amount"],
            "payment_method": payment["payment_method"],
            "status": payment["status"],
        },
        "order": {
            "id": order_id,
            "order_number": order["order_number"],
            "total_amount": order["total_amount"],
        },
        "razorpay": {
            "order_id": gateway_order["id"],
            "amount": gateway_order.get("amount"),
            "currency": gateway_order.get("currency", config.PAYMENT_CURRENCY),
            "key_id": gateway.key_id,
        },
    }


def confirm_payment(db: Database, gateway: RazorpayGateway, user_id: str, gateway_order_id: Optional[str],
                    payment_id: Optional[str], signature: Optional[str]) -> Dict[str, Any]:
    """
    Verify the gateway's signature and confirm the order it pays for.

    On success the payment becomes SUCCESS, the order CONFIRMED, its stock
    is committed, the cart is emptied and any coupon is redeemed. Confirming
    the same payment twice is a no-op. The returned ``confirmed_now`` flag
    tells the caller whether this call did the confirming.
    """
    if not gateway_order_id or not payment_id or not signature:
        raise ValidationError("Missing payment details")

    payment = db["payment"].find_one({"gateway_order_id": gateway_order_id})
    if not payment:
        raise NotFound("Payment record not found")
    if payment["user_id"] != user_id:
        raise Forbidden("Unauthorized access to payment")
    if payment["status"] == PaymentStatus.REFUNDED.value:
        raise BusinessRuleError(LATE_PAYMENT_MESSAGE, refund_amount=payment["amount"])

    if not gateway.verify(gateway_order_id, payment_id, signature):
        if payment["status"] != PaymentStatus.SUCCESS.value:
            db["payment"].update_one(
                {"_id": payment["_id"]},
                {"$set": {
                    "status": PaymentStatus.FAILED.value,
                    "gateway_payment_id": payment_id,
                    "failure_reason": "Invalid signature verification",
                    "updated_at": utcnow(),
                }},
            )
        logger.warning("Signature mismatch for gateway order %s", gateway_order_id)
        raise PaymentError("Payment verification failed")

    result = db["payment"].update_one(
        {"_id": payment["_id"], "status": {"$ne": PaymentStatus.SUCCESS.value}},
        {"$set": {
            "status": PaymentStatus.SUCCESS.value,
            "gateway_payment_id": payment_id,
            "failure_reason": None,
            "updated_at": utcnow(),
        }},
    )
    confirmed_now = result.modified_count == 1
    order_id = payment["order_id"]

    if confirmed_now:
        _settle_order(db, order_id, user_id, payment)

    order = serialize(find_by_id(db, "order", order_id))
    order["tracking"] = orders.tracking_for(db, order_id)
    return {
        "message": "Payment verified successfully",
        "order": order,
        "payment": serialize(find_by_id(db, "payment", str(payment["_id"]))),
        "confirmed_now": confirmed_now,
    }


def _settle_order(db: Database, order_id: str, user_id: str, payment: Dict[str, Any]) -> None:
    order = find_by_id(db, "order", order_id)
    moved = db["order"].update_one(
        {"_id": order["_id"], "status": OrderStatus.PENDING.value},
        {"$set": {
            "status": OrderStatus.CONFIRMED.value,
            "payment_status": PaymentStatus.SUCCESS.value,
            "updated_at": utcnow(),
        }},
    )
    if moved.modified_count == 1:
        orders.append_tracking(db, order_id, OrderStatus.CONFIRMED.value,
                               "Payment verified successfully - Order confirmed")
    elif order["status"] == OrderStatus.CONFIRMED.value:
        db["order"].update_one({"_id": order["_id"]},
                               {"$set": {"payment_status": PaymentStatus.SUCCESS.value, "updated_at": utcnow()}})
    else:
        _refund_late_payment(db, order, payment)
        raise BusinessRuleError(LATE_PAYMENT_MESSAGE, refund_amount=payment["amount"])

    orders.commit_inventory(db, order)
    cart.clear_cart(db, user_id)
    if order.get("coupon_id"):
        coupons.redeem(db, order["coupon_id"], user_id, order_id)
    logger.info("Order %s confirmed by payment", order["order_number"])


def _refund_late_payment(db: Database, order: Dict[str, Any], payment: Dict[str, Any]) -> None:
    """Money captured for an order that was cancelled meanwhile goes back in full."""
    order_id = str(order["_id"])
    db["payment"].update_one(
        {"_id": payment["_id"]},
        {"$set": {
            "status": PaymentStatus.REFUNDED.value,
            "failure_reason": f"Order was {order['status']} when payment completed",
            "updated_at": utcnow(),
        }},
    )
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {
            "payment_status": PaymentStatus.REFUNDED.value,
            "refund_amount": payment["amount"],
            "updated_at": utcnow(),
        }},
    )
    orders.append_tracking(db, order_id, order["status"],
                           f"Payment received after order was {order['status'].lower()}. "
                           f"Full refund of {payment['amount']:.2f} issued.")
    logger.warning("Payment captured for order %s in status %s, refunding %.2f",
                   order["order_number"], order["status"], payment["amount"])


def callback_redirect(form: Mapping[str, Any]) -> str:
    """Where to send the browser after the gateway posts its form callback."""
    values = {name: form.get(name) for name in CALLBACK_FIELDS}
    if all(values.values()):
        return "/payment/callback?" + urlencode(values)
    return "/orders?error=missing_payment_confirmation"
