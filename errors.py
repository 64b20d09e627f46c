"""Domain exceptions and their HTTP mapping."""
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from logger import get_logger

logger = get_logger("errors")


class StoreError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class ValidationError(StoreError):
    """Malformed input that passed schema parsing but is still unusable."""

    status_code = 400
    default_message = "Invalid request data"


class Unauthorized(StoreError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(StoreError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(StoreError):
    status_code = 404
    default_message = "Not found"


class BusinessRuleError(StoreError):
    """A request that is well formed but violates a store rule."""

    status_code = 400
    default_message = "Request conflicts with the current state"


Conflict = BusinessRuleError


class InsufficientStock(BusinessRuleError):
    default_message = "Insufficient stock"

    def __init__(self, available_stock: int, requested_quantity: int, message: str = None, **extra: Any):
        self.available_stock = available_stock
        self.requested_quantity = requested_quantity
        super().__init__(
            message,
            available_stock=available_stock,
            requested_quantity=requested_quantity,
            **extra,
        )


class ProductUnavailable(BusinessRuleError):
    default_message = "Product not found or not available"


class WindowExpired(BusinessRuleError):
    default_message = "Cancellation window expired"


class InvalidOrderState(BusinessRuleError):
    default_message = "Order cannot be changed at this stage"


class CouponError(BusinessRuleError):
    default_message = "Invalid or expired coupon code"


class PaymentError(BusinessRuleError):
    default_message = "Payment verification failed"


class GatewayError(StoreError):
    """The payment gateway was unreachable, misconfigured or refused the call."""

    status_code = 500
    default_message = "Payment gateway error"


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors, request validation and unexpected failures to JSON responses."""

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request data", "details": details},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
