"""
Runtime settings for the storefront API.

Values come from the environment (a local .env file is loaded first) and fall
back to development defaults.
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "hvac_store")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "480"))
AUTH_COOKIE_NAME = os.getenv("AUTH_COOKIE_NAME", "auth-token")
ADMIN_COOKIE_NAME = os.getenv("ADMIN_COOKIE_NAME", "admin-token")
COOKIE_SECURE = _bool("COOKIE_SECURE", "false")
RESET_TOKEN_TTL_MIN = int(os.getenv("RESET_TOKEN_TTL_MIN", "60"))
EMAIL_OTP_TTL_MIN = int(os.getenv("EMAIL_OTP_TTL_MIN", "10"))
# Unverified accounts cannot log in while this is on.
REQUIRE_EMAIL_VERIFICATION = _bool("REQUIRE_EMAIL_VERIFICATION", "true")

# Payment gateway
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_API_URL = os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")

# Pricing and order policy
FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", "500"))
SHIPPING_FEE = float(os.getenv("SHIPPING_FEE", "50"))
TAX_RATE = float(os.getenv("TAX_RATE", "0.18"))
CANCELLATION_WINDOW_HOURS = float(os.getenv("CANCELLATION_WINDOW_HOURS", "12"))
CANCELLATION_FEE_RATE = float(os.getenv("CANCELLATION_FEE_RATE", "0.05"))

# When true a coupon is redeemable once per user regardless of its per_user_limit.
COUPON_SINGLE_USE_PER_USER = _bool("COUPON_SINGLE_USE_PER_USER", "true")

# Mail
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
MAIL_FROM = os.getenv("MAIL_FROM", "no-reply@localhost")

# Web
APP_URL = os.getenv("APP_URL", "http://localhost:3000")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", "8000"))
