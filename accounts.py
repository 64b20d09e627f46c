"""
Customer accounts: signup with email verification, login, profile and password reset.
"""
import hashlib
import json
import re
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import addresses
import config
from auth import create_token, hash_password, public_user, verify_password
from database import create_document, find_by_id, utcnow
from errors import BusinessRuleError, Forbidden, NotFound, Unauthorized, ValidationError
from logger import get_logger
from schemas import ProfileUpdate, SignupRequest, User

logger = get_logger("accounts")

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, we have sent a password reset link."


def _hash_secret(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def issue_verification_code(db: Database, user: Dict[str, Any]) -> str:
    """Store a fresh 6 digit code (hashed) for the user and return it for mailing."""
    otp = f"{secrets.randbelow(10 ** 6):06d}"
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "email_verification_otp": _hash_secret(otp),
            "email_verification_expiry": utcnow() + timedelta(minutes=config.EMAIL_OTP_TTL_MIN),
        }},
    )
    return otp


def signup(db: Database, payload: SignupRequest) -> Tuple[Dict[str, Any], str, bool]:
    """
    Register an unverified account and issue its verification code.

    Signing up again with the email of an account that was never verified
    issues a new code instead of failing. Returns (user, code, created).
    """
    existing = db["user"].find_one({"email": payload.email})
    if existing:
        if existing.get("is_email_verified") is False:
            logger.info("Signup for unverified user id=%s, reissuing code", existing["_id"])
            return existing, issue_verification_code(db, existing), False
        raise BusinessRuleError("User with this email already exists")
    if payload.phone and db["user"].find_one({"phone": payload.phone}):
        raise BusinessRuleError("User with this phone number already exists")

    user = User(
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        hashed_password=hash_password(payload.password),
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise BusinessRuleError("Account already exists for provided details")
    doc = find_by_id(db, "user", user_id)
    logger.info("User registered id=%s", user_id)
    return doc, issue_verification_code(db, doc), True


def verify_email(db: Database, email: str, otp: str) -> Tuple[Dict[str, Any], str]:
    user = db["user"].find_one({
        "email": email.strip().lower(),
        "is_email_verified": False,
        "email_verification_otp": _hash_secret(otp),
        "email_verification_expiry": {"$gt": utcnow()},
    })
    if not user:
        raise ValidationError("Invalid or expired verification code")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "is_email_verified": True,
            "email_verification_otp": None,
            "email_verification_expiry": None,
            "updated_at": utcnow(),
        }},
    )
    user = find_by_id(db, "user", user["_id"])
    logger.info("Email verified for user id=%s", user["_id"])
    return user, create_token(user)


def resend_verification(db: Database, email: str) -> Tuple[Dict[str, Any], str]:
    user = db["user"].find_one({"email": email.strip().lower(), "is_email_verified": False})
    if not user:
        raise NotFound("User not found or already verified")
    return user, issue_verification_code(db, user)


def authenticate(db: Database, email_or_mobile: str, password: str) -> Dict[str, Any]:
    """Look a user up by email (anything with an @) or by mobile number and check the password."""
    login = email_or_mobile.strip()
    if "@" in login:
        user = db["user"].find_one({"email": login.lower()})
    else:
        phone = re.sub(r"\D", "", login)
        if not 10 <= len(phone) <= 15:
            raise ValidationError("Invalid email or mobile number")
        user = db["user"].find_one({"phone": phone})

    if not user or not user.get("hashed_password"):
        raise Unauthorized("Invalid credentials")
    if user.get("is_active") is False:
        raise Forbidden("Account is deactivated")
    if not verify_password(password, user["hashed_password"]):
        raise Unauthorized("Invalid credentials")
    if config.REQUIRE_EMAIL_VERIFICATION and user.get("is_email_verified") is False:
        raise Forbidden("Please verify your email to continue", requires_verification=True)
    return user


def login(db: Database, email_or_mobile: str, password: str) -> Tuple[Dict[str, Any], str]:
    user = authenticate(db, email_or_mobile, password)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login_at": utcnow()}})
    return user, create_token(user)


def get_profile(db: Database, user: Dict[str, Any]) -> Dict[str, Any]:
    profile = public_user(user)
    profile["created_at"] = user.get("created_at")
    profile["updated_at"] = user.get("updated_at")
    profile["addresses"] = addresses.list_addresses(db, str(user["_id"]))
    return profile


def profile_etag(profile: Dict[str, Any]) -> str:
    body = json.dumps(profile, sort_keys=True, default=str)
    return '"' + hashlib.md5(body.encode()).hexdigest() + '"'


def update_profile(db: Database, user: Dict[str, Any], payload: ProfileUpdate) -> Dict[str, Any]:
    update = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "phone" in update:
        phone = re.sub(r"\D", "", update["phone"])
        if not 10 <= len(phone) <= 15:
            raise ValidationError("Phone number must be 10-15 digits")
        if db["user"].find_one({"phone": phone, "_id": {"$ne": user["_id"]}}):
            raise BusinessRuleError("Phone number is already in use")
        update["phone"] = phone
    update["updated_at"] = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    return get_profile(db, find_by_id(db, "user", user["_id"]))


def forgot_password(db: Database, email: str) -> Optional[Tuple[Dict[str, Any], str]]:
    """
    Issue a reset token for the account, if there is one.

    Returns (user, reset link) for the caller to mail, or None. Callers
    answer with FORGOT_PASSWORD_MESSAGE either way.
    """
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user or user.get("is_active") is False:
        return None
    token = secrets.token_urlsafe(32)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "reset_token": _hash_secret(token),
            "reset_token_expiry": utcnow() + timedelta(minutes=config.RESET_TOKEN_TTL_MIN),
        }},
    )
    return user, f"{config.APP_URL}/reset-password?token={token}"


def reset_password(db: Database, token: str, password: str) -> None:
    user = db["user"].find_one({
        "reset_token": _hash_secret(token),
        "reset_token_expiry": {"$gt": utcnow()},
    })
    if not user:
        raise ValidationError("Invalid or expired reset token")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "hashed_password": hash_password(password),
            "reset_token": None,
            "reset_token_expiry": None,
            "updated_at": utcnow(),
        }},
    )
    logger.info("Password reset for user id=%s", user["_id"])
