import logging
import math
import re
import secrets
from datetime import timedelta

from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import sms
from database import as_utc, db, now_utc
from schemas import OTP
from settings import (
    OTP_EXPIRY_MINUTES,
    OTP_LENGTH,
    OTP_MAX_ATTEMPTS,
    OTP_RESEND_COOLDOWN_SECONDS,
    STORE_NAME,
)

logger = logging.getLogger(__name__)

phone_regex = re.compile(r"^\+\d{10,14}$")


def otp_error(status_code: int, message: str, code: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"message": message, "code": code})


def format_phone_number(phone: str) -> str:
    """Normalise to E.164, assuming an Indian number when no country code is given."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        formatted = f"+91{digits}"
    elif len(digits) == 12 and digits.startswith("91"):
        formatted = f"+{digits}"
    elif phone and phone.strip().startswith("+"):
        formatted = f"+{digits}"
    else:
        formatted = f"+91{digits[-10:]}"
    if not phone_regex.match(formatted):
        raise otp_error(400, "Invalid phone number format", "INVALID_PHONE")
    return formatted


def generate_otp() -> str:
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def resend_cooldown_remaining(phone: str) -> int:
    """Seconds until a new code may be requested for this phone."""
    otp = db["otp"].find_one({"phone": format_phone_number(phone)})
    if not otp:
        return 0
    cooldown_end = as_utc(otp["created_at"]) + timedelta(seconds=OTP_RESEND_COOLDOWN_SECONDS)
    remaining = (cooldown_end - now_utc()).total_seconds()
    return max(0, math.ceil(remaining))


def otp_remaining_time(phone: str) -> int:
    otp = db["otp"].find_one({"phone": format_phone_number(phone)})
    if not otp:
        return 0
    remaining = (as_utc(otp["expires_at"]) - now_utc()).total_seconds()
    return max(0, math.ceil(remaining))


def send_otp(phone_number: str, is_resend: bool = False) -> dict:
    phone = format_phone_number(phone_number)
    now = now_utc()
    code = generate_otp()
    expires = now + timedelta(minutes=OTP_EXPIRY_MINUTES)

    # one challenge per phone, keyed by it; inside the cooldown the filter
    # misses and the upsert collides with the live challenge
    challenge = OTP(phone=phone, code=code, expires_at=expires).model_dump()
    try:
        db["otp"].update_one(
            {"_id": phone, "created_at": {"$lte": now - timedelta(seconds=OTP_RESEND_COOLDOWN_SECONDS)}},
            {"$set": {**challenge, "created_at": now, "updated_at": now}},
            upsert=True,
        )
    except DuplicateKeyError:
        wait = max(1, resend_cooldown_remaining(phone))
        raise otp_error(429, f"Please wait {wait} seconds before requesting a new OTP", "RESEND_COOLDOWN")

    message = f"Your {STORE_NAME} verification code is: {code}. Valid for {OTP_EXPIRY_MINUTES} minutes. Do not share this code."
    try:
        message_id = sms.provider.send(phone, message)
    except HTTPException:
        db["otp"].delete_one({"_id": phone, "code": code})
        raise

    logger.info("OTP sent to %s via %s (resend=%s)", sms.mask_phone(phone), sms.provider.name, is_resend)
    response = {
        "success": True,
        "message": "OTP sent",
        "phone": phone,
        "expires_at": expires.isoformat(),
        "resend_after": OTP_RESEND_COOLDOWN_SECONDS,
        "message_id": message_id,
    }
    if sms.provider.name == "mock":
        response["demo_code"] = code
    return response


def verify_otp(phone_number: str, code: str) -> str:
    """Check a code against the pending challenge. Returns the normalised phone."""
    phone = format_phone_number(phone_number)
    otp = db["otp"].find_one({"phone": phone})
    if not otp:
        raise otp_error(400, "No OTP session found. Please request a new OTP.", "NO_SESSION")

    if as_utc(otp["expires_at"]) < now_utc():
        db["otp"].delete_one({"_id": otp["_id"]})
        raise otp_error(400, "OTP has expired. Please request a new one.", "OTP_EXPIRED")

    # the attempt is counted before the code is compared
    counted = db["otp"].find_one_and_update(
        {"_id": otp["_id"], "attempts": {"$lt": OTP_MAX_ATTEMPTS}},
        {"$inc": {"attempts": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if counted is None:
        db["otp"].delete_one({"_id": otp["_id"], "code": otp["code"]})
        raise otp_error(400, "Too many failed attempts. Please request a new OTP.", "MAX_ATTEMPTS_EXCEEDED")

    if counted["code"] != (code or "").strip():
        remaining = OTP_MAX_ATTEMPTS - counted["attempts"]
        raise otp_error(400, f"Invalid OTP. {remaining} attempts remaining.", "INVALID_OTP")

    if db["otp"].delete_one({"_id": otp["_id"], "code": counted["code"]}).deleted_count == 0:
        # a concurrent request already used this code
        raise otp_error(400, "No OTP session found. Please request a new OTP.", "NO_SESSION")
    logger.info("OTP verified for %s", sms.mask_phone(phone))
    return phone
