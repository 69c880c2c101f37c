import logging
import re
import secrets
import time
from typing import List, Optional

from fastapi import Header, HTTPException

import sms
from database import create_document, db, now_utc, oid, to_str_id
from otp_service import verify_otp
from schemas import Address, AuthOutcome, Session, User

logger = logging.getLogger(__name__)


def generate_keywords(display_name: str) -> List[str]:
    """Prefixes of the full name plus each word, for name search."""
    name = display_name.strip().lower()
    keywords = []
    prefix = ""
    for ch in name:
        prefix += ch
        if prefix.strip() and prefix not in keywords:
            keywords.append(prefix)
    for part in name.split():
        if part not in keywords:
            keywords.append(part)
    return keywords


def new_uid(phone: str) -> str:
    return f"phone_{re.sub(r'[^0-9]', '', phone)}_{int(time.time() * 1000)}"


def find_user_by_phone(phone: str) -> Optional[dict]:
    return db["user"].find_one({"phone_number": phone})


def issue_session(phone: str, uid: str, user_id: Optional[str]) -> str:
    token = secrets.token_urlsafe(24)
    create_document("session", Session(token=token, phone=phone, uid=uid, user_id=user_id))
    return token


def verify_otp_and_authenticate(phone_number: str, code: str) -> dict:
    phone = verify_otp(phone_number, code)

    user = find_user_by_phone(phone)
    if user is None:
        uid = new_uid(phone)
        token = issue_session(phone, uid, None)
        logger.info("New customer %s verified, awaiting profile", sms.mask_phone(phone))
        return {"success": True, "outcome": AuthOutcome.NEW.value, "token": token, "phone": phone, "user": None}

    outcome = AuthOutcome.EXISTING
    if user.get("is_deactivated"):
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {"is_deactivated": False, "reactivated_at": now_utc(), "updated_at": now_utc()}},
        )
        user = db["user"].find_one({"_id": user["_id"]})
        outcome = AuthOutcome.REACTIVATED
        logger.info("Reactivated account %s", user["uid"])

    token = issue_session(phone, user["uid"], str(user["_id"]))
    return {"success": True, "outcome": outcome.value, "token": token, "phone": phone, "user": to_str_id(user)}


def get_session(authorization: Optional[str] = Header(None)) -> dict:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing session token")
    token = authorization[7:] if authorization.startswith("Bearer ") else authorization
    session = db["session"].find_one({"token": token})
    if not session:
        raise HTTPException(status_code=401, detail="Invalid session")
    return session


def require_user(authorization: Optional[str] = Header(None)) -> dict:
    session = get_session(authorization)
    if not session.get("user_id"):
        raise HTTPException(status_code=403, detail="Complete your profile first")
    user = db["user"].find_one({"_id": oid(session["user_id"])})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if user.get("is_deactivated"):
        raise HTTPException(status_code=403, detail="Account is deactivated")
    return user


def complete_profile(session: dict, display_name: str, address: Optional[Address] = None) -> dict:
    if session.get("user_id"):
        raise HTTPException(status_code=409, detail="Profile already exists")
    phone = session["phone"]
    if find_user_by_phone(phone):
        raise HTTPException(status_code=409, detail="User with this phone number already exists")

    display_name = display_name.strip()
    if not display_name:
        raise HTTPException(status_code=400, detail="Name is required")

    addresses = []
    if address is not None:
        address = address.model_copy(update={"phone_number": phone})
        addresses.append(address)

    user = User(
        uid=session["uid"],
        display_name=display_name,
        phone_number=phone,
        keywords=generate_keywords(display_name),
        addresses=addresses,
    )
    user_id = create_document("user", user)
    db["session"].update_one({"_id": session["_id"]}, {"$set": {"user_id": user_id, "updated_at": now_utc()}})
    logger.info("Created profile %s for %s", user.uid, sms.mask_phone(phone))
    return to_str_id(db["user"].find_one({"_id": oid(user_id)}))


def update_profile(user: dict, display_name: str) -> dict:
    display_name = display_name.strip()
    if not display_name:
        raise HTTPException(status_code=400, detail="Name is required")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"display_name": display_name, "keywords": generate_keywords(display_name), "updated_at": now_utc()}},
    )
    return to_str_id(db["user"].find_one({"_id": user["_id"]}))


def deactivate_account(user: dict) -> None:
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"is_deactivated": True, "deactivated_at": now_utc(), "updated_at": now_utc()}},
    )
    db["session"].delete_many({"user_id": str(user["_id"])})
    logger.info("Deactivated account %s", user["uid"])


def sign_out(session: dict) -> None:
    db["session"].delete_one({"_id": session["_id"]})
