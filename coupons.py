import logging

from fastapi import HTTPException

from database import as_utc, create_document, db, now_utc
from schemas import Redemption

logger = logging.getLogger(__name__)


def invalid(error: str) -> dict:
    return {"is_valid": False, "error": error}


def validate_coupon(code: str, user_id: str, cart_total: float) -> dict:
    """Check a coupon against its window, usage limits and minimum cart total.

    `cart_total` is the amount the discount applies to (items plus delivery).
    The discount never exceeds it.
    """
    code = (code or "").strip().upper()
    coupon = db["coupon"].find_one({"code": code})
    if not coupon:
        return invalid("Invalid coupon code")
    if not coupon.get("is_active", False):
        return invalid("This coupon is no longer active")

    now = now_utc()
    if coupon.get("start_at") and now < as_utc(coupon["start_at"]):
        return invalid("This coupon is not yet active")
    if coupon.get("expires_at") and now > as_utc(coupon["expires_at"]):
        return invalid("This coupon has expired")

    limit = coupon.get("usage_limit_global")
    if limit and coupon.get("used_count", 0) >= limit:
        return invalid("This coupon has reached its usage limit")

    per_user = coupon.get("usage_limit_per_user")
    if per_user and db["redemption"].count_documents({"code": code, "uid": user_id}) >= per_user:
        return invalid("You have already used this coupon the maximum number of times")

    minimum = coupon.get("min_cart_total")
    if minimum and cart_total < minimum:
        return invalid(f"Minimum order value of ₹{minimum:g} required for this coupon")

    if coupon["type"] == "FLAT":
        discount = float(coupon.get("flat_amount") or 0)
    else:
        discount = cart_total * float(coupon.get("percent") or 0) / 100
        if coupon.get("max_discount"):
            discount = min(discount, float(coupon["max_discount"]))
    discount = round(min(discount, cart_total), 2)

    return {"is_valid": True, "code": code, "type": coupon["type"], "discount_amount": discount}


def apply_coupon(code: str, user_id: str, order_number: int, discount_amount: float, branch_code: str = "MAIN") -> None:
    """Count a redemption. Raises 409 when the global limit was reached meanwhile."""
    code = code.strip().upper()
    for _ in range(3):
        coupon = db["coupon"].find_one({"code": code})
        if not coupon:
            raise HTTPException(status_code=404, detail="Coupon not found")
        used = coupon.get("used_count", 0)
        limit = coupon.get("usage_limit_global")
        if limit and used >= limit:
            raise HTTPException(status_code=409, detail="Coupon usage limit exceeded")
        # only counts if nobody redeemed between the read and this write
        res = db["coupon"].update_one(
            {"_id": coupon["_id"], "used_count": used},
            {"$set": {"used_count": used + 1, "updated_at": now_utc()}},
        )
        if res.modified_count == 1:
            break
    else:
        raise HTTPException(status_code=409, detail="Coupon is busy, please try again")

    create_document("redemption", Redemption(
        code=code,
        uid=user_id,
        order_number=order_number,
        discount_amount=discount_amount,
        branch_code=branch_code,
    ))
    logger.info("Coupon %s redeemed by %s for order %s", code, user_id, order_number)
