import logging
import time
from datetime import timedelta
from typing import List, Optional

from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ReturnDocument

from cart import clear_cart
from database import as_utc, create_document, db, now_utc, oid, to_str_id
from order_events import publish_order
from products import consolidated_delivery
from schemas import Order, OrderItem, OrderStatus, OrderStatusLog, PaymentMethod, PaymentStatus
from settings import BRANCH_CODE, PENDING_ORDER_TTL_MINUTES

logger = logging.getLogger(__name__)


class OrderDetails(BaseModel):
    customer_id: str
    customer_name: str
    phone_number: Optional[str] = None
    address: Optional[dict] = None
    items: List[OrderItem] = []
    subtotal: float
    delivery_fee: float = 0
    discount: float = 0
    grand_total: float
    coupon_code: Optional[str] = None
    coupon_discount: Optional[float] = None


def new_order_number() -> int:
    return int(time.time() * 1000)


def build_order(details: OrderDetails, method: PaymentMethod, order_number: Optional[int] = None) -> Order:
    if not details.address:
        raise HTTPException(status_code=400, detail="Please select a delivery address")
    if not details.items:
        raise HTTPException(status_code=400, detail="Your cart is empty")

    addr = details.address
    online = method == PaymentMethod.ONLINE
    delivery = consolidated_delivery([it.model_dump() for it in details.items], now_utc())
    return Order(
        order_number=order_number or new_order_number(),
        customer_id=details.customer_id,
        customer_name=details.customer_name or "Customer",
        phone_number=details.phone_number or addr.get("phone_number", ""),
        address_id=addr["address_id"],
        address_name=addr.get("address_name", ""),
        address_lines=addr["address_lines"],
        address_landmark=addr.get("landmark", ""),
        address_pincode=str(addr["pincode"]),
        address_phone_number=addr.get("phone_number", ""),
        latitude=addr.get("latitude"),
        longitude=addr.get("longitude"),
        branch_code=addr.get("branch_code") or BRANCH_CODE,
        items=details.items,
        sub_total=details.subtotal,
        delivery_charge=details.delivery_fee,
        discount=details.discount,
        grand_total=details.grand_total,
        mode_of_payment=method,
        status=OrderStatus.PAYMENT_PENDING if online else OrderStatus.PLACED,
        payment_status=PaymentStatus.PENDING if online else PaymentStatus.UNPAID,
        coupon_code=details.coupon_code,
        coupon_discount=details.coupon_discount,
        delivery_date=delivery["date"],
    )


def create_order(details: OrderDetails, order_number: Optional[int] = None) -> dict:
    """Cash-on-delivery order, placed straight away."""
    order = build_order(details, PaymentMethod.COD, order_number)
    order_id = create_document("order", order)
    logger.info("COD order %s created (number %s)", order_id, order.order_number)
    return {"order_id": order_id, "order_number": order.order_number}


def create_order_for_payment(details: OrderDetails, order_number: Optional[int] = None, retry_of: Optional[str] = None) -> dict:
    """Online order reserved as payment_pending until the gateway reports back."""
    order = build_order(details, PaymentMethod.ONLINE, order_number)
    order.retry_of = retry_of
    order_id = create_document("order", order)
    logger.info("Order %s created for payment (number %s)", order_id, order.order_number)
    return {"order_id": order_id, "order_number": order.order_number}


def log_status_change(before: dict, after: dict) -> None:
    create_document("orderstatuslog", OrderStatusLog(
        order_id=str(after["_id"]),
        order_number=after.get("order_number"),
        customer_id=after.get("customer_id"),
        payment_status_from=before.get("payment_status"),
        payment_status_to=after.get("payment_status"),
        status_from=before.get("status"),
        status_to=after.get("status"),
    ))


def update_order_payment_status(order_id: str, payment_status: str, details: Optional[dict] = None, reason: Optional[str] = None) -> dict:
    """Move an order out of `pending`. Writing the status it already has is a no-op."""
    if payment_status not in (PaymentStatus.PAID.value, PaymentStatus.FAILED.value):
        raise HTTPException(status_code=400, detail=f"Unsupported payment status: {payment_status}")

    now = now_utc()
    update = {"payment_status": payment_status, "updated_at": now}
    if payment_status == PaymentStatus.PAID.value:
        update.update(status=OrderStatus.PLACED.value, payment_verified_at=now)
    else:
        update.update(
            status=OrderStatus.PAYMENT_FAILED.value,
            payment_failed_at=now,
            payment_failure_reason=reason or "Payment failed",
        )
    for key, value in (details or {}).items():
        if value is not None:
            update[key] = value

    _id = oid(order_id)
    before = db["order"].find_one_and_update(
        {"_id": _id, "payment_status": PaymentStatus.PENDING.value},
        {"$set": update},
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        current = db["order"].find_one({"_id": _id})
        if not current:
            raise HTTPException(status_code=404, detail="Order not found")
        if current.get("payment_status") == payment_status:
            return to_str_id(current)
        raise HTTPException(status_code=409, detail=f"Order payment is already {current.get('payment_status')}")

    after = db["order"].find_one({"_id": _id})
    log_status_change(before, after)
    logger.info("Order %s payment status updated to %s", order_id, payment_status)
    if payment_status == PaymentStatus.PAID.value:
        clear_cart(after["customer_id"])
    return publish_order(order_id)


def set_gateway_order(order_id: str, razorpay_order_id: str) -> None:
    res = db["order"].update_one(
        {"_id": oid(order_id), "payment_status": PaymentStatus.PENDING.value},
        {"$set": {"razorpay_order_id": razorpay_order_id, "updated_at": now_utc()}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=409, detail="Order is no longer awaiting payment")
    publish_order(order_id)


def get_order(order_id: str) -> dict:
    order = db["order"].find_one({"_id": oid(order_id)})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def get_customer_order(order_id: str, user: dict) -> dict:
    order = get_order(order_id)
    if order.get("customer_id") != user["uid"]:
        raise HTTPException(status_code=403, detail="Order does not belong to this customer")
    return order


def list_customer_orders(customer_id: str, limit: int = 50) -> List[dict]:
    cursor = db["order"].find({"customer_id": customer_id}).sort("created_at", -1).limit(limit)
    return [to_str_id(o) for o in cursor]


def ui_status(status: Optional[str]) -> str:
    status = (status or "").lower()
    if status == "placed":
        return "pending"
    if status in ("assigned", "confirmed"):
        return "confirmed"
    if status in ("shipped", "picked"):
        return "shipped"
    if status in ("delivered", "completed"):
        return "delivered"
    if status in ("cancelled", "canceled"):
        return "cancelled"
    if status in ("payment_pending", "payment_failed"):
        return status
    return "pending"


def map_order_for_ui(order: dict) -> dict:
    order = to_str_id(order) if "_id" in order else dict(order)
    return {
        "id": str(order.get("order_number") or order.get("id")),
        "order_id": order.get("id"),
        "date": order.get("created_at"),
        "status": ui_status(order.get("status")),
        "items": order.get("items", []),
        "total": order.get("grand_total", 0),
        "subtotal": order.get("sub_total", 0),
        "delivery_charge": order.get("delivery_charge", 0),
        "discount": order.get("discount", 0),
        "delivery_date": order.get("delivery_date"),
        "customer_name": order.get("customer_name", ""),
        "phone_number": order.get("phone_number", ""),
        "address": {
            "name": order.get("address_name", ""),
            "lines": order.get("address_lines", ""),
            "landmark": order.get("address_landmark", ""),
            "pincode": order.get("address_pincode", ""),
            "phone": order.get("address_phone_number", ""),
        },
        "payment_status": order.get("payment_status") or PaymentStatus.UNPAID.value,
        "mode_of_payment": order.get("mode_of_payment") or PaymentMethod.COD.value,
    }


def retry_payment(order_id: str, user: dict) -> dict:
    """New pending order for the contents of a failed one; the failed order stays failed."""
    order = get_customer_order(order_id, user)
    if order.get("mode_of_payment") != PaymentMethod.ONLINE.value or order.get("payment_status") != PaymentStatus.FAILED.value:
        raise HTTPException(status_code=409, detail="Only failed online payments can be retried")
    details = OrderDetails(
        customer_id=order["customer_id"],
        customer_name=order["customer_name"],
        phone_number=order.get("phone_number"),
        address={
            "address_id": order["address_id"],
            "address_name": order.get("address_name", ""),
            "address_lines": order["address_lines"],
            "landmark": order.get("address_landmark", ""),
            "pincode": order["address_pincode"],
            "phone_number": order.get("address_phone_number", ""),
            "latitude": order.get("latitude"),
            "longitude": order.get("longitude"),
            "branch_code": order.get("branch_code"),
        },
        items=order["items"],
        subtotal=order["sub_total"],
        delivery_fee=order.get("delivery_charge", 0),
        discount=order.get("discount", 0),
        grand_total=order["grand_total"],
        coupon_code=order.get("coupon_code"),
        coupon_discount=order.get("coupon_discount"),
    )
    return create_order_for_payment(details, retry_of=order_id)


def expire_pending_orders(max_age_minutes: int = PENDING_ORDER_TTL_MINUTES) -> List[str]:
    """Fail online orders left in pending longer than `max_age_minutes`."""
    cutoff = now_utc() - timedelta(minutes=max_age_minutes)
    stale = list(db["order"].find({
        "payment_status": PaymentStatus.PENDING.value,
        "status": OrderStatus.PAYMENT_PENDING.value,
    }))
    expired = []
    for order in stale:
        if as_utc(order["created_at"]) >= cutoff:
            continue
        order_id = str(order["_id"])
        try:
            update_order_payment_status(order_id, PaymentStatus.FAILED.value, reason="expired")
        except HTTPException as e:
            if e.status_code != 409:
                raise
            # paid between the query and the update
            continue
        expired.append(order_id)
    if expired:
        logger.info("Expired %d pending orders", len(expired))
        create_document("orderstatuslog", {"event": "order_cleanup", "expired_order_ids": expired, "cutoff": cutoff})
    return expired
