"""
Razorpay integration.

The browser opens the Razorpay checkout widget with the options returned by
`initiate_payment` and reports what the widget said through
`record_payment_result`. Razorpay also calls the webhook on its own, so an
order may be settled by whichever of the two arrives first.
"""
import hashlib
import hmac
import json
import logging
from typing import Literal, Optional

import requests
from fastapi import HTTPException
from pydantic import BaseModel

from database import create_document, db, to_str_id
from order_service import get_order, set_gateway_order, update_order_payment_status
from schemas import PaymentLog, PaymentMethod, PaymentStatus
from settings import (
    HTTP_TIMEOUT,
    RAZORPAY_API_URL,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
    RAZORPAY_WEBHOOK_SECRET,
    STORE_NAME,
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Payment cancelled by user"


class PaymentOptions(BaseModel):
    customer_name: str = "Customer"
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    description: Optional[str] = None


class PaymentResultIn(BaseModel):
    outcome: Optional[Literal["success", "failed", "cancelled"]] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    error: Optional[str] = None


def sign(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_payment_signature(razorpay_order_id: str, razorpay_payment_id: str, signature: str) -> bool:
    expected = sign(RAZORPAY_KEY_SECRET, f"{razorpay_order_id}|{razorpay_payment_id}".encode())
    return hmac.compare_digest(expected, signature or "")


def verify_webhook_signature(body: bytes, signature: str) -> bool:
    return hmac.compare_digest(sign(RAZORPAY_WEBHOOK_SECRET, body), signature or "")


def classify_payment_error(error: Optional[str]) -> str:
    return "cancelled" if error and "cancel" in error.lower() else "failed"


def log_payment(event: str, status: str, **fields) -> None:
    create_document("paymentlog", PaymentLog(event=event, status=status, **fields))


def create_razorpay_order(amount: float, receipt: str, currency: str = "INR") -> dict:
    if not RAZORPAY_KEY_ID or not RAZORPAY_KEY_SECRET:
        raise HTTPException(status_code=500, detail="Payment configuration error")
    try:
        resp = requests.post(
            f"{RAZORPAY_API_URL}/orders",
            auth=(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET),
            json={
                "amount": int(round(amount * 100)),
                "currency": currency,
                "receipt": receipt,
                "payment_capture": 1,
            },
            timeout=HTTP_TIMEOUT,
        )
        data = resp.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.warning("Razorpay order creation failed for %s: %s", receipt, e)
        raise HTTPException(status_code=502, detail="Payment service is unreachable. Please try again shortly.")
    if resp.status_code != 200:
        message = (data.get("error") or {}).get("description") or "Failed to create payment order"
        logger.warning("Razorpay rejected order for %s: %s", receipt, message)
        raise HTTPException(status_code=502, detail=message)
    return {"id": data["id"], "amount": data["amount"], "currency": data["currency"], "receipt": data.get("receipt")}


def initiate_payment(options: PaymentOptions, order_id: str) -> dict:
    """Create the gateway order and return what the checkout widget needs."""
    order = get_order(order_id)
    if order.get("mode_of_payment") != PaymentMethod.ONLINE.value:
        raise HTTPException(status_code=400, detail="Cash on delivery orders need no payment")
    if order.get("payment_status") != PaymentStatus.PENDING.value:
        raise HTTPException(status_code=409, detail=f"Order payment is already {order.get('payment_status')}")

    gateway = create_razorpay_order(order["grand_total"], receipt=order_id)
    set_gateway_order(order_id, gateway["id"])
    log_payment("order.created", "created", order_id=order_id, razorpay_order_id=gateway["id"], amount=order["grand_total"])
    return {
        "key": RAZORPAY_KEY_ID,
        "amount": gateway["amount"],
        "currency": gateway["currency"],
        "name": STORE_NAME,
        "description": options.description or f"{STORE_NAME} - Order #{order['order_number']}",
        "order_id": gateway["id"],
        "prefill": {
            "name": options.customer_name or order.get("customer_name", ""),
            "email": options.customer_email or "",
            "contact": options.customer_phone or order.get("phone_number", ""),
        },
        "notes": {"order_id": order_id},
        "theme": {"color": "#10B981"},
    }


def verification_problem(order: dict, result: PaymentResultIn) -> Optional[str]:
    """Why a checkout-widget success report cannot be trusted, or None."""
    expected_gateway_order = order.get("razorpay_order_id")
    if not expected_gateway_order:
        return "Payment was never initiated for this order"
    if result.razorpay_order_id != expected_gateway_order:
        return "Gateway order does not match"
    if not verify_payment_signature(result.razorpay_order_id, result.razorpay_payment_id, result.razorpay_signature):
        return "Invalid signature"
    if db["order"].find_one({"payment_id": result.razorpay_payment_id, "_id": {"$ne": order["_id"]}}):
        return "Payment already used for another order"
    return None


def record_payment_result(order_id: str, result: PaymentResultIn) -> dict:
    """Settle an order from what the checkout widget reported.

    A success report that fails verification leaves the order pending and
    raises 400; the webhook or a later retry still decides the outcome.
    """
    order = get_order(order_id)
    if result.outcome in (None, "success") and result.razorpay_payment_id:
        problem = verification_problem(order, result)
        if problem:
            logger.error("Payment verification failed for order %s: %s", order_id, problem)
            log_payment("payment.verification_failed", "failed", order_id=order_id,
                        razorpay_order_id=result.razorpay_order_id, razorpay_payment_id=result.razorpay_payment_id,
                        error=problem)
            raise HTTPException(status_code=400, detail="Payment verification failed")

        snapshot = update_order_payment_status(order_id, PaymentStatus.PAID.value, {
            "payment_id": result.razorpay_payment_id,
            "razorpay_order_id": result.razorpay_order_id,
            "payment_signature": result.razorpay_signature,
        })
        log_payment("payment.verified", "success", order_id=order_id,
                    razorpay_order_id=result.razorpay_order_id, razorpay_payment_id=result.razorpay_payment_id)
        return {"success": True, "outcome": "success", "payment_id": result.razorpay_payment_id, "order": snapshot}

    error = result.error or (CANCELLED_MESSAGE if result.outcome == "cancelled" else "Payment failed")
    outcome = result.outcome if result.outcome in ("failed", "cancelled") else classify_payment_error(error)
    log_payment("payment.marked_failed", "failed", order_id=order_id, error=error)
    snapshot = update_order_payment_status(order_id, PaymentStatus.FAILED.value, reason=error)
    return {"success": False, "outcome": outcome, "error": error, "order": snapshot}


def find_order_by_gateway_id(razorpay_order_id: str) -> Optional[dict]:
    return db["order"].find_one({"razorpay_order_id": razorpay_order_id})


def handle_webhook(body: bytes, signature: Optional[str]) -> dict:
    if not RAZORPAY_WEBHOOK_SECRET:
        logger.error("Razorpay webhook secret not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")
    if not signature:
        raise HTTPException(status_code=400, detail="Missing signature")
    if not verify_webhook_signature(body, signature):
        logger.error("Invalid webhook signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        payload = json.loads(body)
        event = payload["event"]
    except (ValueError, KeyError):
        raise HTTPException(status_code=400, detail="Malformed webhook payload")

    logger.info("Received webhook: %s", event)
    if event not in ("payment.captured", "payment.failed", "payment.authorized"):
        logger.info("Unhandled webhook event: %s", event)
        return {"status": "ignored"}

    payment = payload["payload"]["payment"]["entity"]
    gateway_order_id = payment.get("order_id")
    amount = payment.get("amount", 0) / 100
    common = {
        "razorpay_order_id": gateway_order_id,
        "razorpay_payment_id": payment.get("id"),
        "amount": amount,
        "method": payment.get("method"),
    }

    if event == "payment.authorized":
        # auto-capture follows with payment.captured
        log_payment(event, "authorized", **common)
        return {"status": "success"}

    order = find_order_by_gateway_id(gateway_order_id)
    if not order:
        logger.error("Order not found for Razorpay order ID: %s", gateway_order_id)
        log_payment(event, "unmatched", **common)
        return {"status": "success"}
    order_id = str(order["_id"])

    try:
        if event == "payment.captured":
            update_order_payment_status(order_id, PaymentStatus.PAID.value, {
                "payment_id": payment.get("id"),
                "payment_method": payment.get("method"),
                "payment_amount": amount,
            })
            log_payment(event, "success", order_id=order_id, **common)
        else:
            error = payment.get("error_description") or "Payment failed"
            update_order_payment_status(order_id, PaymentStatus.FAILED.value, {
                "payment_id": payment.get("id"),
                "payment_error_code": payment.get("error_code"),
            }, reason=error)
            log_payment(event, "failed", order_id=order_id, error=error, **common)
    except HTTPException as e:
        if e.status_code != 409:
            raise
        # already settled the other way by the checkout widget
        logger.warning("Webhook %s conflicts with order %s: %s", event, order_id, e.detail)
        log_payment(event, "conflict", order_id=order_id, error=str(e.detail), **common)
    return {"status": "success"}


def payment_status(order_id: str) -> dict:
    order = to_str_id(get_order(order_id))
    return {
        "order_id": order_id,
        "order_number": order.get("order_number"),
        "payment_status": order.get("payment_status"),
        "order_status": order.get("status"),
        "payment_id": order.get("payment_id"),
    }
