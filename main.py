import asyncio
import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

import addresses
import auth_service
import cart
import order_service
import payment_service
from checkout import checkout
from coupons import validate_coupon
from database import db, to_str_id
from order_events import order_status_stream
from otp_service import otp_remaining_time, resend_cooldown_remaining, send_otp
from pincodes import list_serviceable_pincodes, validate_pincode
from products import get_product, list_products
from schemas import PaymentMethod
from settings import STORE_NAME

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=f"{STORE_NAME} API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Models (request)
class SendOTPIn(BaseModel):
    phone_number: str
    is_resend: bool = False

class VerifyOTPIn(BaseModel):
    phone_number: str
    code: str = Field(..., min_length=4, max_length=8)

class CompleteProfileIn(BaseModel):
    display_name: str = Field(..., min_length=1)
    address: Optional[addresses.AddressIn] = None

class ProfileIn(BaseModel):
    display_name: str = Field(..., min_length=1)

class CartItemIn(BaseModel):
    quantity: int = Field(..., ge=1)

class CheckoutIn(BaseModel):
    address_id: int
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None

class CouponCheckIn(BaseModel):
    code: str
    cart_total: float = Field(..., ge=0)


def require_admin(authorization: Optional[str] = Header(None)) -> dict:
    user = auth_service.require_user(authorization)
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Forbidden")
    return user


# Auth: phone OTP flow
@app.post("/auth/send-otp")
def request_otp(payload: SendOTPIn):
    return send_otp(payload.phone_number, payload.is_resend)


@app.get("/auth/otp-status")
def otp_status(phone_number: str):
    return {
        "expires_in": otp_remaining_time(phone_number),
        "resend_after": resend_cooldown_remaining(phone_number),
    }


@app.post("/auth/verify-otp")
def verify_otp(payload: VerifyOTPIn):
    return auth_service.verify_otp_and_authenticate(payload.phone_number, payload.code)


@app.post("/auth/complete-profile")
def complete_profile(payload: CompleteProfileIn, session: dict = Depends(auth_service.get_session)):
    address = None
    if payload.address is not None:
        address = addresses.build_address(payload.address, session["phone"])
    user = auth_service.complete_profile(session, payload.display_name, address)
    return {"success": True, "user": user}


@app.get("/auth/me")
def me(user: dict = Depends(auth_service.require_user)):
    return to_str_id(user)


@app.patch("/auth/profile")
def update_profile(payload: ProfileIn, user: dict = Depends(auth_service.require_user)):
    return auth_service.update_profile(user, payload.display_name)


@app.post("/auth/sign-out")
def sign_out(session: dict = Depends(auth_service.get_session)):
    auth_service.sign_out(session)
    return {"success": True}


@app.post("/auth/deactivate")
def deactivate(user: dict = Depends(auth_service.require_user)):
    auth_service.deactivate_account(user)
    return {"success": True}


# Addresses
@app.get("/addresses")
def list_addresses(user: dict = Depends(auth_service.require_user)):
    return addresses.list_addresses(user)

@app.post("/addresses")
def add_address(data: addresses.AddressIn, user: dict = Depends(auth_service.require_user)):
    return addresses.add_address(user, data)

@app.put("/addresses/{address_id}")
def update_address(address_id: int, data: addresses.AddressIn, user: dict = Depends(auth_service.require_user)):
    return addresses.update_address(user, address_id, data)

@app.delete("/addresses/{address_id}")
def delete_address(address_id: int, user: dict = Depends(auth_service.require_user)):
    addresses.delete_address(user, address_id)
    return {"success": True}


# Catalogue
@app.get("/products")
def products(category: Optional[str] = None):
    return list_products(category)

@app.get("/products/{product_id}")
def product(product_id: str):
    return to_str_id(get_product(product_id))

@app.get("/pincodes")
def pincodes():
    return list_serviceable_pincodes()

@app.get("/pincodes/{pincode}")
def pincode(pincode: str):
    return validate_pincode(pincode)


# Cart
@app.get("/cart")
def get_cart(user: dict = Depends(auth_service.require_user)):
    return cart.priced_cart(user["uid"])

@app.put("/cart/items/{product_id}")
def set_cart_item(product_id: str, payload: CartItemIn, user: dict = Depends(auth_service.require_user)):
    return cart.set_item(user["uid"], product_id, payload.quantity)

@app.delete("/cart/items/{product_id}")
def remove_cart_item(product_id: str, user: dict = Depends(auth_service.require_user)):
    return cart.remove_item(user["uid"], product_id)

@app.delete("/cart")
def clear_cart(user: dict = Depends(auth_service.require_user)):
    cart.clear_cart(user["uid"])
    return {"success": True}


@app.post("/coupons/validate")
def check_coupon(payload: CouponCheckIn, user: dict = Depends(auth_service.require_user)):
    return validate_coupon(payload.code, user["uid"], payload.cart_total)


# Checkout & orders
@app.post("/checkout")
def place_order(payload: CheckoutIn, user: dict = Depends(auth_service.require_user)):
    return checkout(user, payload.address_id, payload.payment_method, payload.coupon_code)

@app.get("/orders/mine")
def my_orders(user: dict = Depends(auth_service.require_user)):
    return [order_service.map_order_for_ui(o) for o in order_service.list_customer_orders(user["uid"])]

@app.get("/orders/{order_id}")
def order_detail(order_id: str, user: dict = Depends(auth_service.require_user)):
    return order_service.map_order_for_ui(order_service.get_customer_order(order_id, user))

@app.post("/orders/{order_id}/retry-payment")
def retry_payment(order_id: str, user: dict = Depends(auth_service.require_user)):
    return order_service.retry_payment(order_id, user)


async def wait_for_disconnect(websocket: WebSocket) -> None:
    while (await websocket.receive())["type"] != "websocket.disconnect":
        pass


@app.websocket("/orders/{order_id}/status/ws")
async def order_status(websocket: WebSocket, order_id: str, token: str = ""):
    try:
        user = await run_in_threadpool(auth_service.require_user, token)
        await run_in_threadpool(order_service.get_customer_order, order_id, user)
    except HTTPException as e:
        # 4401, 4403, 4404 ...
        await websocket.close(code=4000 + e.status_code)
        return

    await websocket.accept()
    disconnected = asyncio.ensure_future(wait_for_disconnect(websocket))
    stream = order_status_stream(order_id, until=disconnected)
    try:
        async for snapshot in stream:
            await websocket.send_json({"order": snapshot})
        client_left = disconnected.done()
    except WebSocketDisconnect:
        client_left = True
    finally:
        disconnected.cancel()
        await stream.aclose()
    if client_left:
        logger.info("Status listener for order %s disconnected", order_id)
    else:
        await websocket.close()


# Payments
@app.post("/payments/{order_id}/initiate")
def initiate_payment(order_id: str, options: payment_service.PaymentOptions, user: dict = Depends(auth_service.require_user)):
    order_service.get_customer_order(order_id, user)
    return payment_service.initiate_payment(options, order_id)

@app.post("/payments/{order_id}/result")
def payment_result(order_id: str, result: payment_service.PaymentResultIn, user: dict = Depends(auth_service.require_user)):
    order_service.get_customer_order(order_id, user)
    return payment_service.record_payment_result(order_id, result)

@app.get("/payments/{order_id}/status")
def payment_status(order_id: str, user: dict = Depends(auth_service.require_user)):
    order_service.get_customer_order(order_id, user)
    return payment_service.payment_status(order_id)

@app.post("/payments/razorpay/webhook")
async def razorpay_webhook(request: Request, x_razorpay_signature: Optional[str] = Header(None)):
    body = await request.body()
    return await run_in_threadpool(payment_service.handle_webhook, body, x_razorpay_signature)


# Scheduled cleanup
@app.post("/admin/orders/expire-pending")
def expire_pending(max_age_minutes: Optional[int] = None, admin: dict = Depends(require_admin)):
    if max_age_minutes is None:
        expired = order_service.expire_pending_orders()
    else:
        expired = order_service.expire_pending_orders(max_age_minutes)
    return {"success": True, "expired": expired}


@app.get("/")
def root():
    return {"service": f"{STORE_NAME} API", "status": "ok"}

@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
    }
    try:
        response["db"] = "✅ Connected" if db is not None else "❌ Not Connected"
        response["collections"] = db.list_collection_names() if db is not None else []
    except Exception as e:
        response["db"] = f"Error: {e}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
