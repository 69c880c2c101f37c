import logging
from typing import Optional

from fastapi import HTTPException

from addresses import get_address
from cart import clear_cart, priced_cart
from coupons import apply_coupon, validate_coupon
from database import now_utc
from order_service import OrderDetails, create_order, create_order_for_payment, new_order_number
from pincodes import validate_pincode
from products import consolidated_delivery
from schemas import OrderItem, PaymentMethod

logger = logging.getLogger(__name__)


def checkout(user: dict, address_id: int, payment_method: PaymentMethod, coupon_code: Optional[str] = None) -> dict:
    """Turn the user's cart into an order.

    Prices come from the product collection, never from the client. COD orders
    are placed immediately and the cart is emptied; online orders wait in
    `payment_pending` and keep the cart until the payment is confirmed.
    """
    address = get_address(user, address_id)
    area = validate_pincode(address["pincode"])
    if not area["is_serviceable"]:
        raise HTTPException(status_code=400, detail=area["error"])

    cart = priced_cart(user["uid"])
    if not cart["items"]:
        raise HTTPException(status_code=400, detail="Your cart is empty")

    subtotal = cart["subtotal"]
    delivery_fee = area["delivery_charge"]
    discount = 0.0
    code = None
    if coupon_code:
        check = validate_coupon(coupon_code, user["uid"], subtotal + delivery_fee)
        if not check["is_valid"]:
            raise HTTPException(status_code=400, detail=check["error"])
        code, discount = check["code"], check["discount_amount"]
    grand_total = round(subtotal + delivery_fee - discount, 2)

    order_number = new_order_number()
    if discount > 0:
        apply_coupon(code, user["uid"], order_number, discount, branch_code=area["branch_code"] or "MAIN")

    details = OrderDetails(
        customer_id=user["uid"],
        customer_name=user.get("display_name", ""),
        phone_number=user.get("phone_number"),
        address=address,
        items=[OrderItem(**line) for line in cart["items"]],
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        discount=discount,
        grand_total=grand_total,
        coupon_code=code,
        coupon_discount=discount if code else None,
    )
    if payment_method == PaymentMethod.COD:
        created = create_order(details, order_number)
        clear_cart(user["uid"])
    else:
        created = create_order_for_payment(details, order_number)

    delivery = consolidated_delivery(cart["items"], now_utc())
    logger.info("Checkout %s for %s: %s, total %.2f", created["order_number"], user["uid"], payment_method.value, grand_total)
    return {
        "success": True,
        "order_id": created["order_id"],
        "order_number": created["order_number"],
        "payment_method": payment_method.value,
        "subtotal": subtotal,
        "delivery_fee": delivery_fee,
        "discount": discount,
        "grand_total": grand_total,
        "delivery_label": delivery["label"],
        "delivery_date": delivery["date"].isoformat(),
    }
