from datetime import timedelta

import pytest
from bson import ObjectId
from fastapi import HTTPException

from cart import get_cart, save_items
from database import now_utc
from order_service import (
    create_order,
    create_order_for_payment,
    expire_pending_orders,
    get_order,
    map_order_for_ui,
    retry_payment,
    ui_status,
    update_order_payment_status,
)


def test_order_for_payment_starts_pending(db, order_details):
    created = create_order_for_payment(order_details())

    order = get_order(created["order_id"])
    assert order["order_number"] == created["order_number"]
    assert order["payment_status"] == "pending"
    assert order["status"] == "payment_pending"
    assert order["mode_of_payment"] == "online"
    assert order["grand_total"] == 160
    assert order["delivery_date"] is not None


def test_cod_order_is_placed_unpaid(db, order_details):
    created = create_order(order_details(), order_number=1700000000123)

    order = get_order(created["order_id"])
    assert created["order_number"] == 1700000000123
    assert order["status"] == "placed"
    assert order["payment_status"] == "unpaid"
    assert order["mode_of_payment"] == "cod"


def test_order_needs_address_and_items(db, order_details):
    with pytest.raises(HTTPException) as exc:
        create_order_for_payment(order_details(address=None))
    assert exc.value.detail == "Please select a delivery address"

    with pytest.raises(HTTPException) as exc:
        create_order_for_payment(order_details(items=[]))
    assert exc.value.detail == "Your cart is empty"
    assert db["order"].count_documents({}) == 0


def test_paid_places_order_and_clears_cart(db, customer, order_details):
    uid = customer["user"]["uid"]
    save_items(uid, [{"product_id": "tomato", "quantity": 2}])
    order_id = create_order_for_payment(order_details())["order_id"]

    snapshot = update_order_payment_status(order_id, "paid", {"payment_id": "pay_1", "razorpay_order_id": "order_1"})

    assert snapshot["payment_status"] == "paid"
    assert snapshot["status"] == "placed"
    assert snapshot["payment_id"] == "pay_1"
    assert get_cart(uid)["items"] == []
    log = db["orderstatuslog"].find_one({"order_id": order_id})
    assert (log["payment_status_from"], log["payment_status_to"]) == ("pending", "paid")


def test_repeating_terminal_status_is_noop(db, order_details):
    order_id = create_order_for_payment(order_details())["order_id"]
    update_order_payment_status(order_id, "paid", {"payment_id": "pay_1"})

    again = update_order_payment_status(order_id, "paid", {"payment_id": "pay_2"})

    assert again["payment_id"] == "pay_1"
    assert db["orderstatuslog"].count_documents({"order_id": order_id}) == 1


@pytest.mark.parametrize("first,second", [("paid", "failed"), ("failed", "paid")])
def test_terminal_status_never_flips(db, order_details, first, second):
    order_id = create_order_for_payment(order_details())["order_id"]
    update_order_payment_status(order_id, first)

    with pytest.raises(HTTPException) as exc:
        update_order_payment_status(order_id, second)

    assert exc.value.status_code == 409
    assert get_order(order_id)["payment_status"] == first


def test_cod_order_cannot_be_marked_paid(db, order_details):
    order_id = create_order(order_details())["order_id"]
    with pytest.raises(HTTPException) as exc:
        update_order_payment_status(order_id, "paid")
    assert exc.value.status_code == 409


def test_unsupported_or_unknown(db, order_details):
    order_id = create_order_for_payment(order_details())["order_id"]
    with pytest.raises(HTTPException) as exc:
        update_order_payment_status(order_id, "pending")
    assert exc.value.status_code == 400

    with pytest.raises(HTTPException) as exc:
        update_order_payment_status(str(ObjectId()), "paid")
    assert exc.value.status_code == 404


def test_failed_records_reason(db, order_details):
    order_id = create_order_for_payment(order_details())["order_id"]
    snapshot = update_order_payment_status(order_id, "failed", reason="Card declined")
    assert snapshot["status"] == "payment_failed"
    assert snapshot["payment_failure_reason"] == "Card declined"


def test_expire_pending_orders(db, order_details):
    stale = create_order_for_payment(order_details())["order_id"]
    fresh = create_order_for_payment(order_details())["order_id"]
    db["order"].update_one({"_id": ObjectId(stale)}, {"$set": {"created_at": now_utc() - timedelta(hours=3)}})

    assert expire_pending_orders() == [stale]

    expired = get_order(stale)
    assert expired["payment_status"] == "failed"
    assert expired["payment_failure_reason"] == "expired"
    assert get_order(fresh)["payment_status"] == "pending"
    assert db["orderstatuslog"].find_one({"event": "order_cleanup"})["expired_order_ids"] == [stale]


def test_retry_clones_failed_order(db, customer, order_details):
    failed = create_order_for_payment(order_details())["order_id"]
    update_order_payment_status(failed, "failed", reason="Payment cancelled by user")

    retried = retry_payment(failed, customer["user"])

    clone = get_order(retried["order_id"])
    assert clone["payment_status"] == "pending"
    assert clone["retry_of"] == failed
    assert clone["grand_total"] == 160
    assert len(clone["items"]) == 2
    assert get_order(failed)["payment_status"] == "failed"


def test_retry_refuses_pending_and_foreign_orders(db, customer, make_customer, order_details):
    order_id = create_order_for_payment(order_details())["order_id"]
    with pytest.raises(HTTPException) as exc:
        retry_payment(order_id, customer["user"])
    assert exc.value.status_code == 409

    other = make_customer(phone="+919000000001", name="Arun")
    with pytest.raises(HTTPException) as exc:
        retry_payment(order_id, other["user"])
    assert exc.value.status_code == 403


@pytest.mark.parametrize("raw,shown", [
    ("placed", "pending"),
    ("confirmed", "confirmed"),
    ("assigned", "confirmed"),
    ("picked", "shipped"),
    ("completed", "delivered"),
    ("canceled", "cancelled"),
    ("payment_failed", "payment_failed"),
    ("something_else", "pending"),
    (None, "pending"),
])
def test_ui_status(raw, shown):
    assert ui_status(raw) == shown


def test_map_order_for_ui(db, order_details):
    created = create_order(order_details())
    view = map_order_for_ui(get_order(created["order_id"]))
    assert view["id"] == str(created["order_number"])
    assert view["order_id"] == created["order_id"]
    assert view["status"] == "pending"
    assert view["payment_status"] == "unpaid"
    assert view["address"]["pincode"] == "600001"
