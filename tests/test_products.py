from datetime import datetime, timezone

from products import consolidated_delivery, delivery_info

FRIDAY = datetime(2026, 10, 16, 9, 30, tzinfo=timezone.utc)
SUNDAY = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


def test_next_day_delivery():
    info = delivery_info(False, FRIDAY)
    assert info["days_from_now"] == 1
    assert info["label"] == "Delivery by Tomorrow"
    assert info["date"].date() == datetime(2026, 10, 17).date()


def test_sunday_orders_arrive_tuesday():
    info = delivery_info(False, SUNDAY)
    assert info["label"] == "Delivery by Tuesday"
    assert info["date"].strftime("%A") == "Tuesday"


def test_pre_order_takes_three_days():
    info = delivery_info(True, FRIDAY)
    assert info["days_from_now"] == 3
    assert info["label"] == "Delivered by Monday"


def test_slowest_item_decides():
    items = [{"is_pre_order": False}, {"is_pre_order": True}]
    assert consolidated_delivery(items, FRIDAY)["days_from_now"] == 3
    assert consolidated_delivery([], FRIDAY)["days_from_now"] == 1


def test_catalogue_lists_active_products(client, catalogue):
    names = [p["name"] for p in client.get("/products").json()]
    assert names == ["Alphonso Mango", "Spinach", "Tomato"]

    fruits = client.get("/products", params={"category": "fruits"}).json()
    assert [p["name"] for p in fruits] == ["Alphonso Mango"]

    assert client.get(f"/products/{catalogue['tomato']}").json()["price"] == 60


def test_pincode_lookup(client, catalogue):
    assert client.get("/pincodes/600042").json()["delivery_charge"] == 30
    assert client.get("/pincodes/110001").json()["is_serviceable"] is False
    assert [p["pincode"] for p in client.get("/pincodes").json()] == ["600001", "600042"]
