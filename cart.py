from fastapi import HTTPException

from database import db, now_utc
from products import get_purchasable_product
from schemas import CartItem


def get_cart(user_id: str) -> dict:
    cart = db["cart"].find_one({"user_id": user_id})
    return {"user_id": user_id, "items": cart.get("items", []) if cart else []}


def save_items(user_id: str, items: list) -> dict:
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": now_utc()}, "$setOnInsert": {"created_at": now_utc()}},
        upsert=True,
    )
    return get_cart(user_id)


def set_item(user_id: str, product_id: str, quantity: int) -> dict:
    get_purchasable_product(product_id, quantity)
    items = [it for it in get_cart(user_id)["items"] if it["product_id"] != product_id]
    items.append(CartItem(product_id=product_id, quantity=quantity).model_dump())
    return save_items(user_id, items)


def remove_item(user_id: str, product_id: str) -> dict:
    items = get_cart(user_id)["items"]
    kept = [it for it in items if it["product_id"] != product_id]
    if len(kept) == len(items):
        raise HTTPException(status_code=404, detail="Item not in cart")
    return save_items(user_id, kept)


def clear_cart(user_id: str) -> None:
    db["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": now_utc()}})


def priced_cart(user_id: str) -> dict:
    """Cart lines priced from the product collection, as checkout will charge them."""
    lines = []
    subtotal = 0.0
    for it in get_cart(user_id)["items"]:
        prod = get_purchasable_product(it["product_id"], it["quantity"])
        price = float(prod.get("price", 0))
        lines.append({
            "product_id": it["product_id"],
            "name": prod.get("name"),
            "unit": prod.get("unit", ""),
            "image": prod.get("image"),
            "quantity": it["quantity"],
            "price": price,
            "mrp": float(prod.get("mrp") or round(price * 1.2, 2)),
            "is_pre_order": prod.get("is_pre_order", False),
        })
        subtotal += price * it["quantity"]
    return {"items": lines, "subtotal": round(subtotal, 2)}
