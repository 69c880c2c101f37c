from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import HTTPException

from database import db, oid, to_str_id


def list_products(category: Optional[str] = None, limit: int = 100) -> List[dict]:
    filt = {"status": "active"}
    if category:
        filt["category_ids"] = category
    return [to_str_id(p) for p in db["product"].find(filt).sort("name", 1).limit(limit)]


def get_product(product_id: str) -> dict:
    prod = db["product"].find_one({"_id": oid(product_id)})
    if not prod:
        raise HTTPException(status_code=404, detail="Product not found")
    return prod


def get_purchasable_product(product_id: str, quantity: int) -> dict:
    prod = get_product(product_id)
    if prod.get("status", "active") != "active":
        raise HTTPException(status_code=400, detail=f"{prod.get('name', 'Product')} is unavailable")
    lo, hi = prod.get("min_quantity", 1), prod.get("max_quantity", 100)
    if not lo <= quantity <= hi:
        raise HTTPException(status_code=400, detail=f"Quantity for {prod.get('name', 'product')} must be between {lo} and {hi}")
    return prod


def delivery_info(is_pre_order: bool, ordered_at: datetime) -> dict:
    """Expected delivery for one item: next day, Tuesday for Sunday orders, three days for pre-orders."""
    if is_pre_order:
        days = 3
        label = f"Delivered by {(ordered_at + timedelta(days=days)).strftime('%A')}"
    elif ordered_at.weekday() == 6:
        days = 2
        label = "Delivery by Tuesday"
    else:
        days = 1
        label = "Delivery by Tomorrow"
    return {"date": ordered_at + timedelta(days=days), "label": label, "days_from_now": days}


def consolidated_delivery(items: List[dict], ordered_at: datetime) -> dict:
    """The slowest item decides when the whole order arrives."""
    infos = [delivery_info(it.get("is_pre_order", False), ordered_at) for it in items] or [delivery_info(False, ordered_at)]
    return max(infos, key=lambda info: info["days_from_now"])
