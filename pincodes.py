import logging
from typing import List

from database import db, get_documents

logger = logging.getLogger(__name__)


def validate_pincode(pincode: str) -> dict:
    """Serviceability and delivery charge for a pincode."""
    info = db["pincode"].find_one({"pincode": str(pincode).strip()})
    if not info:
        logger.info("Pincode %s is not serviceable", pincode)
        return {"is_serviceable": False, "error": "Sorry, we do not deliver to this pincode yet."}
    return {
        "is_serviceable": True,
        "pincode": info["pincode"],
        "delivery_charge": float(info.get("delivery_charge", 0)),
        "area_name": info.get("area_name"),
        "branch_code": info.get("branch_code"),
        "branch_name": info.get("branch_name"),
    }


def list_serviceable_pincodes() -> List[dict]:
    pincodes = get_documents("pincode")
    return sorted(({k: v for k, v in p.items() if k != "_id"} for p in pincodes), key=lambda p: p["pincode"])
