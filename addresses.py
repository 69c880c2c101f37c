import time
from typing import List, Optional

from fastapi import HTTPException
from pydantic import BaseModel, Field

from database import db, now_utc
from pincodes import validate_pincode
from schemas import Address


class AddressIn(BaseModel):
    address_name: str = Field("Home", description="Home, Office, ...")
    address_lines: str = Field(..., min_length=1)
    landmark: str = ""
    pincode: str = Field(..., pattern=r"^\d{6}$")
    phone_number: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    formatted_address: Optional[str] = None
    place_id: Optional[str] = None


def build_address(data: AddressIn, phone_number: str, address_id: Optional[int] = None) -> Address:
    check = validate_pincode(data.pincode)
    if not check["is_serviceable"]:
        raise HTTPException(status_code=400, detail=check["error"])
    fields = data.model_dump()
    fields["phone_number"] = data.phone_number or phone_number
    return Address(
        address_id=address_id or int(time.time() * 1000),
        branch_code=check["branch_code"] or "",
        branch_name=check["branch_name"] or "",
        **fields,
    )


def list_addresses(user: dict) -> List[dict]:
    return user.get("addresses", [])


def get_address(user: dict, address_id: int) -> dict:
    for addr in user.get("addresses", []):
        if addr.get("address_id") == address_id:
            return addr
    raise HTTPException(status_code=404, detail="Address not found")


def add_address(user: dict, data: AddressIn) -> dict:
    addr = build_address(data, user["phone_number"]).model_dump()
    db["user"].update_one({"_id": user["_id"]}, {"$push": {"addresses": addr}, "$set": {"updated_at": now_utc()}})
    return addr


def update_address(user: dict, address_id: int, data: AddressIn) -> dict:
    get_address(user, address_id)
    addr = build_address(data, user["phone_number"], address_id=address_id).model_dump()
    addresses = [addr if a.get("address_id") == address_id else a for a in user.get("addresses", [])]
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": now_utc()}})
    return addr


def delete_address(user: dict, address_id: int) -> None:
    get_address(user, address_id)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$pull": {"addresses": {"address_id": address_id}}, "$set": {"updated_at": now_utc()}},
    )
