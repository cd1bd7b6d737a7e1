from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import Field
from pymongo import ReturnDocument
from pymongo.database import Database

import address_book
from database import ADDRESSES, get_db, find_owned, serialize_doc, utcnow
from errors import NotFoundError
from schemas import PHONE_PATTERN, PINCODE_PATTERN, Address, AddressType, CamelModel, Coordinates
from security import get_current_user

router = APIRouter(prefix="/api/addresses", tags=["addresses"])


class AddressBody(CamelModel):
    type: AddressType
    name: str = Field(..., min_length=2, max_length=50)
    phone: str = Field(..., pattern=PHONE_PATTERN)
    address_line1: str = Field(..., min_length=1, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    landmark: Optional[str] = Field(None, max_length=100)
    city: str = Field(..., min_length=1, max_length=50)
    state: str = Field(..., min_length=1, max_length=50)
    pincode: str = Field(..., pattern=PINCODE_PATTERN)
    coordinates: Optional[Coordinates] = None
    is_default: bool = False


class AddressUpdateBody(CamelModel):
    type: Optional[AddressType] = None
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address_line1: Optional[str] = Field(None, min_length=1, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    landmark: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, min_length=1, max_length=50)
    state: Optional[str] = Field(None, min_length=1, max_length=50)
    pincode: Optional[str] = Field(None, pattern=PINCODE_PATTERN)
    coordinates: Optional[Coordinates] = None


@router.get("")
def get_addresses(user=Depends(get_current_user), db: Database = Depends(get_db)):
    addresses = address_book.list_addresses(db, user["_id"])
    return {"success": True, "count": len(addresses), "addresses": serialize_doc(addresses)}


@router.get("/default")
def get_default_address(user=Depends(get_current_user), db: Database = Depends(get_db)):
    address = address_book.get_default(db, user["_id"])
    if not address:
        raise NotFoundError("Address", "No default address found")
    return {"success": True, "address": serialize_doc(address)}


@router.post("", status_code=status.HTTP_201_CREATED)
def add_address(body: AddressBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    data = body.model_dump(exclude={"is_default"})
    address = address_book.add_address(
        db, Address(user_id=user["_id"], **data), make_default=body.is_default,
    )
    return {"success": True, "message": "Address added successfully", "address": serialize_doc(address)}


@router.put("/{address_id}")
def update_address(
    address_id: str,
    body: AddressUpdateBody,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    existing = find_owned(db, ADDRESSES, address_id, user["_id"], "Address")
    # isDefault is not accepted here; use set-default
    update = body.model_dump(by_alias=True, exclude_none=True)
    update["updatedAt"] = utcnow()
    address = db[ADDRESSES].find_one_and_update(
        {"_id": existing["_id"]},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    address_book.mark_default(address, address_book.default_address_id(db, user["_id"]))
    return {"success": True, "message": "Address updated successfully", "address": serialize_doc(address)}


@router.delete("/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    address_book.delete_address(db, user["_id"], address_id)
    return {"success": True, "message": "Address deleted successfully"}


@router.put("/{address_id}/set-default")
def set_default_address(address_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    address = address_book.set_default(db, user["_id"], address_id)
    return {"success": True, "message": "Default address updated successfully", "address": serialize_doc(address)}
