"""Per-user address book.

The user's default address is a single field, ``users.defaultAddressId``, so
"at most one default" holds after every write without touching sibling
addresses. ``isDefault`` on an address is derived from it when reading.
"""
from typing import List, Optional

from bson.objectid import ObjectId
from pymongo import ASCENDING
from pymongo.database import Database

from database import ADDRESSES, USERS, create_document, find_owned
from schemas import Address


def default_address_id(db: Database, user_id: ObjectId) -> Optional[ObjectId]:
    user = db[USERS].find_one({"_id": user_id}, {"defaultAddressId": 1})
    return user.get("defaultAddressId") if user else None


def mark_default(address: dict, default_id: Optional[ObjectId]) -> dict:
    address["isDefault"] = default_id is not None and address["_id"] == default_id
    return address


def full_address(address: dict) -> str:
    text = address["addressLine1"]
    if address.get("addressLine2"):
        text += ", " + address["addressLine2"]
    if address.get("landmark"):
        text += ", Near " + address["landmark"]
    return f"{text}, {address['city']}, {address['state']} - {address['pincode']}"


def list_addresses(db: Database, user_id: ObjectId) -> List[dict]:
    default_id = default_address_id(db, user_id)
    addresses = [
        mark_default(a, default_id)
        for a in db[ADDRESSES].find({"userId": user_id}).sort("createdAt", -1)
    ]
    # stable sort keeps newest-first within each group
    addresses.sort(key=lambda a: not a["isDefault"])
    return addresses


def get_default(db: Database, user_id: ObjectId) -> Optional[dict]:
    default_id = default_address_id(db, user_id)
    if default_id is None:
        return None
    address = db[ADDRESSES].find_one({"_id": default_id, "userId": user_id})
    return mark_default(address, default_id) if address else None


def add_address(db: Database, address: Address, make_default: bool = False) -> dict:
    address_id = create_document(db, ADDRESSES, address)
    if make_default:
        db[USERS].update_one({"_id": address.user_id}, {"$set": {"defaultAddressId": address_id}})
    else:
        # first address wins the default slot when none is set
        db[USERS].update_one(
            {"_id": address.user_id, "defaultAddressId": None},
            {"$set": {"defaultAddressId": address_id}},
        )
    return mark_default(
        db[ADDRESSES].find_one({"_id": address_id}),
        default_address_id(db, address.user_id),
    )


def set_default(db: Database, user_id: ObjectId, address_id) -> dict:
    address = find_owned(db, ADDRESSES, address_id, user_id, "Address")
    db[USERS].update_one({"_id": user_id}, {"$set": {"defaultAddressId": address["_id"]}})
    return mark_default(address, address["_id"])


def delete_address(db: Database, user_id: ObjectId, address_id) -> None:
    address = find_owned(db, ADDRESSES, address_id, user_id, "Address")
    db[ADDRESSES].delete_one({"_id": address["_id"]})
    replacement = db[ADDRESSES].find_one({"userId": user_id}, sort=[("createdAt", ASCENDING)])
    db[USERS].update_one(
        {"_id": user_id, "defaultAddressId": address["_id"]},
        {"$set": {"defaultAddressId": replacement["_id"] if replacement else None}},
    )
