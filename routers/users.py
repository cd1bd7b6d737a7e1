from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import EmailStr, TypeAdapter
from pymongo.database import Database

from config import Settings, get_settings
from database import (
    PRODUCTS, USERS, CATEGORIES, get_db, object_id, page_envelope, paginate, populate,
    serialize_doc, utcnow,
)
from errors import ConflictError, NotFoundError, ValidationError
from security import get_current_user, require_admin
from uploads import delete_image, save_image

router = APIRouter(prefix="/api/users", tags=["users"])

FAVORITE_FIELDS = (
    "name", "price", "originalPrice", "images", "category", "rating", "reviews",
    "isFlashSale", "unit", "inStock", "freshness",
)

_email = TypeAdapter(EmailStr)


def favorite_products(db: Database, user_id):
    user = db[USERS].find_one({"_id": user_id}, {"favorites": 1})
    favorites = populate(db, [user], "favorites", PRODUCTS, FAVORITE_FIELDS)[0]["favorites"]
    populate(db, favorites, "category", CATEGORIES, ("name", "icon", "color"))
    return serialize_doc(favorites)


@router.put("/profile")
def update_profile(
    name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    update = {}
    if name is not None:
        name = name.strip()
        if not 2 <= len(name) <= 50:
            raise ValidationError(
                "Validation failed",
                details=[{"field": "name", "message": "Name must be between 2 and 50 characters"}],
            )
        update["name"] = name
    if email:
        try:
            email = _email.validate_python(email.strip()).lower()
        except ValueError:
            raise ValidationError(
                "Validation failed",
                details=[{"field": "email", "message": "Please provide a valid email"}],
            )
        if db[USERS].find_one({"email": email, "_id": {"$ne": user["_id"]}}):
            raise ConflictError("Email is already registered", "DUPLICATE_FIELD")
        update["email"] = email
    if avatar is not None and avatar.filename:
        update["avatar"] = save_image(avatar, "avatars")
        delete_image(user.get("avatar"))

    update["updatedAt"] = utcnow()
    db[USERS].update_one({"_id": user["_id"]}, {"$set": update})
    return {
        "success": True,
        "message": "Profile updated successfully",
        "user": serialize_doc(db[USERS].find_one({"_id": user["_id"]})),
    }


@router.get("/stats")
def get_stats(user=Depends(get_current_user)):
    return {
        "success": True,
        "stats": {
            "totalOrders": user.get("totalOrders", 0),
            "totalSpent": user.get("totalSpent", 0),
            "favoriteProducts": len(user.get("favorites", [])),
            "memberSince": serialize_doc(user.get("createdAt")),
        },
    }


@router.put("/deactivate")
def deactivate_account(user=Depends(get_current_user), db: Database = Depends(get_db)):
    db[USERS].update_one({"_id": user["_id"]}, {"$set": {"isActive": False, "updatedAt": utcnow()}})
    return {
        "success": True,
        "message": "Account deactivated successfully",
        "user": serialize_doc(db[USERS].find_one({"_id": user["_id"]})),
    }


@router.get("/favorites")
def get_favorites(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "favorites": favorite_products(db, user["_id"])}


@router.post("/favorites/{product_id}")
def add_to_favorites(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    product = db[PRODUCTS].find_one({"_id": object_id(product_id, "Product")})
    if not product:
        raise NotFoundError("Product")
    if not product.get("isActive"):
        raise ConflictError("Product is not available")

    result = db[USERS].update_one(
        {"_id": user["_id"], "favorites": {"$ne": product["_id"]}},
        {"$push": {"favorites": product["_id"]}},
    )
    if result.modified_count == 0:
        raise ConflictError("Product already in favorites")
    return {
        "success": True,
        "message": "Product added to favorites",
        "favorites": favorite_products(db, user["_id"]),
    }


@router.delete("/favorites/{product_id}")
def remove_from_favorites(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    pid = object_id(product_id, "Product")
    result = db[USERS].update_one(
        {"_id": user["_id"], "favorites": pid},
        {"$pull": {"favorites": pid}},
    )
    if result.modified_count == 0:
        raise ConflictError("Product not in favorites")
    return {
        "success": True,
        "message": "Product removed from favorites",
        "favorites": favorite_products(db, user["_id"]),
    }


@router.get("")
def list_users(
    limit: int = Query(10, ge=1),
    page: int = Query(1, ge=1),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    filt = {}
    if is_active is not None:
        filt["isActive"] = is_active
    page, limit, skip = paginate(page, limit, settings.max_page_size)
    users = list(
        db[USERS].find(filt, {"passwordHash": 0}).sort("createdAt", -1).skip(skip).limit(limit)
    )
    total = db[USERS].count_documents(filt)
    return {"success": True, **page_envelope(users, total, page, limit), "users": serialize_doc(users)}
