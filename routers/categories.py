import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import Field
from pymongo import ReturnDocument
from pymongo.database import Database

from database import CATEGORIES, PRODUCTS, create_document, get_db, object_id, serialize_doc, utcnow
from errors import ConflictError, NotFoundError
from schemas import CamelModel, Category
from security import require_admin
from uploads import delete_image, save_image

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/categories", tags=["categories"])


class CategoryChanges(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    icon: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = None
    description: Optional[str] = Field(None, max_length=200)
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


def _product_counts(db: Database, category_ids) -> dict:
    counts = {cid: 0 for cid in category_ids}
    for p in db[PRODUCTS].find(
        {"category": {"$in": list(category_ids)}, "isActive": True, "inStock": True},
        {"category": 1},
    ):
        counts[p["category"]] = counts.get(p["category"], 0) + 1
    return counts


def _name_taken(db: Database, name: str, exclude_id=None) -> bool:
    filt = {"name": name}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    return db[CATEGORIES].find_one(filt) is not None


@router.get("")
def list_categories(db: Database = Depends(get_db)):
    categories = list(
        db[CATEGORIES].find({"isActive": True}).sort([("sortOrder", 1), ("name", 1)])
    )
    counts = _product_counts(db, [c["_id"] for c in categories])
    for c in categories:
        c["productCount"] = counts.get(c["_id"], 0)
    return {"success": True, "count": len(categories), "categories": serialize_doc(categories)}


@router.get("/popular")
def popular_categories(limit: int = Query(6, ge=1, le=50), db: Database = Depends(get_db)):
    """Categories ranked by units sold across their active products."""
    pipeline = [
        {"$match": {"isActive": True}},
        {"$group": {
            "_id": "$category",
            "totalSold": {"$sum": "$totalSold"},
            "productCount": {"$sum": 1},
        }},
        {"$sort": {"totalSold": -1}},
        {"$limit": limit},
    ]
    ranked = list(db[PRODUCTS].aggregate(pipeline))
    found = {
        c["_id"]: c
        for c in db[CATEGORIES].find({"_id": {"$in": [r["_id"] for r in ranked]}, "isActive": True})
    }
    categories = []
    for r in ranked:
        category = found.get(r["_id"])
        if category:
            categories.append({**category, "totalSold": r["totalSold"], "productCount": r["productCount"]})
    return {"success": True, "count": len(categories), "categories": serialize_doc(categories)}


@router.get("/{category_id}")
def get_category(category_id: str, db: Database = Depends(get_db)):
    category = db[CATEGORIES].find_one({"_id": object_id(category_id, "Category"), "isActive": True})
    if not category:
        raise NotFoundError("Category")
    category["productCount"] = _product_counts(db, [category["_id"]])[category["_id"]]
    return {"success": True, "category": serialize_doc(category)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_category(
    name: str = Form(...),
    icon: Optional[str] = Form(None),
    color: str = Form("#FFFFFF"),
    description: Optional[str] = Form(None),
    sort_order: int = Form(0, alias="sortOrder"),
    category_img: Optional[UploadFile] = File(None, alias="categoryImg"),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    category = Category(name=name, icon=icon, color=color, description=description, sort_order=sort_order)
    if _name_taken(db, category.name):
        raise ConflictError("Category with this name already exists", "DUPLICATE_FIELD")
    if category_img is not None and category_img.filename:
        category.image = save_image(category_img, "categories")

    category_id = create_document(db, CATEGORIES, category)
    logger.info(f"Category {category.name} created")
    return {
        "success": True,
        "message": "Category created successfully",
        "category": serialize_doc(db[CATEGORIES].find_one({"_id": category_id})),
    }


@router.put("/{category_id}")
def update_category(
    category_id: str,
    name: Optional[str] = Form(None),
    icon: Optional[str] = Form(None),
    color: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    is_active: Optional[bool] = Form(None, alias="isActive"),
    sort_order: Optional[int] = Form(None, alias="sortOrder"),
    category_img: Optional[UploadFile] = File(None, alias="categoryImg"),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    existing = db[CATEGORIES].find_one({"_id": object_id(category_id, "Category")})
    if not existing:
        raise NotFoundError("Category")

    changes = CategoryChanges(
        name=name, icon=icon, color=color, description=description,
        is_active=is_active, sort_order=sort_order,
    )
    if changes.name is not None and _name_taken(db, changes.name, existing["_id"]):
        raise ConflictError("Category with this name already exists", "DUPLICATE_FIELD")
    update = changes.model_dump(by_alias=True, exclude_none=True)
    if category_img is not None and category_img.filename:
        update["image"] = save_image(category_img, "categories")
        delete_image(existing.get("image"))
    update["updatedAt"] = utcnow()

    category = db[CATEGORIES].find_one_and_update(
        {"_id": existing["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER,
    )
    return {"success": True, "message": "Category updated successfully", "category": serialize_doc(category)}


@router.delete("/{category_id}")
def delete_category(category_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    category = db[CATEGORIES].find_one({"_id": object_id(category_id, "Category")})
    if not category:
        raise NotFoundError("Category")
    in_use = db[PRODUCTS].count_documents({"category": category["_id"]})
    if in_use:
        raise ConflictError(f"Cannot delete category with {in_use} products. Move or delete them first.")

    db[CATEGORIES].delete_one({"_id": category["_id"]})
    delete_image(category.get("image"))
    logger.info(f"Category {category['name']} deleted")
    return {"success": True, "message": "Category deleted successfully"}
