import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import Field
from pymongo import ReturnDocument
from pymongo.database import Database

from config import Settings, get_settings
from database import (
    CATEGORIES, PRODUCTS, USERS, create_document, get_db, object_id, page_envelope,
    paginate, populate, serialize_doc, utcnow,
)
from errors import NotFoundError, ValidationError
from schemas import CamelModel, Product
from security import require_admin
from uploads import delete_image, save_images

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/products", tags=["products"])

CATEGORY_FIELDS = ("name", "icon", "color")
SORT_FIELDS = {"createdAt", "price", "rating", "name", "totalSold", "viewCount", "stockCount"}


class ProductChanges(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    unit: Optional[str] = Field(None, max_length=20)
    in_stock: Optional[bool] = None
    stock_count: Optional[int] = Field(None, ge=0)
    is_organic: Optional[bool] = None
    freshness: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    is_flash_sale: Optional[bool] = None
    is_active: Optional[bool] = None


def discount_percentage(product: dict) -> int:
    original, price = product.get("originalPrice"), product.get("price", 0)
    if original and original > price:
        return round((original - price) / original * 100)
    return 0


def present(db: Database, products: List[dict], category_fields=CATEGORY_FIELDS) -> List[dict]:
    populate(db, products, "category", CATEGORIES, category_fields)
    for p in products:
        p["discountPercentage"] = discount_percentage(p)
    return serialize_doc(products)


def _resolve_category(db: Database, category_id: str):
    category = None
    if category_id and re.fullmatch(r"[0-9a-fA-F]{24}", category_id):
        category = db[CATEGORIES].find_one({"_id": object_id(category_id, "Category")})
    if not category:
        raise ValidationError(
            "Validation failed", details=[{"field": "category", "message": "Invalid category"}],
        )
    return category["_id"]


def _discard_images(urls: List[str]) -> None:
    for url in urls:
        delete_image(url)
    if urls:
        logger.warning(f"Discarded {len(urls)} uploaded images after a failed product write")


def _sort(sort_by: str, order: str):
    if sort_by not in SORT_FIELDS:
        raise ValidationError(
            "Validation failed",
            details=[{"field": "sortBy", "message": f"sortBy must be one of {', '.join(sorted(SORT_FIELDS))}"}],
        )
    return [(sort_by, -1 if order == "desc" else 1)]


@router.get("")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    is_organic: Optional[bool] = Query(None, alias="isOrganic"),
    is_flash_sale: Optional[bool] = Query(None, alias="isFlashSale"),
    in_stock: Optional[bool] = Query(None, alias="inStock"),
    sort_by: str = Query("createdAt", alias="sortBy"),
    order: str = "desc",
    limit: int = Query(10, ge=1),
    page: int = Query(1, ge=1),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    page, limit, skip = paginate(page, limit, settings.max_page_size)
    filt = {"isActive": True}

    if category:
        if re.fullmatch(r"[0-9a-fA-F]{24}", category):
            filt["category"] = object_id(category, "Category")
        else:
            category_doc = db[CATEGORIES].find_one(
                {"name": {"$regex": re.escape(category), "$options": "i"}}
            )
            if not category_doc:
                return {"success": True, **page_envelope([], 0, page, limit), "products": []}
            filt["category"] = category_doc["_id"]

    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"description": pattern}]

    if min_price is not None or max_price is not None:
        filt["price"] = {}
        if min_price is not None:
            filt["price"]["$gte"] = min_price
        if max_price is not None:
            filt["price"]["$lte"] = max_price

    if is_organic is not None:
        filt["isOrganic"] = is_organic
    if is_flash_sale is not None:
        filt["isFlashSale"] = is_flash_sale
    if in_stock is not None:
        filt["inStock"] = in_stock

    products = list(db[PRODUCTS].find(filt).sort(_sort(sort_by, order)).skip(skip).limit(limit))
    total = db[PRODUCTS].count_documents(filt)
    return {"success": True, **page_envelope(products, total, page, limit), "products": present(db, products)}


@router.get("/search")
def search_products(
    q: Optional[str] = None,
    limit: int = Query(20, ge=1),
    page: int = Query(1, ge=1),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if not q or not q.strip():
        raise ValidationError("Search query is required")
    page, limit, skip = paginate(page, limit, settings.max_page_size)
    pattern = {"$regex": re.escape(q.strip()), "$options": "i"}
    filt = {"isActive": True, "$or": [{"name": pattern}, {"description": pattern}]}

    products = list(
        db[PRODUCTS].find(filt).sort([("rating", -1), ("totalSold", -1)]).skip(skip).limit(limit)
    )
    total = db[PRODUCTS].count_documents(filt)
    return {
        "success": True,
        "query": q,
        **page_envelope(products, total, page, limit),
        "products": present(db, products),
    }


@router.get("/featured")
def featured_products(limit: int = Query(10, ge=1, le=100), db: Database = Depends(get_db)):
    products = list(
        db[PRODUCTS]
        .find({
            "isActive": True,
            "inStock": True,
            "$or": [
                {"isFlashSale": True},
                {"rating": {"$gte": 4.0}},
                {"totalSold": {"$gte": 100}},
            ],
        })
        .sort([("rating", -1), ("totalSold", -1)])
        .limit(limit)
    )
    return {"success": True, "count": len(products), "products": present(db, products)}


@router.get("/flash-sale")
def flash_sale_products(limit: int = Query(20, ge=1, le=100), db: Database = Depends(get_db)):
    products = list(
        db[PRODUCTS]
        .find({"isActive": True, "inStock": True, "isFlashSale": True})
        .sort("createdAt", -1)
        .limit(limit)
    )
    return {"success": True, "count": len(products), "products": present(db, products)}


@router.get("/all")
def all_products(
    limit: int = Query(10, ge=1),
    page: int = Query(1, ge=1),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    page, limit, skip = paginate(page, limit, settings.max_page_size)
    products = list(db[PRODUCTS].find({}).sort("createdAt", -1).skip(skip).limit(limit))
    total = db[PRODUCTS].count_documents({})
    return {"success": True, **page_envelope(products, total, page, limit), "products": present(db, products)}


@router.get("/category/{category_id}")
def products_by_category(
    category_id: str,
    limit: int = Query(20, ge=1),
    page: int = Query(1, ge=1),
    sort_by: str = Query("createdAt", alias="sortBy"),
    order: str = "desc",
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    category = db[CATEGORIES].find_one({"_id": object_id(category_id, "Category")})
    if not category:
        raise NotFoundError("Category")
    page, limit, skip = paginate(page, limit, settings.max_page_size)
    filt = {"category": category["_id"], "isActive": True, "inStock": True}

    products = list(db[PRODUCTS].find(filt).sort(_sort(sort_by, order)).skip(skip).limit(limit))
    total = db[PRODUCTS].count_documents(filt)
    return {
        "success": True,
        "category": category["name"],
        **page_envelope(products, total, page, limit),
        "products": present(db, products),
    }


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = db[PRODUCTS].find_one_and_update(
        {"_id": object_id(product_id, "Product"), "isActive": True},
        {"$inc": {"viewCount": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not product:
        raise NotFoundError("Product")
    return {
        "success": True,
        "product": present(db, [product], CATEGORY_FIELDS + ("description",))[0],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(
    name: str = Form(...),
    price: float = Form(...),
    category: str = Form(...),
    original_price: Optional[float] = Form(None, alias="originalPrice"),
    unit: Optional[str] = Form(None),
    in_stock: bool = Form(True, alias="inStock"),
    stock_count: int = Form(0, alias="stockCount"),
    is_organic: bool = Form(False, alias="isOrganic"),
    is_flash_sale: bool = Form(False, alias="isFlashSale"),
    freshness: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    product_images: Optional[List[UploadFile]] = File(None, alias="productImages"),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    product = Product(
        name=name,
        price=price,
        original_price=original_price,
        category=_resolve_category(db, category),
        unit=unit,
        in_stock=in_stock,
        stock_count=stock_count,
        is_organic=is_organic,
        is_flash_sale=is_flash_sale,
        freshness=freshness,
        description=description,
    )
    product.images = save_images(product_images, "products")
    try:
        product_id = create_document(db, PRODUCTS, product)
    except Exception:
        _discard_images(product.images)
        raise
    logger.info(f"Product {name} created")
    return {
        "success": True,
        "message": "Product created successfully",
        "product": present(db, [db[PRODUCTS].find_one({"_id": product_id})])[0],
    }


@router.put("/{product_id}")
def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    category: Optional[str] = Form(None),
    original_price: Optional[float] = Form(None, alias="originalPrice"),
    unit: Optional[str] = Form(None),
    in_stock: Optional[bool] = Form(None, alias="inStock"),
    stock_count: Optional[int] = Form(None, alias="stockCount"),
    is_organic: Optional[bool] = Form(None, alias="isOrganic"),
    is_flash_sale: Optional[bool] = Form(None, alias="isFlashSale"),
    is_active: Optional[bool] = Form(None, alias="isActive"),
    freshness: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    product_images: Optional[List[UploadFile]] = File(None, alias="productImages"),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    existing = db[PRODUCTS].find_one({"_id": object_id(product_id, "Product")})
    if not existing:
        raise NotFoundError("Product")

    changes = ProductChanges(
        name=name, price=price, category=category, original_price=original_price, unit=unit,
        in_stock=in_stock, stock_count=stock_count, is_organic=is_organic,
        is_flash_sale=is_flash_sale, is_active=is_active, freshness=freshness,
        description=description,
    )
    update = changes.model_dump(by_alias=True, exclude_none=True)
    if changes.category is not None:
        update["category"] = _resolve_category(db, changes.category)
    update["updatedAt"] = utcnow()

    ops = {"$set": update}
    new_images = save_images(product_images, "products")
    if new_images:
        ops["$push"] = {"images": {"$each": new_images}}
    try:
        product = db[PRODUCTS].find_one_and_update(
            {"_id": existing["_id"]}, ops, return_document=ReturnDocument.AFTER,
        )
    except Exception:
        _discard_images(new_images)
        raise
    if product is None:
        _discard_images(new_images)
        raise NotFoundError("Product")
    return {"success": True, "message": "Product updated successfully", "product": present(db, [product])[0]}


@router.delete("/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    product = db[PRODUCTS].find_one_and_delete({"_id": object_id(product_id, "Product")})
    if not product:
        raise NotFoundError("Product")
    for url in product.get("images", []):
        delete_image(url)
    db[USERS].update_many({"favorites": product["_id"]}, {"$pull": {"favorites": product["_id"]}})
    logger.info(f"Product {product['name']} deleted")
    return {"success": True, "message": "Product deleted successfully"}
