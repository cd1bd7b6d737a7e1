from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import Field
from pymongo.database import Database

from config import Settings, get_settings
from database import ORDERS, USERS, find_owned, get_db, page_envelope, paginate, populate, serialize_doc
from errors import ValidationError
from order_workflow import OrderWorkflow
from schemas import ACTIVE_ORDER_STATUSES, OBJECT_ID_PATTERN, CamelModel, OrderStatus, PaymentMethod
from security import get_current_user, require_admin

router = APIRouter(prefix="/api/orders", tags=["orders"])

ORDER_STATUSES = ("pending", "confirmed", "preparing", "out_for_delivery", "delivered", "cancelled")


class OrderItemBody(CamelModel):
    product_id: str = Field(..., pattern=OBJECT_ID_PATTERN)
    quantity: int = Field(..., ge=1)
    # client prices are ignored; totals come from the catalog
    price: Optional[float] = Field(None, ge=0)
    variant: Optional[str] = None


class PlaceOrderBody(CamelModel):
    items: List[OrderItemBody] = Field(..., min_length=1)
    delivery_address_id: str
    payment_method: PaymentMethod
    promo_code: Optional[str] = None
    special_instructions: Optional[str] = Field(None, max_length=200)


class RateBody(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=500)


class StatusBody(CamelModel):
    status: OrderStatus


def get_workflow(db: Database = Depends(get_db), settings: Settings = Depends(get_settings)) -> OrderWorkflow:
    return OrderWorkflow(db, settings)


def _status_filter(value: Optional[str]) -> dict:
    if not value or value == "all":
        return {}
    if value == "active":
        return {"status": {"$in": ACTIVE_ORDER_STATUSES}}
    if value not in ORDER_STATUSES:
        raise ValidationError(
            "Validation failed",
            details=[{"field": "status", "message": f"Unknown order status {value}"}],
        )
    return {"status": value}


@router.get("")
def list_orders(
    order_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(10, ge=1),
    page: int = Query(1, ge=1),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    filt = {"userId": user["_id"], **_status_filter(order_status)}
    page, limit, skip = paginate(page, limit, settings.max_page_size)
    orders = list(db[ORDERS].find(filt).sort("createdAt", -1).skip(skip).limit(limit))
    total = db[ORDERS].count_documents(filt)
    return {"success": True, **page_envelope(orders, total, page, limit), "orders": serialize_doc(orders)}


@router.post("", status_code=status.HTTP_201_CREATED)
def place_order(
    body: PlaceOrderBody,
    user=Depends(get_current_user),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    order = workflow.place_order(
        user,
        [item.model_dump(by_alias=True, exclude={"price"}) for item in body.items],
        body.delivery_address_id,
        body.payment_method,
        promo_code=body.promo_code,
        special_instructions=body.special_instructions,
    )
    return {"success": True, "message": "Order placed successfully", "order": serialize_doc(order)}


@router.get("/admin/all")
def list_all_orders(
    order_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1),
    page: int = Query(1, ge=1),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    filt = _status_filter(order_status)
    page, limit, skip = paginate(page, limit, settings.max_page_size)
    orders = list(db[ORDERS].find(filt).sort("createdAt", -1).skip(skip).limit(limit))
    total = db[ORDERS].count_documents(filt)
    populate(db, orders, "userId", USERS, ("name", "email", "phone"))
    return {"success": True, **page_envelope(orders, total, page, limit), "orders": serialize_doc(orders)}


@router.put("/admin/{order_id}/status")
def update_order_status(
    order_id: str,
    body: StatusBody,
    admin=Depends(require_admin),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    order = workflow.update_status(order_id, body.status)
    return {"success": True, "message": "Order status updated successfully", "order": serialize_doc(order)}


@router.get("/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = find_owned(db, ORDERS, order_id, user["_id"], "Order")
    return {"success": True, "order": serialize_doc(order)}


@router.put("/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(get_current_user), workflow: OrderWorkflow = Depends(get_workflow)):
    order = workflow.cancel_order(user, order_id)
    return {"success": True, "message": "Order cancelled successfully", "order": serialize_doc(order)}


@router.post("/{order_id}/reorder", status_code=status.HTTP_201_CREATED)
def reorder(order_id: str, user=Depends(get_current_user), workflow: OrderWorkflow = Depends(get_workflow)):
    order, unavailable = workflow.reorder(user, order_id)
    message = "Reorder placed successfully"
    if unavailable:
        message += f". {len(unavailable)} item(s) were unavailable and skipped"
    return {
        "success": True,
        "message": message,
        "order": serialize_doc(order),
        "unavailableProducts": unavailable,
    }


@router.put("/{order_id}/rate")
def rate_order(
    order_id: str,
    body: RateBody,
    user=Depends(get_current_user),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    order = workflow.rate_order(user, order_id, body.rating, body.review)
    return {"success": True, "message": "Thank you for rating your order", "order": serialize_doc(order)}
