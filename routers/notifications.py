from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import Field
from pymongo import ReturnDocument
from pymongo.database import Database

from config import Settings, get_settings
from database import (
    NOTIFICATIONS, create_document, find_owned, get_db, object_id, page_envelope, paginate,
    serialize_doc, utcnow,
)
from errors import NotFoundError
from schemas import CamelModel, Notification, NotificationPriority, NotificationType
from security import get_current_user

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class NotificationBody(CamelModel):
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=500)
    priority: NotificationPriority = "medium"
    data: Dict[str, Any] = Field(default_factory=dict)


def _count_by(db: Database, user_id, field: str) -> Dict[str, int]:
    rows = db[NOTIFICATIONS].aggregate([
        {"$match": {"userId": user_id}},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
    ])
    return {row["_id"]: row["count"] for row in rows}


@router.get("")
def list_notifications(
    is_read: Optional[bool] = Query(None, alias="isRead"),
    type_: Optional[NotificationType] = Query(None, alias="type"),
    priority: Optional[NotificationPriority] = None,
    limit: int = Query(20, ge=1),
    page: int = Query(1, ge=1),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    filt = {"userId": user["_id"]}
    if is_read is not None:
        filt["isRead"] = is_read
    if type_:
        filt["type"] = type_
    if priority:
        filt["priority"] = priority

    page, limit, skip = paginate(page, limit, settings.max_page_size)
    notifications = list(db[NOTIFICATIONS].find(filt).sort("createdAt", -1).skip(skip).limit(limit))
    total = db[NOTIFICATIONS].count_documents(filt)
    unread = db[NOTIFICATIONS].count_documents({"userId": user["_id"], "isRead": False})
    return {
        "success": True,
        **page_envelope(notifications, total, page, limit),
        "unreadCount": unread,
        "notifications": serialize_doc(notifications),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_notification(body: NotificationBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    notification_id = create_document(db, NOTIFICATIONS, Notification(user_id=user["_id"], **body.model_dump()))
    return {
        "success": True,
        "message": "Notification created successfully",
        "notification": serialize_doc(db[NOTIFICATIONS].find_one({"_id": notification_id})),
    }


@router.get("/stats")
def notification_stats(user=Depends(get_current_user), db: Database = Depends(get_db)):
    total = db[NOTIFICATIONS].count_documents({"userId": user["_id"]})
    unread = db[NOTIFICATIONS].count_documents({"userId": user["_id"], "isRead": False})
    return {
        "success": True,
        "stats": {
            "overview": {"total": total, "unread": unread, "read": total - unread},
            "byType": _count_by(db, user["_id"], "type"),
            "byPriority": _count_by(db, user["_id"], "priority"),
        },
    }


@router.put("/mark-all-as-read")
def mark_all_as_read(user=Depends(get_current_user), db: Database = Depends(get_db)):
    result = db[NOTIFICATIONS].update_many(
        {"userId": user["_id"], "isRead": False},
        {"$set": {"isRead": True, "updatedAt": utcnow()}},
    )
    return {
        "success": True,
        "message": f"{result.modified_count} notifications marked as read",
        "modifiedCount": result.modified_count,
    }


@router.delete("/clear-all")
def clear_all(user=Depends(get_current_user), db: Database = Depends(get_db)):
    result = db[NOTIFICATIONS].delete_many({"userId": user["_id"]})
    return {
        "success": True,
        "message": f"{result.deleted_count} notifications cleared",
        "deletedCount": result.deleted_count,
    }


@router.put("/{notification_id}/mark-as-read")
def mark_as_read(notification_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    notification = db[NOTIFICATIONS].find_one_and_update(
        {"_id": object_id(notification_id, "Notification"), "userId": user["_id"]},
        {"$set": {"isRead": True, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not notification:
        raise NotFoundError("Notification")
    return {
        "success": True,
        "message": "Notification marked as read",
        "notification": serialize_doc(notification),
    }


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    notification = find_owned(db, NOTIFICATIONS, notification_id, user["_id"], "Notification")
    db[NOTIFICATIONS].delete_one({"_id": notification["_id"]})
    return {"success": True, "message": "Notification deleted successfully"}
