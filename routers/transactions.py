from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pymongo.database import Database

from config import Settings, get_settings
from database import (
    ORDERS, TRANSACTIONS, find_owned, get_db, page_envelope, paginate, populate, serialize_doc, utcnow,
)
from errors import ValidationError
from security import get_current_user

router = APIRouter(prefix="/api/transactions", tags=["transactions"])

ORDER_FIELDS = ("orderNumber", "status", "items", "date")
SORT_FIELDS = {"timestamp", "amount", "createdAt", "status"}


def _completed(field: str) -> dict:
    return {"$sum": {"$cond": [{"$eq": ["$status", "completed"]}, field, 0]}}


@router.get("")
def list_transactions(
    type_: Optional[str] = Query(None, alias="type"),
    tx_status: Optional[str] = Query(None, alias="status"),
    payment_method: Optional[str] = Query(None, alias="paymentMethod"),
    sort_by: str = Query("timestamp", alias="sortBy"),
    order: str = "desc",
    limit: int = Query(10, ge=1),
    page: int = Query(1, ge=1),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if sort_by not in SORT_FIELDS:
        raise ValidationError(
            "Validation failed",
            details=[{"field": "sortBy", "message": f"sortBy must be one of {', '.join(sorted(SORT_FIELDS))}"}],
        )
    filt = {"userId": user["_id"]}
    if type_:
        filt["type"] = type_
    if tx_status:
        filt["status"] = tx_status
    if payment_method:
        filt["paymentMethod"] = payment_method

    page, limit, skip = paginate(page, limit, settings.max_page_size)
    transactions = list(
        db[TRANSACTIONS]
        .find(filt)
        .sort(sort_by, -1 if order == "desc" else 1)
        .skip(skip)
        .limit(limit)
    )
    total = db[TRANSACTIONS].count_documents(filt)
    populate(db, transactions, "orderId", ORDERS, ORDER_FIELDS)
    return {
        "success": True,
        **page_envelope(transactions, total, page, limit),
        "transactions": serialize_doc(transactions),
    }


@router.get("/recent")
def recent_transactions(
    limit: int = Query(5, ge=1, le=50),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    transactions = list(
        db[TRANSACTIONS].find({"userId": user["_id"]}).sort("timestamp", -1).limit(limit)
    )
    populate(db, transactions, "orderId", ORDERS, ("orderNumber", "status"))
    return {"success": True, "count": len(transactions), "transactions": serialize_doc(transactions)}


@router.get("/stats")
def transaction_stats(user=Depends(get_current_user), db: Database = Depends(get_db)):
    """Spending overview, split by payment method and by month for the last year."""
    uid = user["_id"]
    overview = list(db[TRANSACTIONS].aggregate([
        {"$match": {"userId": uid}},
        {"$group": {
            "_id": None,
            "totalTransactions": {"$sum": 1},
            "totalAmount": {"$sum": "$amount"},
            "completedAmount": _completed("$amount"),
            "completedTransactions": _completed(1),
        }},
    ]))
    by_method = list(db[TRANSACTIONS].aggregate([
        {"$match": {"userId": uid, "status": "completed"}},
        {"$group": {"_id": "$paymentMethod", "count": {"$sum": 1}, "totalAmount": {"$sum": "$amount"}}},
        {"$sort": {"totalAmount": -1}},
    ]))
    monthly = list(db[TRANSACTIONS].aggregate([
        {"$match": {"userId": uid, "timestamp": {"$gte": utcnow() - timedelta(days=365)}}},
        {"$group": {
            "_id": {"year": {"$year": "$timestamp"}, "month": {"$month": "$timestamp"}},
            "count": {"$sum": 1},
            "totalAmount": {"$sum": "$amount"},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1}},
    ]))

    summary = overview[0] if overview else {}
    return {
        "success": True,
        "stats": {
            "overview": {
                "totalTransactions": summary.get("totalTransactions", 0),
                "totalAmount": summary.get("totalAmount", 0),
                "completedAmount": summary.get("completedAmount", 0),
                "completedTransactions": summary.get("completedTransactions", 0),
            },
            "paymentMethods": [
                {"method": m["_id"], "count": m["count"], "totalAmount": m["totalAmount"]}
                for m in by_method
            ],
            "monthlyData": [
                {
                    "year": m["_id"]["year"],
                    "month": m["_id"]["month"],
                    "count": m["count"],
                    "totalAmount": m["totalAmount"],
                }
                for m in monthly
            ],
        },
    }


@router.get("/{transaction_id}")
def get_transaction(transaction_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    transaction = find_owned(db, TRANSACTIONS, transaction_id, user["_id"], "Transaction")
    populate(db, [transaction], "orderId", ORDERS, ORDER_FIELDS + ("deliveryAddress",))
    return {"success": True, "transaction": serialize_doc(transaction)}


@router.get("/{transaction_id}/receipt")
def get_receipt(
    transaction_id: str,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    transaction = find_owned(db, TRANSACTIONS, transaction_id, user["_id"], "Transaction")
    if transaction.get("status") != "completed":
        raise ValidationError("Receipt is only available for completed transactions")
    order = None
    if transaction.get("orderId"):
        order = db[ORDERS].find_one(
            {"_id": transaction["orderId"]},
            {"orderNumber": 1, "items": 1, "deliveryAddress": 1, "date": 1},
        )

    receipt = {
        "receiptNumber": f"RCP-{transaction['transactionId']}",
        "transactionId": transaction["transactionId"],
        "date": transaction["timestamp"],
        "merchant": {"name": transaction.get("merchantName") or settings.merchant_name},
        "customer": transaction.get("customerDetails") or {},
        "payment": {
            "method": transaction["paymentMethod"],
            "amount": transaction["amount"],
            "status": transaction["status"],
        },
        "breakdown": transaction.get("breakdown"),
        "order": order,
    }
    return {"success": True, "receipt": serialize_doc(receipt)}
