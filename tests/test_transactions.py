"""Payment ledger API: listing, receipts and spending stats."""

from bson.objectid import ObjectId


def _order(client, account, pid, payment_method, quantity=1):
    return client.post(
        "/api/orders",
        json={
            "items": [{"productId": str(pid), "quantity": quantity}],
            "deliveryAddressId": account["address_id"],
            "paymentMethod": payment_method,
        },
        headers=account["headers"],
    ).json()["order"]


def test_list_transactions_with_order(client, user, make_product):
    pid = make_product(price=300, stock_count=10)
    order = _order(client, user, pid, "upi")

    res = client.get("/api/transactions", headers=user["headers"])

    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 1
    tx = body["transactions"][0]
    assert tx["type"] == "payment"
    assert tx["amount"] == 340
    assert tx["status"] == "completed"
    assert tx["orderId"]["orderNumber"] == order["orderNumber"]
    assert tx["customerDetails"]["phone"] == "9876543210"


def test_list_filters_by_status_and_method(client, user, make_product):
    pid = make_product(stock_count=10)
    _order(client, user, pid, "upi")
    _order(client, user, pid, "cod")

    pending = client.get("/api/transactions?status=pending", headers=user["headers"]).json()
    upi = client.get("/api/transactions?paymentMethod=upi", headers=user["headers"]).json()

    assert [t["paymentMethod"] for t in pending["transactions"]] == ["cod"]
    assert [t["paymentMethod"] for t in upi["transactions"]] == ["upi"]


def test_recent_transactions(client, user, make_product):
    pid = make_product(stock_count=20)
    for _ in range(6):
        _order(client, user, pid, "card")

    res = client.get("/api/transactions/recent", headers=user["headers"])

    assert res.json()["count"] == 5


def test_transactions_are_private(client, user, other_user, db, make_product):
    pid = make_product(stock_count=10)
    _order(client, user, pid, "upi")
    tx = db.transactions.find_one({"userId": ObjectId(user["id"])})

    assert client.get("/api/transactions", headers=other_user["headers"]).json()["total"] == 0
    assert client.get(f"/api/transactions/{tx['_id']}", headers=other_user["headers"]).status_code == 404
    assert client.get(f"/api/transactions/{tx['_id']}", headers=user["headers"]).status_code == 200


def test_receipt_for_completed_transaction(client, user, db, make_product):
    pid = make_product(price=250, stock_count=10)
    _order(client, user, pid, "card", quantity=2)
    tx = db.transactions.find_one({"userId": ObjectId(user["id"])})

    res = client.get(f"/api/transactions/{tx['_id']}/receipt", headers=user["headers"])

    assert res.status_code == 200
    receipt = res.json()["receipt"]
    assert receipt["receiptNumber"] == f"RCP-{tx['transactionId']}"
    assert receipt["merchant"]["name"] == "Fresh Grocery Store"
    assert receipt["payment"] == {"method": "card", "amount": 500, "status": "completed"}
    assert receipt["breakdown"]["deliveryFee"] == 0
    assert receipt["order"]["items"][0]["quantity"] == 2


def test_no_receipt_for_pending_transaction(client, user, db, make_product):
    pid = make_product(stock_count=10)
    _order(client, user, pid, "cod")
    tx = db.transactions.find_one({"userId": ObjectId(user["id"])})

    res = client.get(f"/api/transactions/{tx['_id']}/receipt", headers=user["headers"])

    assert res.status_code == 400
    assert res.json()["message"] == "Receipt is only available for completed transactions"


def test_unknown_sort_field_is_rejected(client, user):
    res = client.get("/api/transactions?sortBy=userId", headers=user["headers"])

    assert res.status_code == 400
