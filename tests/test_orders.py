"""Orders API and the order workflow.

Invariants:
    - Placing an order reserves stock; cancelling gives it back
    - finalAmount == totalAmount + deliveryFee - discount
    - A failed placement leaves no order, ledger entry or stock change behind
    - Cancel and rate succeed at most once per order
    - Status only moves forward; delivered and cancelled orders cannot change status
    - Order items keep the name and price they were placed at
"""

import pytest
from bson.objectid import ObjectId

from config import get_settings
from order_workflow import OrderWorkflow


def _place(client, account, items, payment_method="cod"):
    return client.post(
        "/api/orders",
        json={
            "items": [{"productId": str(pid), "quantity": qty} for pid, qty in items],
            "deliveryAddressId": account["address_id"],
            "paymentMethod": payment_method,
        },
        headers=account["headers"],
    )


def _set_status(client, admin, order_id, status):
    return client.put(
        f"/api/orders/admin/{order_id}/status", json={"status": status}, headers=admin["headers"],
    )


def test_place_order_below_free_delivery(client, user, db, make_product):
    pid = make_product(price=225, stock_count=10)

    res = _place(client, user, [(pid, 2)])

    assert res.status_code == 201
    order = res.json()["order"]
    assert order["orderNumber"] == "HRA000001"
    assert order["totalAmount"] == 450
    assert order["deliveryFee"] == 40
    assert order["finalAmount"] == 490
    assert order["status"] == "pending"
    assert order["canCancel"] is True
    assert order["paymentStatus"] == "pending"
    assert order["orderTracking"][0]["status"] == "Order Placed"
    assert order["items"][0]["name"] == "Alphonso Mango"
    assert order["deliveryAddress"]["address"] == "12 MG Road, Bengaluru, Karnataka - 560001"
    assert db.products.find_one({"_id": pid})["stockCount"] == 8
    assert db.products.find_one({"_id": pid})["totalSold"] == 2


def test_place_order_at_threshold_is_free_delivery(client, user, make_product):
    pid = make_product(price=250, stock_count=10)

    order = _place(client, user, [(pid, 2)]).json()["order"]

    assert order["deliveryFee"] == 0
    assert order["finalAmount"] == 500


def test_order_uses_catalog_price_not_client_price(client, user, make_product):
    pid = make_product(price=100, stock_count=10)

    res = client.post(
        "/api/orders",
        json={
            "items": [{"productId": str(pid), "quantity": 1, "price": 1}],
            "deliveryAddressId": user["address_id"],
            "paymentMethod": "cod",
        },
        headers=user["headers"],
    )

    assert res.json()["order"]["totalAmount"] == 100


def test_order_numbers_are_sequential(client, user, make_product):
    pid = make_product(stock_count=10)

    first = _place(client, user, [(pid, 1)]).json()["order"]
    second = _place(client, user, [(pid, 1)]).json()["order"]

    assert (first["orderNumber"], second["orderNumber"]) == ("HRA000001", "HRA000002")


def test_place_order_updates_user_ledger_and_notifications(client, user, db, make_product):
    pid = make_product(price=300, stock_count=5)

    order = _place(client, user, [(pid, 2)], payment_method="upi").json()["order"]

    account = db.users.find_one({"_id": ObjectId(user["id"])})
    assert account["totalOrders"] == 1
    assert account["totalSpent"] == 600
    ledger = db.transactions.find_one({"orderId": ObjectId(order["id"])})
    assert ledger["status"] == "completed"
    assert ledger["amount"] == 600
    assert ledger["breakdown"]["itemsTotal"] == 600
    assert order["paymentStatus"] == "completed"
    note = db.notifications.find_one({"userId": ObjectId(user["id"])})
    assert note["title"] == "Order Placed Successfully!"


def test_insufficient_stock_is_rejected(client, user, db, make_product):
    pid = make_product(stock_count=3)

    res = _place(client, user, [(pid, 5)])

    assert res.status_code == 400
    assert res.json()["message"] == "Insufficient stock for Alphonso Mango. Available: 3"
    assert db.products.find_one({"_id": pid})["stockCount"] == 3
    assert db.orders.count_documents({}) == 0


def test_inactive_product_is_rejected(client, user, make_product):
    pid = make_product(is_active=False)

    res = _place(client, user, [(pid, 1)])

    assert res.status_code == 400
    assert res.json()["message"] == "Product Alphonso Mango is not available"


def test_failed_reservation_releases_earlier_lines(client, user, db, make_product):
    pid = make_product(stock_count=5)

    # each line passes the availability check, together they exceed stock
    res = _place(client, user, [(pid, 3), (pid, 3)])

    assert res.status_code == 400
    assert db.products.find_one({"_id": pid})["stockCount"] == 5
    assert db.products.find_one({"_id": pid})["totalSold"] == 0
    assert db.orders.count_documents({}) == 0


def test_failure_after_writes_is_compensated(user, db, make_product, monkeypatch):
    pid = make_product(stock_count=5)
    workflow = OrderWorkflow(db, get_settings())

    def broken_notify(*args, **kwargs):
        raise RuntimeError("notification store unavailable")

    monkeypatch.setattr(workflow, "_notify", broken_notify)
    account = db.users.find_one({"_id": ObjectId(user["id"])})

    with pytest.raises(RuntimeError):
        workflow.place_order(account, [{"productId": str(pid), "quantity": 2}], user["address_id"], "upi")

    assert db.products.find_one({"_id": pid})["stockCount"] == 5
    assert db.orders.count_documents({}) == 0
    assert db.transactions.count_documents({}) == 0
    account = db.users.find_one({"_id": ObjectId(user["id"])})
    assert account["totalOrders"] == 0
    assert account["totalSpent"] == 0


def test_foreign_delivery_address_is_rejected(client, user, other_user, make_product):
    pid = make_product()

    res = client.post(
        "/api/orders",
        json={
            "items": [{"productId": str(pid), "quantity": 1}],
            "deliveryAddressId": other_user["address_id"],
            "paymentMethod": "cod",
        },
        headers=user["headers"],
    )

    assert res.status_code == 400
    assert res.json()["message"] == "Invalid delivery address"


def test_empty_items_rejected(client, user):
    res = client.post(
        "/api/orders",
        json={"items": [], "deliveryAddressId": user["address_id"], "paymentMethod": "cod"},
        headers=user["headers"],
    )

    assert res.status_code == 400
    assert res.json()["code"] == "VALIDATION_ERROR"


def test_list_and_get_orders(client, user, other_user, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 1)]).json()["order"]
    _place(client, other_user, [(pid, 1)])

    listed = client.get("/api/orders", headers=user["headers"]).json()
    active = client.get("/api/orders?status=active", headers=user["headers"]).json()
    delivered = client.get("/api/orders?status=delivered", headers=user["headers"]).json()

    assert listed["total"] == 1
    assert listed["orders"][0]["id"] == order["id"]
    assert active["total"] == 1
    assert delivered["total"] == 0
    assert client.get(f"/api/orders/{order['id']}", headers=user["headers"]).status_code == 200
    assert client.get(f"/api/orders/{order['id']}", headers=other_user["headers"]).status_code == 404


def test_cancel_restores_stock_and_flags(client, user, db, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 4)]).json()["order"]

    res = client.put(f"/api/orders/{order['id']}/cancel", headers=user["headers"])

    assert res.status_code == 200
    cancelled = res.json()["order"]
    assert cancelled["status"] == "cancelled"
    assert cancelled["canCancel"] is False
    assert cancelled["canReorder"] is True
    assert cancelled["orderTracking"][-1]["status"] == "Order Cancelled"
    assert db.products.find_one({"_id": pid})["stockCount"] == 10
    assert db.transactions.find_one({"orderId": ObjectId(order["id"])})["status"] == "cancelled"
    account = db.users.find_one({"_id": ObjectId(user["id"])})
    assert account["totalOrders"] == 0


def test_cancel_twice_is_rejected(client, user, db, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 4)]).json()["order"]
    client.put(f"/api/orders/{order['id']}/cancel", headers=user["headers"])

    res = client.put(f"/api/orders/{order['id']}/cancel", headers=user["headers"])

    assert res.status_code == 400
    assert res.json()["message"] == "This order cannot be cancelled"
    assert db.products.find_one({"_id": pid})["stockCount"] == 10


def test_cancel_prepaid_order_records_refund(client, user, db, make_product):
    pid = make_product(price=300, stock_count=10)
    order = _place(client, user, [(pid, 2)], payment_method="card").json()["order"]

    cancelled = client.put(f"/api/orders/{order['id']}/cancel", headers=user["headers"]).json()["order"]

    ledger = db.transactions.find_one({"orderId": ObjectId(order["id"])})
    assert ledger["refundAmount"] == 600
    assert ledger["refundDate"] is not None
    assert cancelled["paymentStatus"] == "refunded"


def test_cannot_cancel_once_out_for_delivery(client, user, admin, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 1)]).json()["order"]
    moved = _set_status(client, admin, order["id"], "out_for_delivery").json()["order"]

    res = client.put(f"/api/orders/{order['id']}/cancel", headers=user["headers"])

    assert moved["canCancel"] is False
    assert res.status_code == 400


def test_admin_delivers_order(client, user, admin, db, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 1)]).json()["order"]

    _set_status(client, admin, order["id"], "confirmed")
    res = _set_status(client, admin, order["id"], "delivered")

    assert res.status_code == 200
    delivered = res.json()["order"]
    assert delivered["status"] == "delivered"
    assert delivered["canRate"] is True
    assert delivered["canReorder"] is True
    assert delivered["paymentStatus"] == "completed"
    assert delivered["actualDelivery"] is not None
    assert [s["status"] for s in delivered["orderTracking"]] == ["Order Placed", "Order Confirmed", "Delivered"]
    assert db.transactions.find_one({"orderId": ObjectId(order["id"])})["status"] == "completed"


def test_closed_orders_cannot_change_status(client, user, admin, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 1)]).json()["order"]
    _set_status(client, admin, order["id"], "delivered")

    res = _set_status(client, admin, order["id"], "preparing")

    assert res.status_code == 400
    assert res.json()["message"] == "Order status cannot change from delivered to preparing"


def test_status_cannot_move_backwards(client, user, admin, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 1)]).json()["order"]
    _set_status(client, admin, order["id"], "out_for_delivery")

    res = _set_status(client, admin, order["id"], "pending")
    repeat = _set_status(client, admin, order["id"], "out_for_delivery")

    assert res.status_code == 400
    assert res.json()["message"] == "Order status cannot change from out_for_delivery to pending"
    assert repeat.status_code == 400
    current = client.get(f"/api/orders/{order['id']}", headers=user["headers"]).json()["order"]
    assert current["status"] == "out_for_delivery"
    assert [s["status"] for s in current["orderTracking"]] == ["Order Placed", "Out for Delivery"]


def test_order_items_keep_price_and_name_after_catalog_change(client, user, db, make_product):
    pid = make_product(name="Alphonso Mango", price=225, stock_count=10)
    order = _place(client, user, [(pid, 2)]).json()["order"]

    db.products.update_one({"_id": pid}, {"$set": {"price": 999, "name": "Changed", "images": ["/x.png"]}})
    res = client.get(f"/api/orders/{order['id']}", headers=user["headers"])

    item = res.json()["order"]["items"][0]
    assert item["name"] == "Alphonso Mango"
    assert item["price"] == 225
    assert item["quantity"] == 2
    assert res.json()["order"]["totalAmount"] == 450


def test_admin_cancel_runs_cancellation(client, user, admin, db, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 3)]).json()["order"]

    res = _set_status(client, admin, order["id"], "cancelled")

    assert res.status_code == 200
    assert db.products.find_one({"_id": pid})["stockCount"] == 10


def test_status_change_requires_admin(client, user, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 1)]).json()["order"]

    assert _set_status(client, user, order["id"], "confirmed").status_code == 403


def test_admin_lists_all_orders(client, user, other_user, admin, make_product):
    pid = make_product(stock_count=10)
    _place(client, user, [(pid, 1)])
    _place(client, other_user, [(pid, 1)])

    res = client.get("/api/orders/admin/all", headers=admin["headers"])

    assert res.status_code == 200
    assert res.json()["total"] == 2
    assert {o["userId"]["name"] for o in res.json()["orders"]} == {"Asha Rao", "Ravi Kumar"}


def test_rate_delivered_order_once(client, user, admin, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 1)]).json()["order"]
    _set_status(client, admin, order["id"], "delivered")

    first = client.put(f"/api/orders/{order['id']}/rate", json={"rating": 5, "review": "Fresh!"}, headers=user["headers"])
    second = client.put(f"/api/orders/{order['id']}/rate", json={"rating": 4}, headers=user["headers"])

    assert first.status_code == 200
    assert first.json()["order"]["rating"] == 5
    assert first.json()["order"]["canRate"] is False
    assert second.status_code == 400
    assert second.json()["message"] == "Order has already been rated"


def test_rate_undelivered_order_is_rejected(client, user, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 1)]).json()["order"]

    res = client.put(f"/api/orders/{order['id']}/rate", json={"rating": 5}, headers=user["headers"])

    assert res.status_code == 400
    assert res.json()["message"] == "This order cannot be rated"


def test_rating_out_of_range_is_rejected(client, user, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 1)]).json()["order"]

    res = client.put(f"/api/orders/{order['id']}/rate", json={"rating": 6}, headers=user["headers"])

    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "rating"


def test_reorder_skips_unavailable_products(client, user, admin, db, make_product):
    mango = make_product(stock_count=10)
    grapes = make_product(name="Green Grapes", price=90, stock_count=10)
    order = _place(client, user, [(mango, 1), (grapes, 2)]).json()["order"]
    _set_status(client, admin, order["id"], "delivered")
    db.products.update_one({"_id": grapes}, {"$set": {"isActive": False}})

    res = client.post(f"/api/orders/{order['id']}/reorder", headers=user["headers"])

    assert res.status_code == 201
    body = res.json()
    assert body["unavailableProducts"] == ["Green Grapes"]
    assert [i["name"] for i in body["order"]["items"]] == ["Alphonso Mango"]
    assert body["order"]["orderNumber"] == "HRA000002"
    assert db.products.find_one({"_id": mango})["stockCount"] == 8


def test_reorder_requires_closed_order(client, user, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 1)]).json()["order"]

    res = client.post(f"/api/orders/{order['id']}/reorder", headers=user["headers"])

    assert res.status_code == 400
    assert res.json()["message"] == "This order cannot be reordered"


def test_reorder_with_nothing_available_is_rejected(client, user, admin, db, make_product):
    pid = make_product(stock_count=10)
    order = _place(client, user, [(pid, 1)]).json()["order"]
    client.put(f"/api/orders/{order['id']}/cancel", headers=user["headers"])
    db.products.update_one({"_id": pid}, {"$set": {"inStock": False}})

    res = client.post(f"/api/orders/{order['id']}/reorder", headers=user["headers"])

    assert res.status_code == 400
    assert db.orders.count_documents({}) == 1
