"""Notification inbox API."""


def _create(client, account, **fields):
    payload = {"type": "promotion", "title": "Weekend offer", "message": "Fresh fruit deals"}
    payload.update(fields)
    res = client.post("/api/notifications", json=payload, headers=account["headers"])
    assert res.status_code == 201, res.json()
    return res.json()["notification"]


def test_create_and_list(client, user):
    created = _create(client, user, priority="high", data={"code": "FRUIT10"})

    res = client.get("/api/notifications", headers=user["headers"])

    assert created["priority"] == "high"
    assert created["isRead"] is False
    assert created["data"] == {"code": "FRUIT10"}
    body = res.json()
    assert body["total"] == 1
    assert body["unreadCount"] == 1


def test_invalid_type_is_rejected(client, user):
    res = client.post(
        "/api/notifications",
        json={"type": "spam", "title": "x", "message": "y"},
        headers=user["headers"],
    )

    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "type"


def test_filters(client, user):
    _create(client, user)
    _create(client, user, type="system", priority="urgent")

    system = client.get("/api/notifications?type=system", headers=user["headers"]).json()
    urgent = client.get("/api/notifications?priority=urgent", headers=user["headers"]).json()

    assert system["total"] == 1
    assert urgent["notifications"][0]["type"] == "system"


def test_mark_as_read(client, user):
    note = _create(client, user)

    res = client.put(f"/api/notifications/{note['id']}/mark-as-read", headers=user["headers"])

    assert res.json()["notification"]["isRead"] is True
    unread = client.get("/api/notifications?isRead=false", headers=user["headers"]).json()
    assert unread["total"] == 0


def test_mark_all_as_read(client, user):
    _create(client, user)
    _create(client, user)

    res = client.put("/api/notifications/mark-all-as-read", headers=user["headers"])

    assert res.json()["message"] == "2 notifications marked as read"
    assert client.get("/api/notifications", headers=user["headers"]).json()["unreadCount"] == 0


def test_delete_and_clear_all(client, user, other_user):
    first = _create(client, user)
    _create(client, user)
    _create(client, other_user)

    assert client.delete(f"/api/notifications/{first['id']}", headers=other_user["headers"]).status_code == 404
    assert client.delete(f"/api/notifications/{first['id']}", headers=user["headers"]).status_code == 200
    res = client.delete("/api/notifications/clear-all", headers=user["headers"])

    assert res.json()["message"] == "1 notifications cleared"
    assert client.get("/api/notifications", headers=other_user["headers"]).json()["total"] == 1


def test_stats(client, user):
    note = _create(client, user)
    _create(client, user, type="system", priority="low")
    client.put(f"/api/notifications/{note['id']}/mark-as-read", headers=user["headers"])

    stats = client.get("/api/notifications/stats", headers=user["headers"]).json()["stats"]

    assert stats["overview"] == {"total": 2, "unread": 1, "read": 1}
    assert stats["byType"] == {"promotion": 1, "system": 1}
    assert stats["byPriority"] == {"medium": 1, "low": 1}


def test_order_placement_notifies_user(client, user, make_product):
    pid = make_product(stock_count=5)
    client.post(
        "/api/orders",
        json={
            "items": [{"productId": str(pid), "quantity": 1}],
            "deliveryAddressId": user["address_id"],
            "paymentMethod": "cod",
        },
        headers=user["headers"],
    )

    res = client.get("/api/notifications?type=order", headers=user["headers"])

    assert res.json()["notifications"][0]["title"] == "Order Placed Successfully!"
