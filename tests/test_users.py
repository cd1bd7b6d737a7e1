"""User profile, favorites and admin listing."""

from bson.objectid import ObjectId

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def test_update_profile_name_and_avatar(client, user):
    res = client.put(
        "/api/users/profile",
        data={"name": "Asha R"},
        files={"avatar": ("me.png", PNG, "image/png")},
        headers=user["headers"],
    )

    assert res.status_code == 200
    profile = res.json()["user"]
    assert profile["name"] == "Asha R"
    assert profile["avatar"].startswith("/uploads/avatars/")
    assert "passwordHash" not in profile


def test_update_profile_rejects_taken_email(client, user, other_user):
    res = client.put("/api/users/profile", data={"email": "ravi@freshmail.in"}, headers=user["headers"])

    assert res.status_code == 400
    assert res.json()["message"] == "Email is already registered"


def test_update_profile_rejects_bad_email(client, user):
    res = client.put("/api/users/profile", data={"email": "not-an-email"}, headers=user["headers"])

    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "email"


def test_favorites_add_list_remove(client, user, make_product):
    pid = make_product()

    added = client.post(f"/api/users/favorites/{pid}", headers=user["headers"])
    again = client.post(f"/api/users/favorites/{pid}", headers=user["headers"])
    listed = client.get("/api/users/favorites", headers=user["headers"])
    removed = client.delete(f"/api/users/favorites/{pid}", headers=user["headers"])
    missing = client.delete(f"/api/users/favorites/{pid}", headers=user["headers"])

    assert added.status_code == 200
    assert added.json()["favorites"][0]["name"] == "Alphonso Mango"
    assert again.status_code == 400
    assert again.json()["message"] == "Product already in favorites"
    assert listed.json()["favorites"][0]["category"]["name"] == "Fruits"
    assert removed.json()["favorites"] == []
    assert missing.json()["message"] == "Product not in favorites"


def test_favorite_unknown_product(client, user):
    res = client.post(f"/api/users/favorites/{ObjectId()}", headers=user["headers"])

    assert res.status_code == 404


def test_stats(client, user, make_product):
    pid = make_product()
    client.post(f"/api/users/favorites/{pid}", headers=user["headers"])

    stats = client.get("/api/users/stats", headers=user["headers"]).json()["stats"]

    assert stats["totalOrders"] == 0
    assert stats["favoriteProducts"] == 1
    assert stats["memberSince"]


def test_deactivate_locks_account(client, user):
    res = client.put("/api/users/deactivate", headers=user["headers"])

    assert res.json()["user"]["isActive"] is False
    assert client.get("/api/auth/me", headers=user["headers"]).status_code == 401


def test_admin_lists_users(client, user, admin):
    res = client.get("/api/users?limit=1", headers=admin["headers"])

    assert res.status_code == 200
    assert res.json()["total"] == 2
    assert res.json()["count"] == 1
    assert "passwordHash" not in res.json()["users"][0]
