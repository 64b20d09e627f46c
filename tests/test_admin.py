from datetime import datetime, timedelta

import pytest

import config
from conftest import PASSWORD


@pytest.fixture
def admin_user(make_user):
    return make_user(email="admin@example.com", role="admin", name="Store Admin")


@pytest.fixture
def admin_headers(admin_user, auth_headers):
    return auth_headers(admin_user)


class TestAdminAccess:
    def test_customer_token_is_forbidden(self, client, make_user, auth_headers):
        resp = client.get("/api/admin/users", headers=auth_headers(make_user()))
        assert resp.status_code == 403
        assert resp.json()["error"] == "Admin access required"

    def test_anonymous_is_unauthorized(self, client):
        assert client.get("/api/admin/orders").status_code == 401

    def test_login_sets_admin_cookie(self, client, admin_user):
        resp = client.post("/api/admin/login", json={"email": "admin@example.com", "password": PASSWORD})
        assert resp.status_code == 200
        cookie = resp.headers["set-cookie"]
        assert cookie.startswith(f"{config.ADMIN_COOKIE_NAME}=")
        assert "HttpOnly" in cookie
        assert "SameSite=strict" in cookie
        assert f"Max-Age={config.JWT_EXPIRES_MIN * 60}" in cookie

        # later requests authenticate with the cookie alone
        assert client.get("/api/admin/users").status_code == 200

        out = client.post("/api/admin/logout")
        assert "Max-Age=0" in out.headers["set-cookie"]

    def test_customer_cannot_use_admin_login(self, client, make_user):
        make_user(email="shopper@example.com")
        resp = client.post("/api/admin/login", json={"email": "shopper@example.com", "password": PASSWORD})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid credentials"


class TestCategoriesAndProducts:
    def test_category_lifecycle(self, client, admin_headers, make_product, category_id):
        created = client.post("/api/admin/categories", json={"name": "Air Purifiers"}, headers=admin_headers)
        assert created.status_code == 201
        new_id = created.json()["category"]["id"]
        assert created.json()["category"]["slug"] == "air-purifiers"

        dup = client.post("/api/admin/categories", json={"name": "Air Purifiers"}, headers=admin_headers)
        assert dup.status_code == 400

        renamed = client.put(f"/api/admin/categories/{new_id}", json={"name": "Purifiers"}, headers=admin_headers)
        assert renamed.json()["category"]["name"] == "Purifiers"
        assert renamed.json()["category"]["slug"] == "purifiers"

        make_product()
        blocked = client.delete(f"/api/admin/categories/{category_id}", headers=admin_headers)
        assert blocked.status_code == 400
        assert blocked.json()["error"] == "Cannot delete category with 1 products"

        assert client.delete(f"/api/admin/categories/{new_id}", headers=admin_headers).status_code == 200
        listing = client.get("/api/admin/categories", headers=admin_headers).json()["categories"]
        assert [(c["name"], c["product_count"]) for c in listing] == [("Air Conditioners", 1)]

    def test_category_update_fields(self, client, admin_headers, category_id):
        url = f"/api/admin/categories/{category_id}"
        resp = client.put(url, json={"image_url": "/img/ac.png", "is_active": False}, headers=admin_headers)
        category = resp.json()["category"]
        assert (category["image_url"], category["is_active"]) == ("/img/ac.png", False)
        assert category["slug"] == "air-conditioners"
        assert client.get("/api/categories").json()["categories"] == []

        resp = client.put(url, json={"slug": "Cooling"}, headers=admin_headers)
        assert resp.json()["category"]["slug"] == "cooling"

        client.post("/api/admin/categories", json={"name": "Heaters"}, headers=admin_headers)
        clash = client.put(url, json={"slug": "heaters"}, headers=admin_headers)
        assert clash.status_code == 400
        assert clash.json()["error"] == "Category slug already exists"

    def test_product_create_update_soft_delete(self, client, db, admin_headers, category_id):
        created = client.post("/api/admin/products", headers=admin_headers, json={
            "name": "Tower Fan Deluxe",
            "brand": "Breezy",
            "price": 3499,
            "mrp": 3999,
            "category_id": category_id,
            "stock_quantity": 12,
        })
        assert created.status_code == 201
        product = created.json()["product"]
        assert product["slug"] == "tower-fan-deluxe"
        assert product["sku"].startswith("AIR-BRE-")
        assert product["available_stock"] == 12

        pid = product["id"]
        updated = client.put(f"/api/admin/products/{pid}", json={"price": 2999}, headers=admin_headers)
        assert updated.json()["product"]["price"] == 2999

        assert client.delete(f"/api/admin/products/{pid}", headers=admin_headers).status_code == 200
        assert db["product"].find_one({"slug": "tower-fan-deluxe"})["is_active"] is False
        assert client.get(f"/api/products/{pid}").status_code == 404
        admin_list = client.get("/api/admin/products", headers=admin_headers).json()
        assert admin_list["pagination"]["total"] == 1

    @pytest.mark.parametrize("field", ["price", "name", "is_active", "category_id"])
    def test_product_update_rejects_null_required_fields(self, client, db, admin_headers, make_user,
                                                         auth_headers, make_product, field):
        pid = make_product(price=250.0)
        resp = client.put(f"/api/admin/products/{pid}", json={field: None}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request data"
        assert db["product"].find_one({"slug": "split-ac-1"})["price"] == 250.0

        shopper = auth_headers(make_user())
        assert client.post("/api/cart/add", json={"product_id": pid, "quantity": 2}, headers=shopper).status_code == 201
        assert client.get("/api/cart", headers=shopper).status_code == 200

    def test_product_update_can_clear_optional_fields(self, client, admin_headers, make_product):
        pid = make_product(price=250.0, mrp=300.0)
        resp = client.put(f"/api/admin/products/{pid}", json={"mrp": None}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["product"]["mrp"] is None

    def test_product_needs_existing_category(self, client, admin_headers):
        resp = client.post("/api/admin/products", headers=admin_headers, json={
            "name": "Orphan", "price": 10, "category_id": "0123456789abcdef01234567",
        })
        assert resp.status_code == 400

    def test_stock_levels(self, client, admin_headers, make_product):
        low = make_product(stock=3)
        make_product(stock=40)
        items = client.get("/api/admin/inventory/low-stock", headers=admin_headers).json()["items"]
        assert [i["product_id"] for i in items] == [low]

        resp = client.put(f"/api/admin/inventory/{low}", json={"stock_quantity": 30}, headers=admin_headers)
        assert resp.json()["inventory"]["available_stock"] == 30
        assert client.get("/api/admin/inventory/low-stock", headers=admin_headers).json()["items"] == []


class TestUsers:
    def test_filters(self, client, admin_headers, make_user):
        make_user(email="meera@example.com", name="Meera")
        make_user(email="old@example.com", name="Old Account", is_active=False)

        by_name = client.get("/api/admin/users?search=meer", headers=admin_headers).json()["users"]
        assert [u["email"] for u in by_name] == ["meera@example.com"]

        inactive = client.get("/api/admin/users?status=inactive", headers=admin_headers).json()["users"]
        assert [u["email"] for u in inactive] == ["old@example.com"]

        admins = client.get("/api/admin/users?role=ADMIN", headers=admin_headers).json()["users"]
        assert [u["email"] for u in admins] == ["admin@example.com"]

    def test_admin_cannot_lock_themselves_out(self, client, admin_user, admin_headers):
        uid = str(admin_user["_id"])
        resp = client.patch(f"/api/admin/users/{uid}", json={"is_active": False}, headers=admin_headers)
        assert resp.status_code == 400
        resp = client.patch(f"/api/admin/users/{uid}", json={"role": "user"}, headers=admin_headers)
        assert resp.status_code == 400
        assert client.delete(f"/api/admin/users/{uid}", headers=admin_headers).status_code == 400

    def test_promote_user(self, client, admin_headers, make_user):
        uid = str(make_user()["_id"])
        resp = client.patch(f"/api/admin/users/{uid}", json={"role": "admin"}, headers=admin_headers)
        assert resp.json()["user"]["role"] == "admin"

    def test_delete_anonymises(self, client, db, admin_headers, make_user, make_product):
        user = make_user(email="leaving@example.com", phone="9123456780")
        uid = str(user["_id"])
        db["cartitem"].insert_one({"user_id": uid, "product_id": make_product(), "quantity": 1})

        assert client.delete(f"/api/admin/users/{uid}", headers=admin_headers).status_code == 200
        gone = db["user"].find_one({"_id": user["_id"]})
        assert gone["is_active"] is False
        assert gone["name"] == "Deleted User"
        assert gone["email"] == f"deleted-{uid}@deleted.invalid"
        assert gone["phone"] is None
        assert gone["hashed_password"] == ""
        assert db["cartitem"].count_documents({"user_id": uid}) == 0

    def test_delete_refused_with_active_orders(self, client, admin_headers, make_user, make_product, place_order):
        user = make_user()
        place_order(user, [(make_product(), 1)])
        resp = client.delete(f"/api/admin/users/{user['_id']}", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "User has active orders and cannot be deleted"


class TestCouponsAndOrders:
    def test_create_coupon(self, client, admin_headers):
        start = datetime(2026, 1, 1)
        payload = {
            "code": "MONSOON20",
            "name": "Monsoon sale",
            "type": "PERCENTAGE",
            "value": 20,
            "max_discount_amount": 2000,
            "valid_from": start.isoformat(),
            "valid_until": (start + timedelta(days=30)).isoformat(),
        }
        created = client.post("/api/admin/coupons", json=payload, headers=admin_headers)
        assert created.status_code == 201
        assert created.json()["coupon"]["used_count"] == 0

        dup = client.post("/api/admin/coupons", json=payload, headers=admin_headers)
        assert dup.status_code == 400
        assert dup.json()["error"] == "Coupon code already exists"

        too_much = client.post("/api/admin/coupons", json=dict(payload, code="HUGE", value=150),
                               headers=admin_headers)
        assert too_much.status_code == 400

        listing = client.get("/api/admin/coupons", headers=admin_headers).json()["coupons"]
        assert [c["code"] for c in listing] == ["MONSOON20"]

    def test_order_status_flow(self, client, admin_headers, make_user, make_product, place_order):
        user = make_user(email="buyer@example.com", name="Buyer")
        order = place_order(user, [(make_product(), 1)])

        listing = client.get("/api/admin/orders?status=PENDING", headers=admin_headers).json()
        assert listing["orders"][0]["user"] == {"name": "Buyer", "email": "buyer@example.com"}

        url = f"/api/admin/orders/{order['id']}/status"
        resp = client.put(url, json={"status": "CONFIRMED"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["order"]["inventory_state"] == "committed"

        skip = client.put(url, json={"status": "DELIVERED"}, headers=admin_headers)
        assert skip.status_code == 400
        assert skip.json()["error"] == "Cannot change order status from CONFIRMED to DELIVERED"

        bogus = client.put(url, json={"status": "LOST"}, headers=admin_headers)
        assert bogus.status_code == 400
        assert bogus.json()["error"] == "Invalid request data"
