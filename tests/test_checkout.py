import re
from datetime import timedelta

import pytest

import cart
import checkout
import inventory
from database import create_document, utcnow
from errors import BusinessRuleError, CouponError, NotFound, ValidationError
from schemas import Coupon


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def uid(user):
    return str(user["_id"])


def _coupon(db, code, type="FIXED_AMOUNT", value=100, **kwargs):
    now = utcnow()
    return create_document(db, "coupon", Coupon(
        code=code, name=code, type=type, value=value,
        valid_from=now - timedelta(days=1), valid_until=now + timedelta(days=1), **kwargs,
    ))


class TestHelpers:
    def test_order_number_format(self):
        number = checkout.generate_order_number()
        assert re.fullmatch(r"ORD-\d{13}-[A-Z0-9]{6}", number)
        assert number != checkout.generate_order_number()

    @pytest.mark.parametrize("value,expected", [(1.005, 1.01), (2.675, 2.68), (10.0, 10.0), (0.125, 0.13)])
    def test_round_money_half_up(self, value, expected):
        assert checkout.round_money(value) == expected

    @pytest.mark.parametrize("subtotal,shipping", [(0, 50.0), (499.99, 50.0), (500, 0.0), (1200, 0.0)])
    def test_shipping(self, subtotal, shipping):
        assert checkout.shipping_for(subtotal) == shipping


class TestValidate:
    def test_reports_each_line(self, db, make_product):
        plenty = make_product(stock=10)
        scarce = make_product(stock=2)
        result = checkout.validate_items(db, [
            {"product_id": plenty, "quantity": 3},
            {"product_id": scarce, "quantity": 5},
        ])
        assert result["is_valid"] is False
        first, second = result["items"]
        assert first["is_valid"] is True
        assert first["available_stock"] == 10
        assert first["product"]["id"] == plenty
        assert second["is_valid"] is False
        assert second["available_stock"] == 2
        assert second["requested_quantity"] == 5

    def test_missing_product(self, db):
        result = checkout.validate_items(db, [{"product_id": "0123456789abcdef01234567", "quantity": 1}])
        assert result["is_valid"] is False
        assert result["items"][0]["error"] == "Product not found or not available"

    def test_all_lines_available(self, db, make_product):
        pid = make_product(stock=4, reserved=1)
        result = checkout.validate_items(db, [{"product_id": pid, "quantity": 3}])
        assert result["is_valid"] is True


class TestCalculate:
    def test_below_free_shipping(self, db, uid, make_product):
        pid = make_product(price=200.0, mrp=250.0)
        result = checkout.calculate(db, uid, [{"product_id": pid, "quantity": 2}])
        assert result["pricing"] == {
            "subtotal": 400.0,
            "total_mrp": 500.0,
            "total_savings": 100.0,
            "shipping_cost": 50.0,
            "tax_amount": 72.0,
            "discount_amount": 0.0,
            "total": 522.0,
        }
        assert result["breakdown"]["free_shipping_eligible"] is False
        assert result["breakdown"]["total_quantity"] == 2

    def test_free_shipping_and_coupon(self, db, uid, make_product):
        pid = make_product(price=1000.0)
        _coupon(db, "FLAT100")
        result = checkout.calculate(db, uid, [{"product_id": pid, "quantity": 1}], "flat100")
        pricing = result["pricing"]
        assert pricing["shipping_cost"] == 0.0
        assert pricing["tax_amount"] == 180.0
        assert pricing["discount_amount"] == 100.0
        assert pricing["total"] == 1080.0
        assert result["breakdown"]["coupon_applied"] is True
        assert result["breakdown"]["coupon_details"]["code"] == "FLAT100"

    def test_unusable_coupon_is_ignored(self, db, uid, make_product):
        pid = make_product(price=100.0)
        _coupon(db, "BIGONLY", min_order_amount=5000)
        result = checkout.calculate(db, uid, [{"product_id": pid, "quantity": 1}], "BIGONLY")
        assert result["pricing"]["discount_amount"] == 0.0
        assert result["breakdown"]["coupon_applied"] is False
        assert result["breakdown"]["coupon_details"] is None

    def test_unknown_product(self, db, uid):
        with pytest.raises(NotFound):
            checkout.calculate(db, uid, [{"product_id": "0123456789abcdef01234567", "quantity": 1}])


class TestCreateOrder:
    def test_empty_cart(self, db, user, uid, make_address):
        with pytest.raises(ValidationError, match="Cart is empty"):
            checkout.create_order(db, uid, make_address(user))

    def test_address_must_belong_to_user(self, db, uid, make_user, make_product, make_address):
        pid = make_product()
        cart.add_item(db, uid, pid, 1)
        other_address = make_address(make_user())
        with pytest.raises(ValidationError, match="Invalid shipping address"):
            checkout.create_order(db, uid, other_address)

    def test_stock_issues(self, db, user, uid, make_product, make_address):
        pid = make_product(stock=3)
        cart.add_item(db, uid, pid, 3)
        inventory.reserve(db, pid, 2)
        with pytest.raises(BusinessRuleError) as exc:
            checkout.create_order(db, uid, make_address(user))
        issues = exc.value.extra["stock_issues"]
        assert issues[0]["product_id"] == pid
        assert issues[0]["available_stock"] == 1

    def test_places_pending_order_and_reserves_stock(self, db, user, uid, make_product, place_order):
        a = make_product(price=300.0, stock=5)
        b = make_product(price=150.0, stock=5)
        order = place_order(user, [(a, 2), (b, 1)])

        assert order["status"] == "PENDING"
        assert order["payment_status"] == "PENDING"
        assert order["inventory_state"] == "reserved"
        assert order["subtotal"] == 750.0
        assert order["shipping_cost"] == 0.0
        assert order["tax_amount"] == 135.0
        assert order["total_amount"] == 885.0
        assert order["shipping_address"]["city"] == "Bengaluru"
        assert inventory.get_inventory(db, a)["reserved_quantity"] == 2
        assert inventory.get_inventory(db, b)["reserved_quantity"] == 1

        tracking = list(db["ordertracking"].find({"order_id": order["id"]}))
        assert [t["status"] for t in tracking] == ["PENDING"]
        # the cart waits for payment
        assert db["cartitem"].count_documents({"user_id": uid}) == 2

    def test_coupon_discount_recorded(self, db, user, make_product, place_order):
        pid = make_product(price=600.0)
        _coupon(db, "SAVE10", type="PERCENTAGE", value=10)
        order = place_order(user, [(pid, 1)], coupon_code="save10")
        assert order["discount"] == 60.0
        assert order["coupon_code"] == "SAVE10"
        assert order["total_amount"] == 648.0

    def test_bad_coupon_rejects_order(self, db, user, make_product, place_order):
        pid = make_product(price=600.0)
        with pytest.raises(CouponError):
            place_order(user, [(pid, 1)], coupon_code="NOPE")
        assert inventory.get_inventory(db, pid)["reserved_quantity"] == 0


class TestCheckoutRoutes:
    def test_validate_calculate_create(self, client, user, auth_headers, make_product, make_address):
        headers = auth_headers(user)
        pid = make_product(price=250.0, stock=3)
        lines = {"items": [{"product_id": pid, "quantity": 2}]}

        resp = client.post("/api/checkout/validate", json=lines, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["is_valid"] is True

        resp = client.post("/api/checkout/calculate", json=lines, headers=headers)
        assert resp.json()["pricing"]["total"] == 590.0

        client.post("/api/cart/add", json={"product_id": pid, "quantity": 2}, headers=headers)
        resp = client.post("/api/checkout/create-order", json={"shipping_address_id": make_address(user)},
                           headers=headers)
        assert resp.status_code == 201
        assert resp.json()["order"]["order_number"].startswith("ORD-")

    def test_create_with_empty_cart(self, client, user, auth_headers, make_address):
        resp = client.post("/api/checkout/create-order", json={"shipping_address_id": make_address(user)},
                           headers=auth_headers(user))
        assert resp.status_code == 400
        assert resp.json()["error"] == "Cart is empty"

    def test_stock_failure_body(self, db, client, user, auth_headers, make_product, make_address):
        headers = auth_headers(user)
        pid = make_product(stock=2)
        client.post("/api/cart/add", json={"product_id": pid, "quantity": 2}, headers=headers)
        inventory.reserve(db, pid, 2)
        resp = client.post("/api/checkout/create-order", json={"shipping_address_id": make_address(user)},
                           headers=headers)
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "Stock validation failed"
        assert body["stock_issues"][0]["requested_quantity"] == 2
