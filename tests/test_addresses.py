import pytest

import addresses
from conftest import ADDRESS
from errors import BusinessRuleError, NotFound
from schemas import AddressIn


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def uid(user):
    return str(user["_id"])


def _defaults(db, uid):
    return [str(a["_id"]) for a in db["address"].find({"user_id": uid, "is_default": True})]


class TestDefaultAddress:
    def test_new_default_replaces_old(self, db, user, uid, make_address):
        first = make_address(user, is_default=True)
        second = make_address(user, is_default=True, city="Mysuru")
        make_address(user, city="Hubli")
        assert _defaults(db, uid) == [second]
        assert addresses.get_address(db, uid, first)["is_default"] is False

    def test_collapses_existing_duplicates(self, db, user, uid, make_address):
        for city in ("Pune", "Nagpur", "Nashik"):
            db["address"].insert_one(dict(ADDRESS, user_id=uid, city=city, type="HOME", is_default=True))
        newest = make_address(user, is_default=True)
        assert _defaults(db, uid) == [newest]

    def test_update_to_default(self, db, user, uid, make_address):
        first = make_address(user, is_default=True)
        second = make_address(user)
        updated = addresses.update_address(db, uid, second, AddressIn(**ADDRESS, is_default=True))
        assert updated["is_default"] is True
        assert _defaults(db, uid) == [second]
        assert addresses.get_address(db, uid, first)["is_default"] is False

    def test_defaults_are_per_user(self, db, user, uid, make_user, make_address):
        other = make_user()
        mine = make_address(user, is_default=True)
        theirs = make_address(other, is_default=True)
        assert _defaults(db, uid) == [mine]
        assert _defaults(db, str(other["_id"])) == [theirs]

    def test_list_puts_default_first(self, db, user, uid, make_address):
        make_address(user, city="Pune")
        default = make_address(user, city="Nagpur", is_default=True)
        make_address(user, city="Nashik")
        listed = addresses.list_addresses(db, uid)
        assert listed[0]["id"] == default
        assert len(listed) == 3


class TestAddressRules:
    def test_other_users_address(self, db, make_user, make_address):
        theirs = make_address(make_user())
        with pytest.raises(NotFound):
            addresses.get_address(db, str(make_user()["_id"]), theirs)

    def test_address_used_by_active_order_is_kept(self, db, user, uid, make_product, place_order):
        order = place_order(user, [(make_product(), 1)])
        with pytest.raises(BusinessRuleError):
            addresses.delete_address(db, uid, order["shipping_address_id"])

    def test_address_of_finished_order_can_go(self, db, user, uid, make_product, place_order):
        order = place_order(user, [(make_product(), 1)])
        db["order"].update_one({}, {"$set": {"status": "DELIVERED"}})
        addresses.delete_address(db, uid, order["shipping_address_id"])
        assert db["address"].count_documents({"user_id": uid}) == 0


class TestAddressRoutes:
    def test_crud(self, client, user, auth_headers):
        headers = auth_headers(user)
        payload = dict(ADDRESS, address_type="OFFICE", is_default=True)
        created = client.post("/api/user/addresses", json=payload, headers=headers)
        assert created.status_code == 201
        address = created.json()["address"]
        assert address["type"] == "OFFICE"

        resp = client.put(f"/api/user/addresses/{address['id']}", json=dict(payload, city="Chennai"),
                          headers=headers)
        assert resp.json()["address"]["city"] == "Chennai"

        listing = client.get("/api/user/addresses", headers=headers).json()["addresses"]
        assert [a["id"] for a in listing] == [address["id"]]

        assert client.delete(f"/api/user/addresses/{address['id']}", headers=headers).status_code == 200
        assert client.delete(f"/api/user/addresses/{address['id']}", headers=headers).status_code == 404

    def test_short_pincode_rejected(self, client, user, auth_headers):
        resp = client.post("/api/user/addresses", json=dict(ADDRESS, pincode="123"), headers=auth_headers(user))
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request data"
