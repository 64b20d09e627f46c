import catalog


class TestCatalogRoutes:
    def test_health(self, client):
        assert client.get("/").json() == {"message": "HVAC store API running"}
        body = client.get("/api/health").json()
        assert body["backend"] == "running"
        assert body["database"] == "connected"

    def test_listing_hides_inactive_and_reports_stock(self, client, make_product):
        make_product(price=300.0, stock=0)
        make_product(price=100.0, stock=4)
        make_product(price=200.0, is_active=False)

        body = client.get("/api/products?sort=price_asc").json()
        assert body["total"] == 2
        assert [p["price"] for p in body["items"]] == [100.0, 300.0]
        assert [p["in_stock"] for p in body["items"]] == [True, False]

    def test_filters(self, client, make_product):
        make_product(price=100.0, name="Split AC Eco")
        make_product(price=900.0, name="Window AC Pro")
        assert client.get("/api/products?q=window").json()["total"] == 1
        assert client.get("/api/products?min_price=500").json()["items"][0]["name"] == "Window AC Pro"
        assert client.get("/api/products?category=air-conditioners").json()["total"] == 2
        assert client.get("/api/products?category=heaters").json()["total"] == 0

    def test_product_by_id_or_slug(self, client, make_product):
        pid = make_product(stock=7, reserved=2)
        by_id = client.get(f"/api/products/{pid}").json()
        by_slug = client.get("/api/products/split-ac-1").json()
        assert by_id["id"] == by_slug["id"] == pid
        assert by_id["available_stock"] == 5
        assert by_id["category"] == {"name": "Air Conditioners", "slug": "air-conditioners"}
        assert client.get("/api/products/no-such-thing").status_code == 404

    def test_categories_with_counts(self, client, make_product):
        make_product()
        body = client.get("/api/categories?include_product_count=true").json()
        assert [(c["slug"], c["product_count"]) for c in body["categories"]] == [("air-conditioners", 1)]


class TestHelpers:
    def test_slugify(self):
        assert catalog.slugify("  Split AC 1.5 Ton (Inverter) ") == "split-ac-1-5-ton-inverter"

    def test_generated_skus_are_unique(self):
        first = catalog.generate_sku("Air Conditioners", "Coolwave")
        second = catalog.generate_sku("Air Conditioners", "Coolwave")
        assert first.startswith("AIR-COO-")
        assert first != second
