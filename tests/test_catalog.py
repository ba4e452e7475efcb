import json
from datetime import datetime, timezone

from bson import ObjectId

from catalog import ALL_PRODUCTS_KEY


class TestProducts:
    def test_create_requires_admin(self, client, user):
        _, headers = user
        response = client.post(
            "/api/products",
            json={"name": "Widget", "price": 1, "stock": 1, "category": "Gadgets"},
            headers=headers,
        )
        assert response.status_code == 403

    def test_create_and_get(self, client, create_product):
        pid = create_product(description="A widget", featured=True)
        product = client.get(f"/api/products/{pid}").json()
        assert product["name"] == "Widget"
        assert product["in_stock"] is True
        assert product["featured"] is True

    def test_negative_price_fails_validation(self, client, admin):
        response = client.post(
            "/api/products",
            json={"name": "Widget", "price": -1, "stock": 1, "category": "Gadgets"},
            headers=admin[1],
        )
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "price"

    def test_update_recomputes_in_stock(self, client, admin, create_product):
        pid = create_product(stock=5)
        response = client.put(f"/api/products/{pid}", json={"stock": 0}, headers=admin[1])
        assert response.status_code == 200
        assert response.json()["product"]["in_stock"] is False

    def test_partial_update_keeps_other_fields(self, client, admin, create_product):
        pid = create_product(price=10.0, description="keep me")
        product = client.put(f"/api/products/{pid}", json={"price": 12.0}, headers=admin[1]).json()["product"]
        assert product["price"] == 12.0
        assert product["description"] == "keep me"

    def test_delete(self, client, admin, create_product):
        pid = create_product()
        assert client.delete(f"/api/products/{pid}", headers=admin[1]).status_code == 200
        assert client.get(f"/api/products/{pid}").status_code == 404
        assert client.delete(f"/api/products/{pid}", headers=admin[1]).status_code == 404

    def test_malformed_id_is_not_found(self, client):
        assert client.get("/api/products/xyz").status_code == 404

    def test_filters_and_sort(self, client, create_product):
        create_product(name="Red Lamp", price=30.0, category="Home")
        create_product(name="Blue Lamp", price=20.0, category="Home", featured=True)
        create_product(name="Phone", price=500.0, category="Tech")

        lamps = client.get("/api/products", params={"q": "lamp", "sort": "price_asc"}).json()
        assert [p["name"] for p in lamps] == ["Blue Lamp", "Red Lamp"]

        tech = client.get("/api/products", params={"category": "Tech"}).json()
        assert [p["name"] for p in tech] == ["Phone"]

        featured = client.get("/api/products", params={"featured": "true"}).json()
        assert [p["name"] for p in featured] == ["Blue Lamp"]

    def test_pagination(self, client, create_product):
        for i in range(5):
            create_product(name=f"Item {i}", price=float(i))
        page = client.get("/api/products", params={"sort": "price_asc", "limit": 2, "page": 2}).json()
        assert [p["name"] for p in page] == ["Item 2", "Item 3"]


class TestProductCache:
    def test_listing_is_cached(self, client, cache, create_product):
        create_product()
        assert cache.get(ALL_PRODUCTS_KEY) is None
        listed = client.get("/api/products").json()
        assert json.loads(cache.get(ALL_PRODUCTS_KEY)) == listed

    def test_writes_invalidate_listing(self, client, admin, create_product):
        pid = create_product(price=10.0)
        client.get("/api/products")
        client.put(f"/api/products/{pid}", json={"price": 11.0}, headers=admin[1])
        assert client.get("/api/products").json()[0]["price"] == 11.0

    def test_checkout_invalidates_listing(self, client, user, create_product):
        _, headers = user
        pid = create_product(stock=5)
        client.get("/api/products")
        client.post("/api/cart", json={"product_id": pid, "quantity": 2}, headers=headers)
        client.post(
            "/api/orders",
            json={"shipping_address": {"street": "1", "city": "C", "state": "S", "zip_code": "1"}},
            headers=headers,
        )
        assert client.get("/api/products").json()[0]["stock"] == 3

    def test_filtered_listing_is_not_cached(self, client, cache, create_product):
        create_product()
        client.get("/api/products", params={"category": "Gadgets"})
        assert cache.get(ALL_PRODUCTS_KEY) is None


class TestCategories:
    def test_create_derives_slug(self, client, admin):
        response = client.post("/api/categories", json={"name": "Smart Phones"}, headers=admin[1])
        assert response.status_code == 201
        assert response.json()["slug"] == "smart-phones"

    def test_lookup_by_slug_or_id(self, client, admin):
        cid = client.post("/api/categories", json={"name": "Books"}, headers=admin[1]).json()["id"]
        assert client.get("/api/categories/books").json()["id"] == cid
        assert client.get(f"/api/categories/{cid}").json()["name"] == "Books"
        assert client.get("/api/categories/missing").status_code == 404

    def test_duplicate_name_conflicts(self, client, admin):
        client.post("/api/categories", json={"name": "Books"}, headers=admin[1])
        response = client.post("/api/categories", json={"name": "Books", "slug": "other"}, headers=admin[1])
        assert response.status_code == 400
        assert response.json()["message"] == "Category with this name or slug already exists"

    def test_rename_updates_slug(self, client, admin):
        cid = client.post("/api/categories", json={"name": "Books"}, headers=admin[1]).json()["id"]
        updated = client.put(f"/api/categories/{cid}", json={"name": "Comics"}, headers=admin[1]).json()
        assert updated["slug"] == "comics"

    def test_list_ordered(self, client, admin):
        client.post("/api/categories", json={"name": "B", "order": 2}, headers=admin[1])
        client.post("/api/categories", json={"name": "A", "order": 1, "featured": True}, headers=admin[1])
        assert [c["name"] for c in client.get("/api/categories").json()] == ["A", "B"]
        assert [c["name"] for c in client.get("/api/categories", params={"featured": "true"}).json()] == ["A"]

    def test_delete(self, client, admin):
        cid = client.post("/api/categories", json={"name": "Books"}, headers=admin[1]).json()["id"]
        assert client.delete(f"/api/categories/{cid}", headers=admin[1]).status_code == 200
        assert client.get(f"/api/categories/{cid}").status_code == 404


class TestWishlist:
    def test_add_list_remove(self, client, user, create_product):
        _, headers = user
        pid = create_product()
        assert client.get("/api/wishlist", headers=headers).json() == []

        added = client.post(f"/api/wishlist/add/{pid}", headers=headers)
        assert added.status_code == 200
        assert [p["id"] for p in client.get("/api/wishlist", headers=headers).json()] == [pid]

        removed = client.delete(f"/api/wishlist/remove/{pid}", headers=headers).json()
        assert removed["products"] == []

    def test_duplicate_add(self, client, user, create_product):
        _, headers = user
        pid = create_product()
        client.post(f"/api/wishlist/add/{pid}", headers=headers)
        response = client.post(f"/api/wishlist/add/{pid}", headers=headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Product already in wishlist"

    def test_unknown_product(self, client, user):
        _, headers = user
        assert client.post(f"/api/wishlist/add/{ObjectId()}", headers=headers).status_code == 404

    def test_remove_without_wishlist(self, client, user):
        _, headers = user
        assert client.delete(f"/api/wishlist/remove/{ObjectId()}", headers=headers).status_code == 404


class TestReviews:
    def test_review_lists_author(self, client, user, create_product):
        user_id, headers = user
        pid = create_product()
        response = client.post(
            "/api/reviews", json={"productId": pid, "rating": 4, "comment": "Solid"}, headers=headers
        )
        assert response.status_code == 201

        reviews = client.get(f"/api/reviews/product/{pid}").json()
        assert len(reviews) == 1
        assert reviews[0]["user"] == {"id": user_id, "name": "A"}
        assert reviews[0]["rating"] == 4

    def test_one_review_per_product(self, client, user, create_product):
        _, headers = user
        pid = create_product()
        client.post("/api/reviews", json={"product_id": pid, "rating": 4}, headers=headers)
        response = client.post("/api/reviews", json={"product_id": pid, "rating": 2}, headers=headers)
        assert response.status_code == 400
        assert response.json()["message"] == "You already reviewed this product"

    def test_rating_bounds(self, client, user, create_product):
        _, headers = user
        pid = create_product()
        assert client.post("/api/reviews", json={"product_id": pid, "rating": 6}, headers=headers).status_code == 400


class TestNotifications:
    def _order(self, client, headers, create_product):
        pid = create_product()
        client.post("/api/cart", json={"product_id": pid}, headers=headers)
        client.post(
            "/api/orders",
            json={"shipping_address": {"street": "1", "city": "C", "state": "S", "zip_code": "1"}},
            headers=headers,
        )

    def test_user_sees_only_own(self, client, user, admin, create_product):
        _, headers = user
        self._order(client, headers, create_product)
        mine = client.get("/api/notifications", headers=headers).json()
        assert [n["title"] for n in mine] == ["Order Placed"]
        admins = client.get("/api/notifications", headers=admin[1]).json()
        assert [n["title"] for n in admins] == ["New Order"]

    def test_mark_read(self, client, user, admin, create_product):
        _, headers = user
        self._order(client, headers, create_product)
        note = client.get("/api/notifications", headers=headers).json()[0]

        assert client.patch(f"/api/notifications/{note['id']}/read", headers=admin[1]).status_code == 404

        response = client.patch(f"/api/notifications/{note['id']}/read", headers=headers)
        assert response.status_code == 200
        assert response.json()["read"] is True

    def test_mark_all_read(self, client, user, create_product):
        _, headers = user
        self._order(client, headers, create_product)
        self._order(client, headers, create_product)
        client.patch("/api/notifications/read-all", headers=headers)
        assert all(n["read"] for n in client.get("/api/notifications", headers=headers).json())


class TestDashboard:
    def _place(self, client, headers, product_id, quantity=1, **extra):
        client.post("/api/cart", json={"product_id": product_id, "quantity": quantity}, headers=headers)
        response = client.post(
            "/api/orders",
            json={"shipping_address": {"street": "1", "city": "C", "state": "S", "zip_code": "1"}, **extra},
            headers=headers,
        )
        assert response.status_code == 201, response.text
        return response.json()

    def test_stats_include_monthly_sales(self, client, user, admin, create_product):
        _, headers = user
        pid = create_product(price=5.0, stock=10)
        self._place(client, headers, pid, 2)
        cancelled = self._place(client, headers, pid, 1)
        client.put(f"/api/orders/{cancelled['id']}/cancel", headers=headers)

        stats = client.get("/api/dashboard/stats", headers=admin[1]).json()

        now = datetime.now(timezone.utc)
        assert stats["monthly_data"] == [{"year": now.year, "month": now.month, "sales": 10.0, "orders": 1}]
        assert sum(row["count"] for row in stats["user_stats"]) == 2
        assert stats["popular_products"][0]["id"] == pid

    def test_product_stats(self, client, admin, create_product):
        create_product(name="Lamp", price=10.0, stock=3, category="Home")
        create_product(name="Rug", price=20.0, stock=20, category="Home")
        create_product(name="Phone", price=100.0, stock=1, category="Tech")

        response = client.get("/api/dashboard/products/stats", headers=admin[1])

        assert response.status_code == 200
        stats = response.json()
        assert stats["products_by_category"] == [
            {"category": "Home", "count": 2, "total_value": 430.0},
            {"category": "Tech", "count": 1, "total_value": 100.0},
        ]
        assert [p["name"] for p in stats["low_stock_products"]] == ["Phone", "Lamp"]
        assert [p["name"] for p in stats["oldest_products"]] == ["Lamp", "Rug", "Phone"]

    def test_order_stats(self, client, user, admin, create_product):
        _, headers = user
        pid = create_product(price=10.0, stock=10)
        self._place(client, headers, pid, 1)
        self._place(client, headers, pid, 3, payment_method="paypal")
        cancelled = self._place(client, headers, pid, 5)
        client.put(f"/api/orders/{cancelled['id']}/cancel", headers=headers)

        stats = client.get("/api/dashboard/orders/stats", headers=admin[1]).json()

        assert stats["orders_by_status"] == [
            {"status": "cancelled", "count": 1, "revenue": 50.0},
            {"status": "pending", "count": 2, "revenue": 40.0},
        ]
        assert stats["orders_by_payment"] == [
            {"payment_method": "credit_card", "count": 2, "revenue": 60.0},
            {"payment_method": "paypal", "count": 1, "revenue": 30.0},
        ]
        assert stats["avg_order_value"] == 20.0

    def test_overview_for_period(self, client, user, admin, create_product):
        _, headers = user
        pid = create_product(price=4.0, stock=10)
        self._place(client, headers, pid, 2)

        overview = client.get("/api/dashboard", params={"period": "day"}, headers=admin[1]).json()

        assert overview["period"] == "day"
        assert overview["statistics"] == {
            "total_products": 1,
            "total_orders": 1,
            "total_users": 2,
            "total_revenue": 8.0,
        }
        assert len(overview["recent_orders"]) == 1
        assert overview["chart_data"][0]["sales"] == 8.0

    def test_unknown_period_means_week(self, client, admin):
        overview = client.get("/api/dashboard", params={"period": "decade"}, headers=admin[1]).json()
        assert overview["period"] == "week"

    def test_reports_require_admin(self, client, user):
        _, headers = user
        for path in ("/api/dashboard", "/api/dashboard/products/stats", "/api/dashboard/orders/stats"):
            assert client.get(path, headers=headers).status_code == 403

    def test_stats(self, client, user, admin, create_product):
        _, headers = user
        cheap = create_product(name="Cheap", price=5.0, stock=10)
        create_product(name="Rare", price=1.0, stock=2)
        client.post("/api/cart", json={"product_id": cheap, "quantity": 2}, headers=headers)
        order = client.post(
            "/api/orders",
            json={"shipping_address": {"street": "1", "city": "C", "state": "S", "zip_code": "1"}},
            headers=headers,
        ).json()

        stats = client.get("/api/dashboard/stats", headers=admin[1]).json()
        assert stats["statistics"] == {
            "total_products": 2,
            "total_orders": 1,
            "total_users": 2,
            "total_revenue": 10.0,
        }
        assert [o["id"] for o in stats["recent_orders"]] == [order["id"]]
        assert [p["name"] for p in stats["low_stock_products"]] == ["Rare"]

    def test_cancelled_orders_do_not_count_as_revenue(self, client, user, admin, create_product):
        _, headers = user
        pid = create_product(price=5.0)
        client.post("/api/cart", json={"product_id": pid}, headers=headers)
        order = client.post(
            "/api/orders",
            json={"shipping_address": {"street": "1", "city": "C", "state": "S", "zip_code": "1"}},
            headers=headers,
        ).json()
        client.put(f"/api/orders/{order['id']}/cancel", headers=headers)

        stats = client.get("/api/dashboard/stats", headers=admin[1]).json()
        assert stats["statistics"]["total_revenue"] == 0


def test_api_root(client):
    assert client.get("/api").json() == {"message": "Welcome to Vireon API"}


def test_health(client):
    assert client.get("/health").json()["db"] == "ok"
