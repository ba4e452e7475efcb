def _add(client, headers, product_id, quantity=1):
    return client.post("/api/cart", json={"productId": product_id, "quantity": quantity}, headers=headers)


class TestCart:
    def test_new_user_has_empty_cart(self, client, user):
        _, headers = user
        data = client.get("/api/cart", headers=headers).json()["data"]
        assert data["items"] == []
        assert data["total"] == 0

    def test_add_item_populates_product_and_total(self, client, user, create_product):
        _, headers = user
        pid = create_product(price=12.5)
        response = _add(client, headers, pid, 2)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 25.0
        assert data["items"][0]["product"]["name"] == "Widget"

    def test_adding_same_product_merges_lines(self, client, user, create_product):
        _, headers = user
        pid = create_product()
        _add(client, headers, pid, 1)
        data = _add(client, headers, pid, 2).json()["data"]
        assert len(data["items"]) == 1
        assert data["items"][0]["quantity"] == 3

    def test_merged_quantity_is_checked_against_stock(self, client, user, create_product):
        _, headers = user
        pid = create_product(stock=3)
        _add(client, headers, pid, 2)
        response = _add(client, headers, pid, 2)
        assert response.status_code == 400
        assert response.json()["message"] == "Insufficient stock for Widget. Available: 3, Requested: 4"

    def test_unknown_product(self, client, user):
        _, headers = user
        response = _add(client, headers, "0" * 24)
        assert response.status_code == 404

    def test_malformed_product_id_fails_validation(self, client, user):
        _, headers = user
        assert _add(client, headers, "nope").status_code == 400

    def test_total_tracks_price_changes(self, client, user, admin, create_product):
        _, headers = user
        pid = create_product(price=10.0)
        _add(client, headers, pid, 2)
        client.put(f"/api/products/{pid}", json={"price": 7.25}, headers=admin[1])

        item_id = client.get("/api/cart", headers=headers).json()["data"]["items"][0]["id"]
        data = client.put(f"/api/cart/{item_id}", json={"quantity": 2}, headers=headers).json()["data"]
        assert data["total"] == 14.5

    def test_update_item_quantity(self, client, user, create_product):
        _, headers = user
        pid = create_product(price=3.0)
        item_id = _add(client, headers, pid).json()["data"]["items"][0]["id"]

        response = client.put(f"/api/cart/{item_id}", json={"quantity": 4}, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["total"] == 12.0

    def test_update_beyond_stock(self, client, user, create_product):
        _, headers = user
        pid = create_product(stock=2)
        item_id = _add(client, headers, pid).json()["data"]["items"][0]["id"]
        assert client.put(f"/api/cart/{item_id}", json={"quantity": 3}, headers=headers).status_code == 400

    def test_update_unknown_item(self, client, user, create_product):
        _, headers = user
        _add(client, headers, create_product())
        response = client.put("/api/cart/missing", json={"quantity": 1}, headers=headers)
        assert response.status_code == 404
        assert response.json()["message"] == "Item not found in cart"

    def test_update_without_cart(self, client, user):
        _, headers = user
        response = client.put("/api/cart/missing", json={"quantity": 1}, headers=headers)
        assert response.status_code == 404
        assert response.json()["message"] == "Cart not found"

    def test_remove_item(self, client, user, create_product):
        _, headers = user
        first = create_product(name="First", price=1.0)
        second = create_product(name="Second", price=2.0)
        _add(client, headers, first)
        items = _add(client, headers, second).json()["data"]["items"]

        data = client.delete(f"/api/cart/{items[0]['id']}", headers=headers).json()["data"]
        assert [i["product_id"] for i in data["items"]] == [second]
        assert data["total"] == 2.0

    def test_clear(self, client, user, create_product):
        _, headers = user
        _add(client, headers, create_product(), 2)
        data = client.delete("/api/cart", headers=headers).json()["data"]
        assert data["items"] == []
        assert data["total"] == 0

    def test_cart_requires_authentication(self, client):
        assert client.get("/api/cart").status_code == 401
