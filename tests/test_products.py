"""
Tests for the product catalog endpoints.
"""
from bson import ObjectId

from conftest import make_product


class TestListing:
    def test_list_all(self, client, db):
        make_product(db, name="Kenyan AA")
        make_product(db, name="Sumatra Mandheling")
        resp = client.get("/api/products")
        assert resp.status_code == 200
        names = [p["name"] for p in resp.json()["products"]]
        assert sorted(names) == ["Kenyan AA", "Sumatra Mandheling"]

    def test_category_filter(self, client, db):
        make_product(db, name="Kenyan AA", categories=["Medium Roast", "Kenyan"])
        make_product(db, name="Sumatra", categories=["Dark Roast"])
        resp = client.get("/api/products", params={"category": "Dark Roast"})
        assert [p["name"] for p in resp.json()["products"]] == ["Sumatra"]

    def test_search_is_case_insensitive_substring(self, client, db):
        make_product(db, name="Ethiopian Yirgacheffe")
        make_product(db, name="Kenyan AA")
        resp = client.get("/api/products", params={"search": "yirga"})
        assert [p["name"] for p in resp.json()["products"]] == ["Ethiopian Yirgacheffe"]

    def test_search_treats_regex_characters_literally(self, client, db):
        make_product(db, name="Blend (House)")
        make_product(db, name="Kenyan AA")
        resp = client.get("/api/products", params={"search": "(house"})
        assert [p["name"] for p in resp.json()["products"]] == ["Blend (House)"]
        assert client.get("/api/products", params={"search": ".*"}).json()["products"] == []


class TestGet:
    def test_get_by_id(self, client, product_id):
        resp = client.get(f"/api/products/{product_id}")
        assert resp.status_code == 200
        assert resp.json()["product"]["id"] == product_id

    def test_missing_and_malformed_ids_are_404(self, client):
        assert client.get(f"/api/products/{ObjectId()}").status_code == 404
        resp = client.get("/api/products/not-an-id")
        assert resp.status_code == 404
        assert resp.json() == {"message": "Product not found"}


class TestAdminWrites:
    def test_create(self, client, db, admin_headers):
        payload = {
            "name": "Guatemala Antigua",
            "description": "Caramel and smoke.",
            "price": 13.99,
            "image": "https://example.com/images/antigua.jpg",
            "categories": ["Medium Roast"],
        }
        resp = client.post("/api/products", json=payload, headers=admin_headers)
        assert resp.status_code == 201
        product = resp.json()["product"]
        assert product["name"] == "Guatemala Antigua"
        assert product["price"] == 13.99
        assert db["product"].count_documents({}) == 1

    def test_zero_price_is_allowed(self, client, admin_headers):
        resp = client.post("/api/products", json={"name": "Sample", "price": 0}, headers=admin_headers)
        assert resp.status_code == 201

    def test_create_requires_admin(self, client, user_headers):
        resp = client.post("/api/products", json={"name": "X", "price": 1}, headers=user_headers)
        assert resp.status_code == 403
        assert resp.json()["message"] == "You don't have permission to perform this action"

    def test_create_requires_token(self, client):
        assert client.post("/api/products", json={"name": "X", "price": 1}).status_code == 401

    def test_negative_price_is_field_error(self, client, db, admin_headers):
        resp = client.post("/api/products", json={"name": "X", "price": -1}, headers=admin_headers)
        assert resp.status_code == 400
        body = resp.json()
        assert body["message"] == "Validation error"
        assert "price" in body["errors"]
        assert db["product"].count_documents({}) == 0

    def test_infinite_price_is_field_error(self, client, db, admin_headers):
        headers = {**admin_headers, "Content-Type": "application/json"}
        resp = client.post("/api/products", content='{"name": "Inf", "price": Infinity}', headers=headers)
        assert resp.status_code == 400
        assert "price" in resp.json()["errors"]
        assert db["product"].count_documents({}) == 0
        # the public catalog still renders
        assert client.get("/api/products").status_code == 200

    def test_price_as_string_is_field_error(self, client, db, admin_headers):
        resp = client.post("/api/products", json={"name": "X", "price": "12.5"}, headers=admin_headers)
        assert resp.status_code == 400
        assert "price" in resp.json()["errors"]
        assert db["product"].count_documents({}) == 0

    def test_missing_name_and_price(self, client, admin_headers):
        resp = client.post("/api/products", json={"description": "nothing else"}, headers=admin_headers)
        assert resp.status_code == 400
        assert {"name", "price"} <= set(resp.json()["errors"])

    def test_blank_name_and_bad_image(self, client, admin_headers):
        resp = client.post("/api/products", json={"name": "  ", "price": 3, "image": "nope"}, headers=admin_headers)
        assert resp.status_code == 400
        assert {"name", "image"} <= set(resp.json()["errors"])

    def test_partial_update(self, client, db, product_id, admin_headers):
        resp = client.put(f"/api/products/{product_id}", json={"price": 15.5}, headers=admin_headers)
        assert resp.status_code == 200
        product = resp.json()["product"]
        assert product["price"] == 15.5
        assert product["name"] == "Colombian Supremo"

    def test_update_rejects_null_price(self, client, product_id, admin_headers):
        resp = client.put(f"/api/products/{product_id}", json={"price": None}, headers=admin_headers)
        assert resp.status_code == 400
        assert "price" in resp.json()["errors"]

    def test_update_rejects_non_finite_price(self, client, db, product_id, admin_headers):
        headers = {**admin_headers, "Content-Type": "application/json"}
        resp = client.put(f"/api/products/{product_id}", content='{"price": NaN}', headers=headers)
        assert resp.status_code == 400
        assert "price" in resp.json()["errors"]
        assert db["product"].find_one({})["price"] == 14.99

    def test_update_rejects_null_categories(self, client, db, product_id, admin_headers):
        resp = client.put(f"/api/products/{product_id}", json={"categories": None}, headers=admin_headers)
        assert resp.status_code == 400
        assert "categories" in resp.json()["errors"]
        assert db["product"].find_one({})["categories"] == ["Medium Roast", "Colombian"]

    def test_update_missing_product(self, client, admin_headers):
        resp = client.put(f"/api/products/{ObjectId()}", json={"price": 2}, headers=admin_headers)
        assert resp.status_code == 404

    def test_delete_removes_product_and_cart_rows(self, client, db, product_id, user_headers, admin_headers):
        client.post("/api/cart/items", json={"product_id": product_id}, headers=user_headers)
        resp = client.delete(f"/api/products/{product_id}", headers=admin_headers)
        assert resp.status_code == 200
        assert db["product"].count_documents({}) == 0
        assert db["cartitem"].count_documents({}) == 0
        assert client.delete(f"/api/products/{product_id}", headers=admin_headers).status_code == 404
