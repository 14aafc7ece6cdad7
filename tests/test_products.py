from bson import ObjectId

from catalog import PHOTO_MAX_BYTES, slugify


def product_form(category, /, **overrides):
    form = {
        "name": "Smart Watch",
        "description": "Fitness tracking smartwatch",
        "price": "199.50",
        "category": str(category["_id"]),
        "quantity": "30",
        "shipping": "true",
    }
    form.update(overrides)
    return {k: v for k, v in form.items() if v is not None}


def test_slugify():
    assert slugify("Wireless Headphones") == "wireless-headphones"
    assert slugify("  Café  & Crème ") == "cafe-creme"


def test_create_product_with_photo(client, db, category, admin_headers):
    res = client.post(
        "/api/v1/product/create-product",
        data=product_form(category),
        files={"photo": ("watch.jpg", b"\xff\xd8jpeg-bytes", "image/jpeg")},
        headers=admin_headers,
    )
    assert res.status_code == 201
    product = res.json()["product"]
    assert product["slug"] == "smart-watch"
    assert product["price"] == 199.5
    assert product["quantity"] == 30
    assert product["shipping"] is True
    assert "photo" not in product

    stored = db["product"].find_one({"slug": "smart-watch"})
    assert bytes(stored["photo"]["data"]) == b"\xff\xd8jpeg-bytes"
    assert stored["photo"]["content_type"] == "image/jpeg"

    photo = client.get(f"/api/v1/product/product-photo/{product['id']}")
    assert photo.status_code == 200
    assert photo.content == b"\xff\xd8jpeg-bytes"
    assert photo.headers["content-type"].startswith("image/jpeg")


def test_create_product_without_photo(client, db, category, admin_headers):
    res = client.post("/api/v1/product/create-product", data=product_form(category), headers=admin_headers)
    assert res.status_code == 201
    pid = res.json()["product"]["id"]
    res = client.get(f"/api/v1/product/product-photo/{pid}")
    assert res.status_code == 404
    assert res.json()["message"] == "Photo not found for this product."


def test_create_product_missing_fields_are_400(client, db, category, admin_headers):
    for field, message in [
        ("name", "Name is required."),
        ("description", "Description is required."),
        ("price", "Price is required."),
        ("category", "Category is required."),
        ("quantity", "Quantity is required."),
    ]:
        res = client.post(
            "/api/v1/product/create-product", data=product_form(category, **{field: None}), headers=admin_headers,
        )
        assert res.status_code == 400, field
        assert res.json()["message"] == message
    assert db["product"].count_documents({}) == 0


def test_create_product_rejects_bad_numbers(client, category, admin_headers):
    res = client.post("/api/v1/product/create-product", data=product_form(category, price="-1"), headers=admin_headers)
    assert res.status_code == 400
    res = client.post("/api/v1/product/create-product", data=product_form(category, price="abc"), headers=admin_headers)
    assert res.status_code == 400
    res = client.post("/api/v1/product/create-product", data=product_form(category, quantity="2.5"), headers=admin_headers)
    assert res.status_code == 400


def test_create_product_checks_category(client, category, admin_headers):
    res = client.post(
        "/api/v1/product/create-product", data=product_form(category, category="nope"), headers=admin_headers,
    )
    assert res.status_code == 400
    res = client.post(
        "/api/v1/product/create-product", data=product_form(category, category=str(ObjectId())), headers=admin_headers,
    )
    assert res.status_code == 404


def test_create_product_rejects_large_photo(client, db, category, admin_headers):
    res = client.post(
        "/api/v1/product/create-product",
        data=product_form(category),
        files={"photo": ("big.png", b"x" * (PHOTO_MAX_BYTES + 1), "image/png")},
        headers=admin_headers,
    )
    assert res.status_code == 413
    assert db["product"].count_documents({}) == 0


def test_create_product_is_admin_only(client, category, user_headers):
    res = client.post("/api/v1/product/create-product", data=product_form(category), headers=user_headers)
    assert res.status_code == 403


def test_update_product_replaces_fields_and_keeps_photo(client, db, category, product, admin_headers):
    res = client.put(
        f"/api/v1/product/update-product/{product['_id']}",
        data=product_form(category, name="Gaming Laptop Pro", price="2999", quantity="5"),
        headers=admin_headers,
    )
    assert res.status_code == 200
    body = res.json()["product"]
    assert body["slug"] == "gaming-laptop-pro"
    assert body["price"] == 2999.0
    assert "photo" not in body
    stored = db["product"].find_one({"_id": product["_id"]})
    assert bytes(stored["photo"]["data"]) == b"\x89PNG-laptop"


def test_update_product_requires_all_fields(client, category, product, admin_headers):
    res = client.put(
        f"/api/v1/product/update-product/{product['_id']}",
        data=product_form(category, description=None),
        headers=admin_headers,
    )
    assert res.status_code == 400


def test_update_unknown_product(client, category, admin_headers):
    res = client.put(
        f"/api/v1/product/update-product/{ObjectId()}", data=product_form(category), headers=admin_headers,
    )
    assert res.status_code == 404


def test_listing_excludes_photo_and_resolves_category(client, product):
    res = client.get("/api/v1/product/get-product")
    body = res.json()
    assert body["countTotal"] == 1
    listed = body["products"][0]
    assert "photo" not in listed
    assert listed["category"]["name"] == "Electronics"

    single = client.get("/api/v1/product/get-product/gaming-laptop").json()["product"]
    assert single["name"] == "Gaming Laptop"
    assert "photo" not in single
    assert client.get("/api/v1/product/get-product/missing").status_code == 404


def test_delete_product(client, db, product, admin_headers):
    res = client.delete(f"/api/v1/product/delete-product/{product['_id']}", headers=admin_headers)
    assert res.status_code == 200
    assert db["product"].count_documents({}) == 0
    res = client.delete(f"/api/v1/product/delete-product/{product['_id']}", headers=admin_headers)
    assert res.status_code == 404


def test_search_is_case_insensitive_and_literal(client, product):
    res = client.get("/api/v1/product/search/LAPTOP")
    assert res.json()["count"] == 1
    res = client.get("/api/v1/product/search/lap.*")
    assert res.json()["count"] == 0
    res = client.get("/api/v1/product/search/%20")
    assert res.json() == {"success": True, "count": 0, "products": []}


def test_filters_count_and_pages(client, db, category, product):
    for i in range(7):
        db["product"].insert_one({
            "name": f"Cable {i}", "slug": f"cable-{i}", "description": "USB-C cable",
            "price": 10.0 + i, "category": category["_id"], "quantity": 100, "shipping": False,
        })
    res = client.post("/api/v1/product/product-filters", json={"checked": [str(category["_id"])], "radio": [0, 12]})
    assert sorted(p["name"] for p in res.json()["products"]) == ["Cable 0", "Cable 1", "Cable 2"]

    assert client.get("/api/v1/product/product-count").json()["total"] == 8
    assert len(client.get("/api/v1/product/product-list/1").json()["products"]) == 6
    assert len(client.get("/api/v1/product/product-list/2").json()["products"]) == 2
    assert client.get("/api/v1/product/product-list/0").status_code == 400


def test_related_and_by_category(client, db, category, product):
    db["product"].insert_one({
        "name": "Mouse", "slug": "mouse", "description": "Wireless mouse",
        "price": 89.0, "category": category["_id"], "quantity": 25, "shipping": True,
    })
    res = client.get(f"/api/v1/product/related-product/{product['_id']}/{category['_id']}")
    assert [p["name"] for p in res.json()["products"]] == ["Mouse"]

    res = client.get("/api/v1/product/product-category/electronics")
    body = res.json()
    assert body["category"]["slug"] == "electronics"
    assert len(body["products"]) == 2
    assert client.get("/api/v1/product/product-category/none").status_code == 404
