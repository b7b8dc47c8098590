from bson import ObjectId

from conftest import API


def test_create_product_defaults(client, admin_headers, category):
    response = client.post(
        f"{API}/products",
        json={
            "name": "Mechanical Keyboard",
            "description": "Hot-swappable switches",
            "price": 1500000,
            "category": category["id"],
            "images": ["https://example.com/keyboard.png"],
            "stock": 5,
        },
        headers=admin_headers,
    )
    data = response.get_json()["data"]
    assert response.status_code == 201
    assert data["status"] == "draft"
    assert data["sku"].startswith("MEC")
    assert data["thumbnail"] == "https://example.com/keyboard.png"

    refreshed = client.get(f"{API}/categories/{category['id']}").get_json()["data"]
    assert refreshed["product_count"] == 1


def test_duplicate_sku_conflicts(client, admin_headers, make_product, category):
    make_product(sku="KB-001")
    response = client.post(
        f"{API}/products",
        json={
            "name": "Other",
            "description": "Other product",
            "price": 10000,
            "category": category["id"],
            "images": ["https://example.com/x.png"],
            "sku": "kb-001",
        },
        headers=admin_headers,
    )
    assert response.status_code == 409


def test_create_product_validation(client, admin_headers):
    response = client.post(
        f"{API}/products", json={"name": "", "price": -1}, headers=admin_headers
    )
    assert response.status_code == 400
    assert len(response.get_json()["errors"]) >= 4


def test_public_listing_hides_drafts(client, make_product):
    make_product(name="Visible Mouse")
    make_product(name="Hidden Mouse", status="draft")

    listing = client.get(f"{API}/products").get_json()["data"]
    assert [entry["name"] for entry in listing["products"]] == ["Visible Mouse"]
    assert listing["pagination"]["total_items"] == 1


def test_listing_filters_and_sorting(client, make_product):
    make_product(name="Budget Mouse", price=100000, brand="Logi", tags=["mouse"])
    make_product(name="Premium Mouse", price=900000, brand="Razer", tags=["mouse", "gaming"])
    make_product(name="Monitor Stand", price=300000, brand="Logi", tags=["desk"])

    by_price = client.get(
        f"{API}/products?min_price=200000&sort_by=price&sort_order=asc"
    ).get_json()["data"]["products"]
    assert [entry["name"] for entry in by_price] == ["Monitor Stand", "Premium Mouse"]

    by_brand = client.get(f"{API}/products?brand=logi").get_json()["data"]["products"]
    assert {entry["name"] for entry in by_brand} == {"Budget Mouse", "Monitor Stand"}

    by_tag = client.get(f"{API}/products?tags=gaming").get_json()["data"]["products"]
    assert [entry["name"] for entry in by_tag] == ["Premium Mouse"]

    searched = client.get(f"{API}/products/search?q=mouse").get_json()["data"]["products"]
    assert {entry["name"] for entry in searched} == {"Budget Mouse", "Premium Mouse"}

    paged = client.get(f"{API}/products?limit=2&page=2").get_json()["data"]
    assert len(paged["products"]) == 1
    assert paged["pagination"]["has_prev"] is True
    assert paged["pagination"]["has_next"] is False


def test_category_listing_includes_descendants(client, make_category, make_product, category):
    child = make_category("Mice", parent=category["id"])
    make_product(name="Parent Product")
    make_product(name="Child Product", category=child["id"])

    products = client.get(f"{API}/products/category/{category['id']}").get_json()["data"]["products"]
    assert {entry["name"] for entry in products} == {"Parent Product", "Child Product"}


def test_get_product_counts_views(client, product):
    first = client.get(f"{API}/products/{product['id']}").get_json()["data"]
    second = client.get(f"{API}/products/{product['id']}").get_json()["data"]
    assert second["views"] == first["views"] + 1
    assert client.get(f"{API}/products/{ObjectId()}").status_code == 404


def test_stock_adjustment(client, admin_headers, product):
    response = client.patch(
        f"{API}/products/{product['id']}/stock", json={"quantity": -20}, headers=admin_headers
    )
    data = response.get_json()["data"]
    assert response.status_code == 200
    assert data["stock"] == 0
    assert data["status"] == "out_of_stock"

    negative = client.patch(
        f"{API}/products/{product['id']}/stock", json={"quantity": -1}, headers=admin_headers
    )
    assert negative.status_code == 400

    restocked = client.patch(
        f"{API}/products/{product['id']}/stock", json={"quantity": 5}, headers=admin_headers
    ).get_json()["data"]
    assert restocked["stock"] == 5
    assert restocked["status"] == "active"


def test_reviews_update_rating_once_per_user(client, user_headers, product):
    response = client.post(
        f"{API}/products/{product['id']}/reviews",
        json={"rating": 4, "comment": "Works well"},
        headers=user_headers,
    )
    data = response.get_json()["data"]
    assert response.status_code == 201
    assert data["ratings"] == {"average": 4.0, "count": 1}
    assert data["reviews"][0]["is_verified"] is False

    duplicate = client.post(
        f"{API}/products/{product['id']}/reviews",
        json={"rating": 5, "comment": "Again"},
        headers=user_headers,
    )
    assert duplicate.status_code == 409


def test_review_rating_validation(client, user_headers, product):
    response = client.post(
        f"{API}/products/{product['id']}/reviews",
        json={"rating": 6, "comment": ""},
        headers=user_headers,
    )
    assert response.status_code == 400


def test_bulk_update_reports_missing(client, admin_headers, product):
    missing_id = str(ObjectId())
    response = client.patch(
        f"{API}/products/bulk-update",
        json={
            "updates": [
                {"id": product["id"], "data": {"is_featured": True}},
                {"id": missing_id, "data": {"is_featured": True}},
            ]
        },
        headers=admin_headers,
    )
    data = response.get_json()["data"]
    assert response.status_code == 200
    assert data == {"updated": [product["id"]], "not_found": [missing_id], "failed": []}

    featured = client.get(f"{API}/products/featured").get_json()["data"]
    assert [entry["id"] for entry in featured] == [product["id"]]


def test_delete_product_updates_category_and_wishlists(
    client, admin_headers, user_headers, product, category, db
):
    client.post(f"{API}/wishlist", json={"product_id": product["id"]}, headers=user_headers)

    response = client.delete(f"{API}/products/{product['id']}", headers=admin_headers)
    assert response.status_code == 200
    assert db.users.find_one({"email": "shopper@example.com"})["wishlist"] == []
    refreshed = client.get(f"{API}/categories/{category['id']}").get_json()["data"]
    assert refreshed["product_count"] == 0


def test_low_stock_report(client, admin_headers, make_product):
    make_product(name="Plenty", stock=100)
    make_product(name="Scarce", stock=3)
    response = client.get(f"{API}/products/analytics/low-stock", headers=admin_headers)
    assert [entry["name"] for entry in response.get_json()["data"]] == ["Scarce"]


def test_bulk_update_reports_failed_entries_and_keeps_the_rest(
    client, admin_headers, make_product, db
):
    first = make_product(name="Desk Lamp", sku="LAMP001")
    second = make_product(name="Floor Lamp", sku="LAMP002")
    third = make_product(name="Wall Lamp", sku="LAMP003")

    response = client.patch(
        f"{API}/products/bulk-update",
        json={
            "updates": [
                {"id": first["id"], "data": {"price": 199000}},
                {"id": second["id"], "data": {"sku": "LAMP003"}},
                {"id": third["id"], "data": {"category": str(ObjectId())}},
            ]
        },
        headers=admin_headers,
    )
    data = response.get_json()["data"]
    assert response.status_code == 200
    assert data["updated"] == [first["id"]]
    assert data["failed"] == [
        {"id": second["id"], "error": "SKU_EXISTS"},
        {"id": third["id"], "error": "CATEGORY_NOT_FOUND"},
    ]

    assert db.products.find_one({"_id": ObjectId(first["id"])})["price"] == 199000
    assert db.products.find_one({"_id": ObjectId(second["id"])})["sku"] == "LAMP002"
    assert db.products.find_one({"_id": ObjectId(third["id"])})["category"] == ObjectId(
        third["category"]
    )


def test_top_selling_orders_by_sales(client, admin_headers, user_headers, make_product, db):
    slow = make_product(name="Slow Seller")
    best = make_product(name="Best Seller")
    middle = make_product(name="Middle Seller")
    for item, sales in ((slow, 1), (best, 40), (middle, 12)):
        db.products.update_one({"_id": ObjectId(item["id"])}, {"$set": {"sales": sales}})

    assert client.get(
        f"{API}/products/analytics/top-selling", headers=user_headers
    ).status_code == 403

    response = client.get(
        f"{API}/products/analytics/top-selling?limit=2", headers=admin_headers
    )
    assert response.status_code == 200
    assert [entry["name"] for entry in response.get_json()["data"]] == [
        "Best Seller",
        "Middle Seller",
    ]


def test_product_analytics(client, admin_headers, make_product, db):
    item = make_product(name="Smart Watch", price=2000000, stock=3)
    db.products.update_one({"_id": ObjectId(item["id"])}, {"$set": {"sales": 4}})
    client.get(f"{API}/products/{item['id']}")
    client.get(f"{API}/products/{item['id']}")

    response = client.get(f"{API}/products/{item['id']}/analytics", headers=admin_headers)
    data = response.get_json()["data"]
    assert response.status_code == 200
    assert data["views"] == 2
    assert data["sales"] == 4
    assert data["revenue"] == 8000000
    assert data["stock"] == 3
    assert data["review_count"] == 0
    assert data["is_low_stock"] is True

    missing = client.get(f"{API}/products/{ObjectId()}/analytics", headers=admin_headers)
    assert missing.status_code == 404
