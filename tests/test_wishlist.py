from bson import ObjectId

from conftest import API


def test_add_check_and_duplicate(client, user_headers, product):
    response = client.post(
        f"{API}/wishlist", json={"product_id": product["id"]}, headers=user_headers
    )
    assert response.status_code == 201

    duplicate = client.post(
        f"{API}/wishlist", json={"product_id": product["id"]}, headers=user_headers
    )
    assert duplicate.status_code == 409

    check = client.get(f"{API}/wishlist/check/{product['id']}", headers=user_headers)
    assert check.get_json()["data"]["in_wishlist"] is True

    listing = client.get(f"{API}/wishlist", headers=user_headers).get_json()["data"]
    assert listing["count"] == 1
    assert listing["items"][0]["id"] == product["id"]


def test_add_rejects_unavailable_product(client, user_headers, make_product):
    draft = make_product(name="Draft", status="draft")
    response = client.post(
        f"{API}/wishlist", json={"product_id": draft["id"]}, headers=user_headers
    )
    assert response.status_code == 404


def test_toggle(client, user_headers, product):
    added = client.post(f"{API}/wishlist/toggle/{product['id']}", headers=user_headers)
    assert added.get_json()["data"]["in_wishlist"] is True
    removed = client.post(f"{API}/wishlist/toggle/{product['id']}", headers=user_headers)
    assert removed.get_json()["data"]["in_wishlist"] is False


def test_remove_and_clear(client, user_headers, make_product):
    first = make_product(name="First")
    second = make_product(name="Second")
    for item in (first, second):
        client.post(f"{API}/wishlist", json={"product_id": item["id"]}, headers=user_headers)

    assert client.delete(f"{API}/wishlist/{first['id']}", headers=user_headers).status_code == 200
    assert client.delete(f"{API}/wishlist/{first['id']}", headers=user_headers).status_code == 404
    assert client.get(f"{API}/wishlist/count", headers=user_headers).get_json()["data"]["count"] == 1

    assert client.delete(f"{API}/wishlist", headers=user_headers).status_code == 200
    assert client.get(f"{API}/wishlist/count", headers=user_headers).get_json()["data"]["count"] == 0


def test_paginated_listing(client, user_headers, make_product):
    for index in range(3):
        item = make_product(name=f"Item {index}")
        client.post(f"{API}/wishlist", json={"product_id": item["id"]}, headers=user_headers)

    page = client.get(
        f"{API}/wishlist/paginated?page=2&limit=2", headers=user_headers
    ).get_json()["data"]
    assert len(page["items"]) == 1
    assert page["pagination"]["total_items"] == 3


def test_move_single_item_to_cart(client, user_headers, product):
    client.post(f"{API}/wishlist", json={"product_id": product["id"]}, headers=user_headers)
    response = client.post(
        f"{API}/wishlist/{product['id']}/move-to-cart",
        json={"quantity": 2},
        headers=user_headers,
    )
    assert response.status_code == 200
    assert response.get_json()["data"]["items"][0]["quantity"] == 2
    check = client.get(f"{API}/wishlist/check/{product['id']}", headers=user_headers)
    assert check.get_json()["data"]["in_wishlist"] is False


def test_bulk_move_reports_failures(client, user_headers, make_product, db):
    in_stock = make_product(name="In Stock")
    sold_out = make_product(name="Sold Out", stock=1)
    for item in (in_stock, sold_out):
        client.post(f"{API}/wishlist", json={"product_id": item["id"]}, headers=user_headers)
    db.products.update_one({"_id": ObjectId(sold_out["id"])}, {"$set": {"stock": 0}})
    not_listed = str(ObjectId())

    response = client.post(
        f"{API}/wishlist/move-to-cart",
        json={"product_ids": [in_stock["id"], sold_out["id"], not_listed]},
        headers=user_headers,
    )
    data = response.get_json()["data"]
    assert response.status_code == 200
    assert data["moved"] == [in_stock["id"]]
    assert {entry["product_id"] for entry in data["failed"]} == {sold_out["id"], not_listed}
