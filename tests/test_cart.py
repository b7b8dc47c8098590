from bson import ObjectId

from conftest import API


def add(client, headers, product_id, quantity=1, **extra):
    return client.post(
        f"{API}/cart",
        json={"product_id": product_id, "quantity": quantity, **extra},
        headers=headers,
    )


def test_add_merges_identical_lines(client, user_headers, product):
    assert add(client, user_headers, product["id"], 2).status_code == 201
    response = add(client, user_headers, product["id"], 3)
    cart = response.get_json()["data"]

    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 5
    assert cart["total_items"] == 5
    assert cart["total_amount"] == 5 * 250000
    assert cart["currency"] == "VND"


def test_variant_lines_use_variant_price(client, user_headers, make_product):
    product = make_product(
        name="T-Shirt",
        price=200000,
        variants=[
            {"size": "M", "color": "Red", "stock": 5},
            {"size": "L", "color": "Red", "stock": 5, "price": 220000},
        ],
    )
    add(client, user_headers, product["id"], 1, selected_size="M", selected_color="Red")
    cart = add(
        client, user_headers, product["id"], 1, selected_size="L", selected_color="Red"
    ).get_json()["data"]

    prices = sorted(item["product"]["price"] for item in cart["items"])
    assert prices == [200000, 220000]
    assert cart["total_amount"] == 420000


def test_add_rejects_unavailable_and_excess_quantity(client, user_headers, make_product):
    draft = make_product(name="Draft Item", status="draft")
    assert add(client, user_headers, draft["id"]).status_code == 404

    scarce = make_product(name="Scarce Item", stock=2)
    response = add(client, user_headers, scarce["id"], 3)
    assert response.status_code == 400
    assert response.get_json()["available_stock"] == 2

    assert add(client, user_headers, scarce["id"], 0).status_code == 400
    assert add(client, user_headers, scarce["id"], 100).status_code == 400
    assert add(client, user_headers, str(ObjectId())).status_code == 404


def test_update_and_remove_line(client, user_headers, product):
    cart = add(client, user_headers, product["id"], 1).get_json()["data"]
    item_id = cart["items"][0]["id"]

    updated = client.put(
        f"{API}/cart/{item_id}", json={"quantity": 4}, headers=user_headers
    ).get_json()["data"]
    assert updated["items"][0]["quantity"] == 4

    too_many = client.put(f"{API}/cart/{item_id}", json={"quantity": 50}, headers=user_headers)
    assert too_many.status_code == 400

    removed = client.delete(f"{API}/cart/{item_id}", headers=user_headers)
    assert removed.status_code == 200
    assert removed.get_json()["data"]["items"] == []

    missing = client.delete(f"{API}/cart/{item_id}", headers=user_headers)
    assert missing.status_code == 404


def test_count_and_clear(client, user_headers, make_product):
    first = make_product(name="First")
    second = make_product(name="Second")
    add(client, user_headers, first["id"], 2)
    add(client, user_headers, second["id"], 1)

    count = client.get(f"{API}/cart/count", headers=user_headers).get_json()["data"]
    assert count == {"count": 3, "lines": 2}

    cleared = client.delete(f"{API}/cart", headers=user_headers)
    assert cleared.status_code == 200
    assert client.get(f"{API}/cart", headers=user_headers).get_json()["data"]["items"] == []


def test_cart_skips_products_that_became_unavailable(client, user_headers, product, db):
    add(client, user_headers, product["id"], 1)
    db.products.update_one({"_id": ObjectId(product["id"])}, {"$set": {"is_active": False}})

    cart = client.get(f"{API}/cart", headers=user_headers).get_json()["data"]
    assert cart["items"] == []
    assert cart["total_amount"] == 0
