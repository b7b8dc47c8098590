from bson import ObjectId

from conftest import API


def test_create_category_generates_slug(make_category):
    category = make_category("Điện Thoại Di Động")
    assert category["slug"] == "dien-thoai-di-dong"
    assert category["level"] == 0
    assert category["parent"] is None


def test_duplicate_slug_conflicts(client, admin_headers, make_category):
    make_category("Laptops")
    response = client.post(
        f"{API}/categories", json={"name": "Laptops"}, headers=admin_headers
    )
    assert response.status_code == 409


def test_regular_user_cannot_create_category(client, user_headers):
    response = client.post(f"{API}/categories", json={"name": "Toys"}, headers=user_headers)
    assert response.status_code == 403


def test_tree_and_path(client, make_category):
    root = make_category("Electronics")
    child = make_category("Phones", parent=root["id"])
    grandchild = make_category("Android Phones", parent=child["id"])

    assert grandchild["level"] == 2
    assert grandchild["path"] == [root["id"], child["id"]]

    tree = client.get(f"{API}/categories/tree").get_json()["data"]
    assert len(tree) == 1
    assert tree[0]["children"][0]["children"][0]["id"] == grandchild["id"]

    path = client.get(f"{API}/categories/{grandchild['id']}/path").get_json()["data"]
    assert [entry["name"] for entry in path] == ["Electronics", "Phones", "Android Phones"]

    children = client.get(f"{API}/categories/{root['id']}/children").get_json()["data"]
    assert [entry["id"] for entry in children] == [child["id"]]

    roots = client.get(f"{API}/categories/root").get_json()["data"]
    assert [entry["id"] for entry in roots] == [root["id"]]


def test_depth_limit(client, admin_headers, make_category):
    parent = make_category("Level 0")
    for level in range(1, 5):
        parent = make_category(f"Level {level}", parent=parent["id"])
    assert parent["level"] == 4

    response = client.post(
        f"{API}/categories",
        json={"name": "Level 5", "parent": parent["id"]},
        headers=admin_headers,
    )
    assert response.status_code == 400


def test_move_rewrites_subtree(client, admin_headers, make_category):
    electronics = make_category("Electronics")
    fashion = make_category("Fashion")
    phones = make_category("Phones", parent=electronics["id"])
    android = make_category("Android", parent=phones["id"])

    response = client.put(
        f"{API}/categories/{phones['id']}",
        json={"parent": fashion["id"]},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.get_json()["data"]["path"] == [fashion["id"]]

    moved_child = client.get(f"{API}/categories/{android['id']}").get_json()["data"]
    assert moved_child["path"] == [fashion["id"], phones["id"]]
    assert moved_child["level"] == 2

    old_parent = client.get(f"{API}/categories/{electronics['id']}").get_json()["data"]
    assert phones["id"] not in old_parent["children"]


def test_cannot_move_under_self_or_descendant(client, admin_headers, make_category):
    root = make_category("Electronics")
    child = make_category("Phones", parent=root["id"])

    own = client.put(
        f"{API}/categories/{root['id']}", json={"parent": root["id"]}, headers=admin_headers
    )
    assert own.status_code == 400
    descendant = client.put(
        f"{API}/categories/{root['id']}", json={"parent": child["id"]}, headers=admin_headers
    )
    assert descendant.status_code == 400
    missing = client.put(
        f"{API}/categories/{root['id']}",
        json={"parent": "64b7f0c2a1b2c3d4e5f60718"},
        headers=admin_headers,
    )
    assert missing.status_code == 404


def test_delete_blocked_by_children_and_products(
    client, admin_headers, make_category, make_product, category
):
    child = make_category("Accessories", parent=category["id"])
    assert client.delete(
        f"{API}/categories/{category['id']}", headers=admin_headers
    ).status_code == 409

    make_product(category=child["id"])
    assert client.delete(
        f"{API}/categories/{child['id']}", headers=admin_headers
    ).status_code == 409


def test_delete_leaf_category(client, admin_headers, make_category):
    root = make_category("Garden")
    leaf = make_category("Tools", parent=root["id"])

    assert client.delete(f"{API}/categories/{leaf['id']}", headers=admin_headers).status_code == 200
    refreshed = client.get(f"{API}/categories/{root['id']}").get_json()["data"]
    assert refreshed["children"] == []


def test_search_requires_query(client, make_category):
    make_category("Headphones")
    assert client.get(f"{API}/categories/search").status_code == 400
    found = client.get(f"{API}/categories/search?q=phone").get_json()["data"]
    assert [entry["name"] for entry in found] == ["Headphones"]


def test_get_by_slug_and_unknown(client, make_category):
    make_category("Home Decor")
    assert client.get(f"{API}/categories/slug/home-decor").status_code == 200
    assert client.get(f"{API}/categories/slug/nothing-here").status_code == 404
    assert client.get(f"{API}/categories/not-an-id").status_code == 400


def test_bulk_create_reports_failures(client, admin_headers, make_category):
    make_category("Books")
    response = client.post(
        f"{API}/categories/bulk-create",
        json={"categories": [{"name": "Books"}, {"name": "Music"}]},
        headers=admin_headers,
    )
    body = response.get_json()
    assert response.status_code == 201
    assert [entry["name"] for entry in body["data"]["created"]] == ["Music"]
    assert len(body["data"]["failed"]) == 1


def test_validate_hierarchy_reports_clean_tree(client, admin_headers, make_category):
    root = make_category("Electronics")
    make_category("Phones", parent=root["id"])
    response = client.get(f"{API}/categories/validate-hierarchy", headers=admin_headers)
    assert response.status_code == 200
    assert response.get_json()["data"]["valid"] is True


def test_reorder_changes_root_ordering(client, admin_headers, make_category):
    books = make_category("Books")
    garden = make_category("Garden")
    toys = make_category("Toys")

    response = client.patch(
        f"{API}/categories/reorder",
        json={
            "categories": [
                {"id": toys["id"], "sort_order": 1},
                {"id": books["id"], "sort_order": 2},
                {"id": garden["id"], "sort_order": 3},
                {"id": str(ObjectId()), "sort_order": 4},
            ]
        },
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.get_json()["data"]["updated"] == 3

    roots = client.get(f"{API}/categories/root").get_json()["data"]
    assert [entry["name"] for entry in roots] == ["Toys", "Books", "Garden"]


def test_reorder_validation(client, admin_headers, user_headers, category):
    body = {"categories": [{"id": category["id"], "sort_order": "first"}]}
    assert client.patch(
        f"{API}/categories/reorder", json=body, headers=admin_headers
    ).status_code == 400
    assert client.patch(
        f"{API}/categories/reorder", json={"categories": []}, headers=admin_headers
    ).status_code == 400
    assert client.patch(
        f"{API}/categories/reorder",
        json={"categories": [{"id": category["id"], "sort_order": 1}]},
        headers=user_headers,
    ).status_code == 403


def test_category_analytics_include_descendants(
    client, admin_headers, make_category, make_product, category
):
    child = make_category("Accessories", parent=category["id"])
    make_product(name="Laptop", price=300000, stock=5)
    make_product(name="Mouse Pad", price=100000, stock=0, category=child["id"])

    response = client.get(
        f"{API}/categories/{category['id']}/analytics", headers=admin_headers
    )
    data = response.get_json()["data"]
    assert response.status_code == 200
    assert data["subcategory_count"] == 1
    assert data["direct_product_count"] == 1
    assert data["total_product_count"] == 2
    assert data["active_product_count"] == 1
    assert data["out_of_stock_count"] == 1
    assert data["total_stock"] == 5
    assert data["average_price"] == 200000

    missing = client.get(
        f"{API}/categories/{ObjectId()}/analytics", headers=admin_headers
    )
    assert missing.status_code == 404


def test_with_product_count_is_admin_only(
    client, admin_headers, user_headers, make_category, make_product, category
):
    make_category("Empty Shelf")
    make_product(name="Keyboard")
    make_product(name="Monitor")

    assert client.get(
        f"{API}/categories/with-product-count", headers=user_headers
    ).status_code == 403

    response = client.get(f"{API}/categories/with-product-count", headers=admin_headers)
    counts = {
        entry["name"]: entry["actual_product_count"]
        for entry in response.get_json()["data"]
    }
    assert response.status_code == 200
    assert counts == {"Electronics": 2, "Empty Shelf": 0}
