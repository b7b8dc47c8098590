from conftest import API, SHIPPING_ADDRESS


def add_address(client, headers, **overrides):
    response = client.post(
        f"{API}/users/addresses", json={**SHIPPING_ADDRESS, **overrides}, headers=headers
    )
    assert response.status_code == 201, response.get_json()
    return response.get_json()["data"]


def test_profile_read_and_update(client, user_headers):
    response = client.get(f"{API}/users/profile", headers=user_headers)
    assert response.status_code == 200
    assert response.get_json()["data"]["email"] == "shopper@example.com"

    updated = client.put(
        f"{API}/users/profile",
        json={"name": "Renamed Shopper", "phone_number": "+84 901 234 567"},
        headers=user_headers,
    )
    assert updated.status_code == 200
    assert updated.get_json()["data"]["name"] == "Renamed Shopper"


def test_profile_password_change_requires_current_password(client, user_headers):
    response = client.put(
        f"{API}/users/profile",
        json={"current_password": "not-it", "new_password": "another-pass"},
        headers=user_headers,
    )
    assert response.status_code == 400

    response = client.put(
        f"{API}/users/profile",
        json={"current_password": "password123", "new_password": "another-pass"},
        headers=user_headers,
    )
    assert response.status_code == 200
    login = client.post(
        f"{API}/auth/login",
        json={"email": "shopper@example.com", "password": "another-pass"},
    )
    assert login.status_code == 200


def test_profile_email_change_checks_uniqueness(client, user_headers, register):
    register(email="taken@example.com")
    response = client.put(
        f"{API}/users/profile", json={"email": "taken@example.com"}, headers=user_headers
    )
    assert response.status_code == 409


def test_admin_routes_reject_regular_users(client, user_headers):
    assert client.get(f"{API}/users", headers=user_headers).status_code == 403


def test_admin_can_list_filter_and_deactivate_users(client, admin_headers, user, db):
    listing = client.get(f"{API}/users?q=shopper", headers=admin_headers)
    assert listing.status_code == 200
    users = listing.get_json()["data"]["users"]
    assert [entry["email"] for entry in users] == ["shopper@example.com"]

    user_id = user["user"]["id"]
    status = client.patch(
        f"{API}/users/{user_id}/status", json={"is_active": False}, headers=admin_headers
    )
    assert status.status_code == 200
    assert status.get_json()["data"]["is_active"] is False

    blocked = client.get(
        f"{API}/users/profile",
        headers={"Authorization": f"Bearer {user['access_token']}"},
    )
    assert blocked.status_code == 403


def test_admin_cannot_demote_or_delete_self(client, admin_headers, db):
    admin_id = str(db.users.find_one({"email": "admin@example.com"})["_id"])
    assert (
        client.put(f"{API}/users/{admin_id}", json={"role": "user"}, headers=admin_headers).status_code
        == 400
    )
    assert client.delete(f"{API}/users/{admin_id}", headers=admin_headers).status_code == 400


def test_admin_get_unknown_and_invalid_user(client, admin_headers):
    assert client.get(f"{API}/users/not-an-id", headers=admin_headers).status_code == 400
    assert (
        client.get(f"{API}/users/64b7f0c2a1b2c3d4e5f60718", headers=admin_headers).status_code
        == 404
    )


def test_first_address_becomes_default(client, user_headers):
    first = add_address(client, user_headers)
    second = add_address(client, user_headers, street="456 Le Loi Street")
    assert first["is_default"] is True
    assert second["is_default"] is False

    default = client.get(f"{API}/users/addresses/default", headers=user_headers)
    assert default.get_json()["data"]["id"] == first["id"]


def test_setting_default_clears_previous_one(client, user_headers):
    first = add_address(client, user_headers)
    second = add_address(client, user_headers, street="456 Le Loi Street")

    response = client.put(
        f"{API}/users/addresses/{second['id']}/default", headers=user_headers
    )
    assert response.status_code == 200

    addresses = client.get(f"{API}/users/addresses", headers=user_headers).get_json()["data"]
    defaults = {entry["id"]: entry["is_default"] for entry in addresses}
    assert defaults == {first["id"]: False, second["id"]: True}


def test_deleting_default_promotes_remaining_address(client, user_headers):
    first = add_address(client, user_headers)
    second = add_address(client, user_headers, street="456 Le Loi Street")

    response = client.delete(f"{API}/users/addresses/{first['id']}", headers=user_headers)
    remaining = response.get_json()["data"]
    assert response.status_code == 200
    assert [entry["id"] for entry in remaining] == [second["id"]]
    assert remaining[0]["is_default"] is True


def test_address_validation_and_missing_address(client, user_headers):
    response = client.post(
        f"{API}/users/addresses", json={"full_name": "X", "phone": "abc"}, headers=user_headers
    )
    assert response.status_code == 400
    assert response.get_json()["errors"]

    missing = client.put(
        f"{API}/users/addresses/64b7f0c2a1b2c3d4e5f60718",
        json={"city": "Hanoi"},
        headers=user_headers,
    )
    assert missing.status_code == 404
