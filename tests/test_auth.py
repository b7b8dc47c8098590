from datetime import datetime, timedelta

from conftest import API, TEST_CONFIG, auth_headers, extract_code
from storefront import create_app


def login(client, email="shopper@example.com", password="password123"):
    return client.post(f"{API}/auth/login", json={"email": email, "password": password})


def test_register_returns_tokens_and_sends_code(client, outbox):
    response = client.post(
        f"{API}/auth/register",
        json={"name": "Shopper", "email": "Shopper@Example.com", "password": "password123"},
    )
    body = response.get_json()

    assert response.status_code == 201
    assert body["success"] is True
    assert body["message"]
    assert body["messageVi"]
    assert body["data"]["user"]["email"] == "shopper@example.com"
    assert body["data"]["user"]["role"] == "user"
    assert "password" not in body["data"]["user"]
    assert body["data"]["access_token"]
    assert body["data"]["refresh_token"]
    assert body["data"]["email_sent"] is True
    assert len(outbox) == 1
    assert outbox[0]["to"] == ["shopper@example.com"]


def test_register_rejects_duplicate_email(client, user):
    response = client.post(
        f"{API}/auth/register",
        json={"name": "Other", "email": "shopper@example.com", "password": "password123"},
    )
    assert response.status_code == 409
    assert response.get_json()["success"] is False


def test_register_validates_fields(client, outbox):
    response = client.post(
        f"{API}/auth/register", json={"name": "A", "email": "nope", "password": "short"}
    )
    body = response.get_json()
    assert response.status_code == 400
    assert len(body["errors"]) == 3


def test_login_success_and_wrong_password(client, user):
    assert login(client).status_code == 200
    response = login(client, password="wrong-password")
    assert response.status_code == 401


def test_login_locks_after_repeated_failures(client, user, db):
    assert login(client, password="bad-one").status_code == 401
    assert login(client, password="bad-two").status_code == 401
    locked = login(client, password="bad-three")
    assert locked.status_code == 423
    assert locked.get_json()["lock_until"]

    assert login(client).status_code == 423
    assert db.users.find_one({"email": "shopper@example.com"})["lock_until"] is not None


def test_login_rejects_disabled_account(client, user, db):
    db.users.update_one({"email": "shopper@example.com"}, {"$set": {"is_active": False}})
    assert login(client).status_code == 403


def test_login_requires_verification_when_configured(app, client, user):
    app.config["REQUIRE_EMAIL_VERIFICATION"] = True
    response = login(client)
    assert response.status_code == 403
    assert response.get_json()["requires_verification"] is True


def test_refresh_token_issues_new_access_token(client, user):
    response = client.post(
        f"{API}/auth/refresh-token", headers=auth_headers(user["refresh_token"])
    )
    assert response.status_code == 200
    assert response.get_json()["data"]["access_token"]


def test_refresh_rejects_access_token(client, user):
    response = client.post(
        f"{API}/auth/refresh-token", headers=auth_headers(user["access_token"])
    )
    assert response.status_code == 401


def test_logout_revokes_tokens(client, user):
    headers = auth_headers(user["access_token"])
    response = client.post(
        f"{API}/auth/logout", json={"refresh_token": user["refresh_token"]}, headers=headers
    )
    assert response.status_code == 200
    assert response.get_json()["data"]["refresh_token_revoked"] is True

    assert client.get(f"{API}/users/profile", headers=headers).status_code == 401
    refreshed = client.post(
        f"{API}/auth/refresh-token", headers=auth_headers(user["refresh_token"])
    )
    assert refreshed.status_code == 401


def test_missing_token_is_rejected(client):
    response = client.get(f"{API}/users/profile")
    body = response.get_json()
    assert response.status_code == 401
    assert body["success"] is False
    assert body["messageVi"]


def test_verify_email_with_code(client, outbox, db):
    client.post(
        f"{API}/auth/register",
        json={"name": "Shopper", "email": "shopper@example.com", "password": "password123"},
    )
    code = extract_code(outbox[-1])

    wrong = "000000" if code != "000000" else "111111"
    assert (
        client.post(
            f"{API}/auth/verify-email", json={"email": "shopper@example.com", "otp": wrong}
        ).status_code
        == 400
    )

    response = client.post(
        f"{API}/auth/verify-email", json={"email": "shopper@example.com", "otp": code}
    )
    assert response.status_code == 200
    assert db.users.find_one({"email": "shopper@example.com"})["is_email_verified"] is True

    again = client.post(
        f"{API}/auth/verify-email", json={"email": "shopper@example.com", "otp": code}
    )
    assert again.status_code == 200


def test_verify_email_gives_up_after_too_many_attempts(client, outbox, db):
    client.post(
        f"{API}/auth/register",
        json={"name": "Shopper", "email": "shopper@example.com", "password": "password123"},
    )
    code = extract_code(outbox[-1])
    wrong = "000000" if code != "000000" else "111111"
    for _ in range(4):
        client.post(
            f"{API}/auth/verify-email", json={"email": "shopper@example.com", "otp": wrong}
        )
    last = client.post(
        f"{API}/auth/verify-email", json={"email": "shopper@example.com", "otp": wrong}
    )
    assert last.status_code == 400
    assert db.email_verification_tokens.find_one({"email": "shopper@example.com"}) is None


def test_resend_verification_does_not_reveal_unknown_accounts(client, outbox):
    response = client.post(
        f"{API}/auth/resend-verification-email", json={"email": "ghost@example.com"}
    )
    assert response.status_code == 200
    assert outbox == []


def test_password_reset_flow(client, user, outbox):
    outbox.clear()
    response = client.post(
        f"{API}/auth/forgot-password", json={"email": "shopper@example.com"}
    )
    assert response.status_code == 200
    code = extract_code(outbox[-1])

    bad = client.post(
        f"{API}/auth/reset-password",
        json={
            "email": "shopper@example.com",
            "otp": "000000" if code != "000000" else "111111",
            "new_password": "new-password-1",
        },
    )
    assert bad.status_code == 400

    reset = client.post(
        f"{API}/auth/reset-password",
        json={"email": "shopper@example.com", "otp": code, "new_password": "new-password-1"},
    )
    assert reset.status_code == 200
    assert login(client).status_code == 401
    assert login(client, password="new-password-1").status_code == 200


def test_forgot_password_answers_the_same_for_unknown_email(client, outbox):
    response = client.post(f"{API}/auth/forgot-password", json={"email": "ghost@example.com"})
    assert response.status_code == 200
    assert outbox == []


def request_reset_code(client, outbox):
    outbox.clear()
    client.post(f"{API}/auth/forgot-password", json={"email": "shopper@example.com"})
    return extract_code(outbox[-1])


def reset_with(client, code, new_password="new-password-1"):
    return client.post(
        f"{API}/auth/reset-password",
        json={"email": "shopper@example.com", "otp": code, "new_password": new_password},
    )


def test_reset_code_is_discarded_after_repeated_failures(client, user, outbox, db):
    code = request_reset_code(client, outbox)
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(5):
        assert reset_with(client, wrong).status_code == 400

    stored = db.users.find_one({"email": "shopper@example.com"})
    assert "password_reset_otp" not in stored
    assert "password_reset_attempts" not in stored

    assert reset_with(client, code).status_code == 400
    assert login(client).status_code == 200


def test_new_reset_code_restarts_attempt_count(client, user, outbox, db):
    code = request_reset_code(client, outbox)
    wrong = "000000" if code != "000000" else "111111"
    for _ in range(3):
        reset_with(client, wrong)
    assert db.users.find_one({"email": "shopper@example.com"})["password_reset_attempts"] == 3

    fresh = request_reset_code(client, outbox)
    assert db.users.find_one({"email": "shopper@example.com"})["password_reset_attempts"] == 0
    assert reset_with(client, fresh).status_code == 200


def test_expired_reset_code_is_rejected(client, user, outbox, db):
    code = request_reset_code(client, outbox)
    db.users.update_one(
        {"email": "shopper@example.com"},
        {"$set": {"password_reset_expires": datetime.utcnow() - timedelta(minutes=1)}},
    )

    response = reset_with(client, code)
    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid or expired reset code"
    assert "password_reset_otp" not in db.users.find_one({"email": "shopper@example.com"})
    assert login(client).status_code == 200


def test_auth_routes_are_rate_limited(db, outbox):
    limited_app = create_app(
        {**TEST_CONFIG, "RATELIMIT_ENABLED": True, "AUTH_RATE_LIMIT": "3 per minute"},
        database=db,
    )
    client = limited_app.test_client()

    for _ in range(3):
        assert login(client, email="ghost@example.com").status_code == 401

    blocked = login(client, email="ghost@example.com")
    body = blocked.get_json()
    assert blocked.status_code == 429
    assert body["success"] is False
    assert body["message"] == "Too many requests, please try again later"
    assert body["messageVi"]

    assert client.get("/health").status_code == 200
