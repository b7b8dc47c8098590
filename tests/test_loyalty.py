from datetime import datetime, timedelta

from conftest import API
from storefront.loyalty import (
    calculate_next_tier_points,
    calculate_points_from_amount,
    calculate_redemption_value,
    calculate_tier_status,
    credit_points,
    expire_points,
)


def user_id_of(db, email="shopper@example.com"):
    return db.users.find_one({"email": email})["_id"]


def award(client, admin_headers, user_id, points, **extra):
    return client.post(
        f"{API}/loyalty/admin/award",
        json={"user_id": str(user_id), "points": points, "description": "Goodwill", **extra},
        headers=admin_headers,
    )


def test_point_calculations():
    assert calculate_points_from_amount(305000) == 3050
    assert calculate_points_from_amount(99) == 0
    assert calculate_redemption_value(100) == 1000
    assert calculate_tier_status(0) == "Bronze"
    assert calculate_tier_status(2000) == "Silver"
    assert calculate_tier_status(5000) == "Gold"
    assert calculate_tier_status(10000) == "Platinum"
    assert calculate_next_tier_points(1500) == 500
    assert calculate_next_tier_points(12000) == 0


def test_stats_after_award(client, user_headers, admin_headers, db):
    response = award(client, admin_headers, user_id_of(db), 2500)
    assert response.status_code == 201

    stats = client.get(f"{API}/loyalty/stats", headers=user_headers).get_json()["data"]
    assert stats["total_points"] == 2500
    assert stats["total_earned"] == 2500
    assert stats["total_redeemed"] == 0
    assert stats["tier_status"] == "Silver"
    assert stats["next_tier_points"] == 2500


def test_award_requires_admin_and_valid_body(client, user_headers, admin_headers, db):
    assert award(client, user_headers, user_id_of(db), 100).status_code == 403
    assert award(client, admin_headers, user_id_of(db), -5).status_code == 400
    assert award(client, admin_headers, "64b7f0c2a1b2c3d4e5f60718", 100).status_code == 404


def test_redeem_rules(client, user_headers, admin_headers, db):
    award(client, admin_headers, user_id_of(db), 300)

    below_minimum = client.post(
        f"{API}/loyalty/redeem", json={"points": 50}, headers=user_headers
    )
    assert below_minimum.status_code == 400
    too_many = client.post(f"{API}/loyalty/redeem", json={"points": 400}, headers=user_headers)
    assert too_many.status_code == 400

    redeemed = client.post(f"{API}/loyalty/redeem", json={"points": 200}, headers=user_headers)
    data = redeemed.get_json()["data"]
    assert redeemed.status_code == 200
    assert data["redemption_value"] == 2000
    assert data["remaining_points"] == 100
    assert data["transaction"]["points"] == -200


def test_history_filters_by_type(client, user_headers, admin_headers, db):
    award(client, admin_headers, user_id_of(db), 300)
    client.post(f"{API}/loyalty/redeem", json={"points": 100}, headers=user_headers)

    history = client.get(f"{API}/loyalty/history", headers=user_headers).get_json()["data"]
    assert history["pagination"]["total_items"] == 2

    redeem_only = client.get(
        f"{API}/loyalty/history?type=redeem", headers=user_headers
    ).get_json()["data"]
    assert [entry["type"] for entry in redeem_only["transactions"]] == ["redeem"]

    assert client.get(f"{API}/loyalty/history?type=bogus", headers=user_headers).status_code == 400


def test_expiring_window(client, user_headers, admin_headers, db):
    soon = (datetime.utcnow() + timedelta(days=10)).strftime("%Y-%m-%dT%H:%M:%S")
    award(client, admin_headers, user_id_of(db), 150, expires_at=soon)
    award(client, admin_headers, user_id_of(db), 400)

    expiring = client.get(f"{API}/loyalty/expiring?days=30", headers=user_headers).get_json()["data"]
    assert expiring["points"] == 150
    assert client.get(f"{API}/loyalty/expiring?days=0", headers=user_headers).status_code == 400


def test_expiry_is_idempotent_and_never_negative(app, client, user_headers, db):
    user_id = user_id_of(db)
    past = datetime.utcnow() - timedelta(days=1)
    with app.app_context():
        credit_points(db, user_id, 500, "Old promotion", expires_at=past)
        credit_points(db, user_id, 100, "Fresh promotion")
    client.post(f"{API}/loyalty/redeem", json={"points": 400}, headers=user_headers)

    with app.app_context():
        first = expire_points(db)
        second = expire_points(db)

    assert first == {"expired_points": 200, "processed_transactions": 1}
    assert second == {"expired_points": 0, "processed_transactions": 0}
    assert db.users.find_one({"_id": user_id})["points"] == 0
    assert db.loyalty_transactions.count_documents({"type": "expire"}) == 1


def test_admin_expire_and_analytics(client, admin_headers, user, db):
    user_id = user_id_of(db)
    award(client, admin_headers, user_id, 300, expires_at="2020-01-01")

    expired = client.post(f"{API}/loyalty/admin/expire", headers=admin_headers)
    assert expired.get_json()["data"]["expired_points"] == 300

    analytics = client.get(f"{API}/loyalty/admin/analytics", headers=admin_headers).get_json()["data"]
    assert analytics["totals_by_type"]["earn"] == 300
    assert analytics["totals_by_type"]["expire"] == -300
    assert analytics["points_outstanding"] == 0


def test_rules_and_options(client, user_headers):
    rules = client.get(f"{API}/loyalty/earning-rules", headers=user_headers).get_json()["data"]
    assert rules["minimum_redemption"] == 100
    options = client.get(f"{API}/loyalty/redemption-options", headers=user_headers)
    assert options.status_code == 200
