import math
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from flask import current_app, request
from flask_jwt_extended import jwt_required

from .helpers import (
    API_PREFIX,
    add_months,
    build_date_filter,
    build_pagination,
    isoformat,
    normalize_object_id_value,
    normalize_text,
    parse_iso_date,
    parse_object_id,
    parse_pagination,
    safe_int,
    stringify_id,
    utcnow,
)
from .responses import error_response, success_response, validation_error
from .security import require_admin_user, require_role

POINTS_PER_VND = 0.01
POINTS_EXPIRY_MONTHS = 12
MINIMUM_REDEMPTION = 100
# VND value of 100 points
REDEMPTION_VALUE = 1000
EXPIRING_SOON_DAYS = 30

TIER_THRESHOLDS = (
    ("Platinum", 10000),
    ("Gold", 5000),
    ("Silver", 2000),
    ("Bronze", 0),
)

TRANSACTION_TYPES = {"earn", "redeem", "expire", "adjustment"}

EARNING_RULES = {
    "points_per_vnd": POINTS_PER_VND,
    "points_per_dollar": POINTS_PER_VND * 24000,
    "expiry_months": POINTS_EXPIRY_MONTHS,
    "minimum_redemption": MINIMUM_REDEMPTION,
    "bonus_rules": [
        {"condition": "First order", "points": 100},
        {"condition": "Order above 1,000,000 VND", "bonus_multiplier": 2},
        {"condition": "Birthday month", "bonus_multiplier": 1.5},
    ],
}

REDEMPTION_OPTIONS = [
    {
        "type": "discount",
        "name": "Discount Voucher",
        "options": [
            {"points": 100, "value": 10000, "description": "10,000 VND discount"},
            {"points": 500, "value": 60000, "description": "60,000 VND discount"},
            {"points": 1000, "value": 150000, "description": "150,000 VND discount"},
        ],
    },
    {
        "type": "shipping",
        "name": "Free Shipping",
        "options": [
            {"points": 50, "description": "Free standard shipping"},
            {"points": 100, "description": "Free express shipping"},
        ],
    },
]


def calculate_points_from_amount(amount) -> int:
    return max(0, int(math.floor(float(amount or 0) * POINTS_PER_VND)))


def calculate_redemption_value(points: int) -> int:
    return int(math.floor(points * (REDEMPTION_VALUE / 100)))


def calculate_tier_status(total_earned: int) -> str:
    for tier_name, threshold in TIER_THRESHOLDS:
        if total_earned >= threshold:
            return tier_name
    return "Bronze"


def calculate_next_tier_points(total_earned: int) -> int:
    next_threshold = 0
    for _, threshold in TIER_THRESHOLDS:
        if total_earned >= threshold:
            break
        next_threshold = threshold
    return max(0, next_threshold - total_earned)


def serialize_transaction(document) -> Dict[str, object]:
    if not document:
        return {}
    return {
        "id": str(document.get("_id")),
        "user_id": stringify_id(document.get("user_id")),
        "type": document.get("type"),
        "points": int(document.get("points", 0) or 0),
        "description": document.get("description", "") or "",
        "order_id": stringify_id(document.get("order_id")),
        "expires_at": isoformat(document.get("expires_at")),
        "expired_at": isoformat(document.get("expired_at")),
        "created_at": isoformat(document.get("created_at")),
    }


def record_transaction(
    db,
    user_id,
    transaction_type: str,
    points: int,
    description: str,
    order_id=None,
    expires_at=None,
):
    document = {
        "user_id": user_id,
        "type": transaction_type,
        "points": int(points),
        "description": description,
        "order_id": order_id,
        "expires_at": expires_at,
        "created_at": utcnow(),
    }
    insert_result = db.loyalty_transactions.insert_one(document)
    document["_id"] = insert_result.inserted_id
    return document


def credit_points(
    db,
    user_id,
    points: int,
    description: str,
    transaction_type: str = "earn",
    order_id=None,
    expires_at=None,
):
    if transaction_type == "earn" and expires_at is None:
        expires_at = add_months(utcnow(), POINTS_EXPIRY_MONTHS)
    transaction = record_transaction(
        db, user_id, transaction_type, points, description, order_id, expires_at
    )
    db.users.update_one({"_id": user_id}, {"$inc": {"points": int(points)}})
    return transaction


def debit_points(
    db,
    user_id,
    points: int,
    description: str,
    transaction_type: str = "redeem",
    order_id=None,
):
    """Subtract ``points`` from the cached balance when it covers them.

    Returns the stored transaction, or ``None`` when the balance is too low.
    """
    update_result = db.users.update_one(
        {"_id": user_id, "points": {"$gte": int(points)}},
        {"$inc": {"points": -int(points)}},
    )
    if update_result.modified_count == 0:
        return None
    return record_transaction(
        db, user_id, transaction_type, -int(points), description, order_id
    )


def earn_points_from_order(db, user_id, order_total, order_id):
    points_to_earn = calculate_points_from_amount(order_total)
    if points_to_earn <= 0:
        return None

    transaction = credit_points(
        db,
        user_id,
        points_to_earn,
        f"Earned {points_to_earn} points from order",
        order_id=order_id,
    )
    current_app.logger.info(
        "User %s earned %s points from order %s", user_id, points_to_earn, order_id
    )
    return transaction


def redeem_points(
    db, user_id, points: int, description: Optional[str] = None, order_id=None
) -> Tuple[Optional[Dict], Optional[str]]:
    if points < MINIMUM_REDEMPTION:
        return None, "MINIMUM_REDEMPTION"

    transaction = debit_points(
        db,
        user_id,
        points,
        description or f"Redeemed {points} points",
        order_id=order_id,
    )
    if not transaction:
        return None, "INSUFFICIENT_POINTS"

    current_app.logger.info("User %s redeemed %s points", user_id, points)
    return transaction, None


def refund_redeemed_points(db, user_id, points: int, order_id):
    if points <= 0:
        return None
    return credit_points(
        db,
        user_id,
        points,
        f"Refunded {points} points from cancelled order",
        transaction_type="adjustment",
        order_id=order_id,
    )


def get_user_loyalty_stats(db, user_id) -> Dict[str, int]:
    total_earned = 0
    total_redeemed = 0
    for transaction in db.loyalty_transactions.find(
        {"user_id": user_id, "type": {"$in": ["earn", "redeem"]}}
    ):
        points = int(transaction.get("points", 0) or 0)
        if transaction.get("type") == "earn":
            total_earned += points
        else:
            total_redeemed += abs(points)

    user_document = db.users.find_one({"_id": user_id}, {"points": 1}) or {}
    return {
        "total_points": int(user_document.get("points", 0) or 0),
        "total_earned": total_earned,
        "total_redeemed": total_redeemed,
    }


def get_expiring_points(db, user_id, days: int) -> Dict[str, object]:
    now = utcnow()
    cutoff = now + timedelta(days=days)
    transactions = list(
        db.loyalty_transactions.find(
            {
                "user_id": user_id,
                "type": "earn",
                "expires_at": {"$gt": now, "$lte": cutoff},
                "expired_at": None,
            }
        ).sort("expires_at", 1)
    )
    return {
        "points": sum(int(item.get("points", 0) or 0) for item in transactions),
        "next_expiry_date": transactions[0].get("expires_at") if transactions else None,
        "transactions": transactions,
    }


def expire_points(db, now=None) -> Dict[str, int]:
    """Expire earn transactions whose validity ended.

    Each source transaction is stamped with ``expired_at`` so a second run
    leaves balances untouched. The expired amount is capped at the current
    balance because part of the earned points may already be spent.
    """
    now = now or utcnow()
    total_expired = 0
    processed = 0

    due_transactions = list(
        db.loyalty_transactions.find(
            {"type": "earn", "expires_at": {"$lte": now}, "expired_at": None}
        ).sort("expires_at", 1)
    )
    for transaction in due_transactions:
        processed += 1
        user_id = transaction.get("user_id")
        user_document = db.users.find_one({"_id": user_id}, {"points": 1}) or {}
        balance = max(0, int(user_document.get("points", 0) or 0))
        amount = min(int(transaction.get("points", 0) or 0), balance)
        if amount > 0:
            expired = debit_points(
                db,
                user_id,
                amount,
                f"Points expired from {transaction.get('description', 'earned points')}",
                transaction_type="expire",
                order_id=transaction.get("order_id"),
            )
            if expired:
                total_expired += amount
        db.loyalty_transactions.update_one(
            {"_id": transaction["_id"]}, {"$set": {"expired_at": now}}
        )

    current_app.logger.info(
        "Expired %s points across %s transactions", total_expired, processed
    )
    return {"expired_points": total_expired, "processed_transactions": processed}


def get_loyalty_analytics(db, created_filter: Dict) -> Dict[str, object]:
    match_stage: Dict[str, object] = {}
    if created_filter:
        match_stage["created_at"] = created_filter

    by_type = list(
        db.loyalty_transactions.aggregate(
            [
                {"$match": match_stage},
                {
                    "$group": {
                        "_id": "$type",
                        "total_points": {"$sum": "$points"},
                        "count": {"$sum": 1},
                    }
                },
                {"$sort": {"_id": 1}},
            ]
        )
    )
    by_user = list(
        db.loyalty_transactions.aggregate(
            [
                {"$match": match_stage},
                {
                    "$group": {
                        "_id": "$user_id",
                        "net_points": {"$sum": "$points"},
                        "transactions": {"$sum": 1},
                    }
                },
                {"$sort": {"net_points": -1}},
                {"$limit": 10},
            ]
        )
    )

    totals = {transaction_type: 0 for transaction_type in sorted(TRANSACTION_TYPES)}
    for entry in by_type:
        totals[entry["_id"]] = int(entry.get("total_points", 0) or 0)

    return {
        "totals_by_type": totals,
        "by_type": [
            {
                "type": entry["_id"],
                "total_points": int(entry.get("total_points", 0) or 0),
                "count": int(entry.get("count", 0) or 0),
            }
            for entry in by_type
        ],
        "top_users": [
            {
                "user_id": stringify_id(entry["_id"]),
                "net_points": int(entry.get("net_points", 0) or 0),
                "transactions": int(entry.get("transactions", 0) or 0),
            }
            for entry in by_user
        ],
        "points_outstanding": sum(
            int(user.get("points", 0) or 0)
            for user in db.users.find({"points": {"$gt": 0}}, {"points": 1})
        ),
    }


def register_loyalty_routes(app, db):
    @app.route(f"{API_PREFIX}/loyalty/stats", methods=["GET"])
    @jwt_required()
    def loyalty_stats():
        """Points balance, lifetime totals and tier for the current user."""
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error

        stats = get_user_loyalty_stats(db, current_user["_id"])
        expiring = get_expiring_points(db, current_user["_id"], EXPIRING_SOON_DAYS)
        return success_response(
            {
                **stats,
                "expiring_points": expiring["points"],
                "expiring_date": isoformat(expiring["next_expiry_date"]),
                "tier_status": calculate_tier_status(stats["total_earned"]),
                "next_tier_points": calculate_next_tier_points(stats["total_earned"]),
            },
            "LOYALTY_STATS_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/loyalty/history", methods=["GET"])
    @jwt_required()
    def loyalty_history():
        """Paginated loyalty transactions, filterable by type and date range."""
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error

        query: Dict[str, object] = {"user_id": current_user["_id"]}
        transaction_type = str(request.args.get("type", "")).strip().lower()
        if transaction_type:
            if transaction_type not in TRANSACTION_TYPES:
                return validation_error(
                    f"type must be one of {', '.join(sorted(TRANSACTION_TYPES))}"
                )
            query["type"] = transaction_type

        created_filter, date_error = build_date_filter(
            request.args.get("start_date"), request.args.get("end_date")
        )
        if date_error:
            return date_error
        if created_filter:
            query["created_at"] = created_filter

        page, limit, skip = parse_pagination(request.args)
        total = db.loyalty_transactions.count_documents(query)
        transactions = (
            db.loyalty_transactions.find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .skip(skip)
            .limit(limit)
        )
        return success_response(
            {
                "transactions": [serialize_transaction(item) for item in transactions],
                "pagination": build_pagination(total, page, limit),
            },
            "LOYALTY_HISTORY_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/loyalty/expiring", methods=["GET"])
    @jwt_required()
    def loyalty_expiring():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error

        days = safe_int(request.args.get("days", EXPIRING_SOON_DAYS))
        if days is None or days < 1 or days > 365:
            return validation_error("days must be between 1 and 365")

        expiring = get_expiring_points(db, current_user["_id"], days)
        return success_response(
            {
                "days": days,
                "points": expiring["points"],
                "next_expiry_date": isoformat(expiring["next_expiry_date"]),
                "transactions": [
                    serialize_transaction(item) for item in expiring["transactions"]
                ],
            },
            "LOYALTY_EXPIRING_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/loyalty/earning-rules", methods=["GET"])
    @jwt_required()
    def loyalty_earning_rules():
        return success_response(EARNING_RULES, "LOYALTY_RULES_RETRIEVED")

    @app.route(f"{API_PREFIX}/loyalty/redemption-options", methods=["GET"])
    @jwt_required()
    def loyalty_redemption_options():
        return success_response(REDEMPTION_OPTIONS, "LOYALTY_RULES_RETRIEVED")

    @app.route(f"{API_PREFIX}/loyalty/redeem", methods=["POST"])
    @jwt_required()
    def loyalty_redeem():
        """Spend points; at least 100 and never more than the balance."""
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error

        payload = request.get_json(silent=True) or {}
        points = safe_int(payload.get("points"))
        if points is None or points <= 0:
            return validation_error("points must be a positive integer")

        order_id = None
        if payload.get("order_id"):
            order_id, id_error = parse_object_id(payload.get("order_id"))
            if id_error:
                return id_error

        description = normalize_text(payload.get("description"), 200) or None
        transaction, redeem_error = redeem_points(
            db, current_user["_id"], points, description, order_id
        )
        if redeem_error:
            return error_response(
                redeem_error,
                400,
                minimum_redemption=MINIMUM_REDEMPTION,
            )

        return success_response(
            {
                "transaction": serialize_transaction(transaction),
                "redemption_value": calculate_redemption_value(points),
                "remaining_points": get_user_loyalty_stats(db, current_user["_id"])[
                    "total_points"
                ],
            },
            "POINTS_REDEEMED",
        )

    @app.route(f"{API_PREFIX}/loyalty/admin/award", methods=["POST"])
    @jwt_required()
    def loyalty_admin_award():
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        errors: List[str] = []
        user_id = normalize_object_id_value(payload.get("user_id")) if payload.get(
            "user_id"
        ) else None
        if not user_id:
            errors.append("user_id must be a valid identifier")
        points = safe_int(payload.get("points"))
        if points is None or points <= 0:
            errors.append("points must be a positive integer")
        description = normalize_text(payload.get("description"), 200)
        if not description:
            errors.append("description is required")
        expires_at = None
        if payload.get("expires_at"):
            expires_at = parse_iso_date(payload.get("expires_at"))
            if not expires_at:
                errors.append("expires_at must be an ISO date")
        if errors:
            return validation_error(errors)

        if not db.users.find_one({"_id": user_id}, {"_id": 1}):
            return error_response("USER_NOT_FOUND", 404)

        transaction = credit_points(
            db, user_id, points, description, expires_at=expires_at
        )
        app.logger.info("Awarded %s points to user %s: %s", points, user_id, description)
        return success_response(
            serialize_transaction(transaction), "POINTS_AWARDED", status=201
        )

    @app.route(f"{API_PREFIX}/loyalty/admin/analytics", methods=["GET"])
    @jwt_required()
    def loyalty_admin_analytics():
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        created_filter, date_error = build_date_filter(
            request.args.get("start_date"), request.args.get("end_date")
        )
        if date_error:
            return date_error

        return success_response(
            get_loyalty_analytics(db, created_filter), "LOYALTY_ANALYTICS_RETRIEVED"
        )

    @app.route(f"{API_PREFIX}/loyalty/admin/expire", methods=["POST"])
    @jwt_required()
    def loyalty_admin_expire():
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        return success_response(expire_points(db), "POINTS_EXPIRED")
