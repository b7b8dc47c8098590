import math
import secrets
import string
import time
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from flask import request
from flask_jwt_extended import jwt_required

from . import emails
from .cart import MAX_CART_QUANTITY, clear_cart, resolve_unit_price
from .helpers import (
    API_PREFIX,
    build_date_filter,
    build_pagination,
    isoformat,
    normalize_object_id_value,
    normalize_text,
    parse_iso_date,
    parse_object_id,
    parse_pagination,
    safe_float,
    safe_int,
    stringify_id,
    utcnow,
)
from .loyalty import (
    MINIMUM_REDEMPTION,
    REDEMPTION_VALUE,
    calculate_redemption_value,
    debit_points,
    earn_points_from_order,
    refund_redeemed_points,
)
from .products import is_product_available, refresh_stock_status
from .responses import error_response, success_response, validation_error
from .security import normalize_role, require_admin_user, require_role
from .users import find_address, get_default_address, normalize_address_payload

FREE_SHIPPING_THRESHOLD = 500000
SHIPPING_FEE = 30000
TAX_RATE = 0.1
CURRENCY = "VND"

PAYMENT_METHODS = ("cod", "card", "bank_transfer", "momo", "zalopay")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")
ORDER_STATUSES = (
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    "returned",
)
CANCELLABLE_STATUSES = ("pending", "confirmed")
FINAL_STATUSES = ("cancelled", "returned")


def generate_order_number() -> str:
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(5))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def calculate_order_totals(subtotal: float, redeem_points: int = 0) -> Dict[str, object]:
    """Shipping, tax and loyalty discount for an order subtotal.

    The discount never exceeds the amount due, and ``points_redeemed`` is
    reduced to what that discount actually needs.
    """
    shipping_fee = 0 if subtotal >= FREE_SHIPPING_THRESHOLD else SHIPPING_FEE
    # Half-up, so a 2.5 tax becomes 3.
    tax = int(math.floor(subtotal * TAX_RATE + 0.5))
    amount_due = subtotal + shipping_fee + tax

    discount = 0
    points_redeemed = 0
    if redeem_points > 0:
        discount = min(calculate_redemption_value(redeem_points), amount_due)
        points_redeemed = min(
            redeem_points, int(math.ceil(discount * 100 / REDEMPTION_VALUE))
        )

    return {
        "subtotal": subtotal,
        "shipping_fee": shipping_fee,
        "tax": tax,
        "discount": discount,
        "points_redeemed": points_redeemed,
        "total": amount_due - discount,
    }


def serialize_order(order_document) -> Dict[str, object]:
    if not order_document:
        return {}

    items = []
    for item in order_document.get("items") or []:
        items.append(
            {
                "product_id": stringify_id(item.get("product_id")),
                "name": item.get("name", ""),
                "sku": item.get("sku", ""),
                "price": item.get("price", 0),
                "quantity": int(item.get("quantity", 0) or 0),
                "selected_size": item.get("selected_size", "") or "",
                "selected_color": item.get("selected_color", "") or "",
                "image": item.get("image", "") or "",
                "subtotal": item.get("price", 0) * int(item.get("quantity", 0) or 0),
            }
        )

    return {
        "id": str(order_document.get("_id")),
        "order_number": order_document.get("order_number"),
        "user_id": stringify_id(order_document.get("user_id")),
        "items": items,
        "shipping_address": order_document.get("shipping_address") or {},
        "billing_address": order_document.get("billing_address") or {},
        "payment_method": order_document.get("payment_method"),
        "payment_status": order_document.get("payment_status"),
        "order_status": order_document.get("order_status"),
        "subtotal": order_document.get("subtotal", 0),
        "shipping_fee": order_document.get("shipping_fee", 0),
        "tax": order_document.get("tax", 0),
        "discount": order_document.get("discount", 0),
        "points_redeemed": int(order_document.get("points_redeemed", 0) or 0),
        "points_earned": int(order_document.get("points_earned", 0) or 0),
        "total": order_document.get("total", 0),
        "currency": order_document.get("currency", CURRENCY),
        "notes": order_document.get("notes", "") or "",
        "tracking_number": order_document.get("tracking_number", "") or "",
        "estimated_delivery": isoformat(order_document.get("estimated_delivery")),
        "delivered_at": isoformat(order_document.get("delivered_at")),
        "cancelled_at": isoformat(order_document.get("cancelled_at")),
        "cancel_reason": order_document.get("cancel_reason", "") or "",
        "refund_amount": order_document.get("refund_amount"),
        "refunded_at": isoformat(order_document.get("refunded_at")),
        "created_at": isoformat(order_document.get("created_at")),
        "updated_at": isoformat(order_document.get("updated_at")),
    }


def normalize_order_items(raw_items) -> Tuple[List[Dict[str, object]], List[str]]:
    if not isinstance(raw_items, list) or not raw_items:
        return [], ["items must be a non-empty list"]

    lines: List[Dict[str, object]] = []
    errors: List[str] = []
    for index, entry in enumerate(raw_items):
        if not isinstance(entry, dict):
            errors.append(f"items[{index}] must be an object")
            continue
        product_id = (
            normalize_object_id_value(entry.get("product_id"))
            if entry.get("product_id")
            else None
        )
        if not product_id:
            errors.append(f"items[{index}].product_id must be a valid identifier")
            continue
        quantity = safe_int(entry.get("quantity", 1))
        if quantity is None or quantity < 1 or quantity > MAX_CART_QUANTITY:
            errors.append(f"items[{index}].quantity must be between 1 and {MAX_CART_QUANTITY}")
            continue
        selected_size = normalize_text(entry.get("selected_size"))
        selected_color = normalize_text(entry.get("selected_color"))

        for line in lines:
            if (
                line["product_id"] == product_id
                and line["selected_size"] == selected_size
                and line["selected_color"] == selected_color
            ):
                line["quantity"] += quantity
                break
        else:
            lines.append(
                {
                    "product_id": product_id,
                    "quantity": quantity,
                    "selected_size": selected_size,
                    "selected_color": selected_color,
                }
            )
    return lines, errors


def reserve_stock(db, items: List[Dict[str, object]]) -> Optional[Dict[str, object]]:
    """Decrement stock line by line, undoing earlier lines when one fails.

    Returns the failing item or ``None`` when every line was reserved.
    """
    reserved: List[Dict[str, object]] = []
    for item in items:
        update_result = db.products.update_one(
            {"_id": item["product_id"], "stock": {"$gte": item["quantity"]}},
            {"$inc": {"stock": -item["quantity"], "sales": item["quantity"]}},
        )
        if update_result.modified_count == 0:
            restore_stock(db, reserved)
            return item
        reserved.append(item)

    for item in reserved:
        refresh_stock_status(db, item["product_id"])
    return None


def restore_stock(db, items: List[Dict[str, object]]) -> None:
    for item in items:
        db.products.update_one(
            {"_id": item["product_id"]},
            {"$inc": {"stock": item["quantity"], "sales": -item["quantity"]}},
        )
        refresh_stock_status(db, item["product_id"])


def resolve_shipping_address(current_user, payload: Dict):
    if payload.get("shipping_address"):
        address, errors = normalize_address_payload(payload.get("shipping_address"))
        if errors:
            return None, validation_error([f"shipping_address.{error}" for error in errors])
        address.pop("is_default", None)
        return address, None

    if payload.get("address_id"):
        address_id, id_error = parse_object_id(payload.get("address_id"))
        if id_error:
            return None, id_error
        address = find_address(current_user, address_id)
        if not address:
            return None, error_response("ADDRESS_NOT_FOUND", 404)
    elif payload.get("use_default_address"):
        address = get_default_address(current_user)
        if not address:
            return None, error_response("DEFAULT_ADDRESS_NOT_FOUND", 404)
    else:
        return None, validation_error(
            "shipping_address, address_id or use_default_address is required"
        )

    return {
        key: value for key, value in address.items() if key not in ("_id", "is_default")
    }, None


def place_order(db, logger, current_user, lines: List[Dict[str, object]], payload: Dict):
    """Validate, price, reserve stock and store an order for ``current_user``.

    Returns ``(order_document, None)`` or ``(None, error_response)``.
    """
    payment_method = str(payload.get("payment_method") or "").strip().lower()
    errors: List[str] = []
    if payment_method not in PAYMENT_METHODS:
        errors.append(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
    notes = str(payload.get("notes") or "").strip()
    if len(notes) > 500:
        errors.append("notes must be at most 500 characters")
    redeem_points = safe_int(payload.get("redeem_points", 0))
    if redeem_points is None or redeem_points < 0:
        errors.append("redeem_points must be a non-negative integer")
    if errors:
        return None, validation_error(errors)

    shipping_address, address_error = resolve_shipping_address(current_user, payload)
    if address_error:
        return None, address_error
    billing_address = shipping_address
    if payload.get("billing_address"):
        billing_address, billing_errors = normalize_address_payload(
            payload.get("billing_address")
        )
        if billing_errors:
            return None, validation_error(
                [f"billing_address.{error}" for error in billing_errors]
            )
        billing_address.pop("is_default", None)

    products = {
        document["_id"]: document
        for document in db.products.find(
            {"_id": {"$in": [line["product_id"] for line in lines]}}
        )
    }
    items: List[Dict[str, object]] = []
    for line in lines:
        product_document = products.get(line["product_id"])
        if not is_product_available(product_document):
            return None, error_response(
                "PRODUCT_UNAVAILABLE", 404, product_id=str(line["product_id"])
            )
        available_stock = int(product_document.get("stock", 0) or 0)
        if line["quantity"] > available_stock:
            return None, error_response(
                "INSUFFICIENT_STOCK",
                409,
                product_id=str(line["product_id"]),
                available_stock=available_stock,
            )
        items.append(
            {
                "product_id": product_document["_id"],
                "name": product_document.get("name", ""),
                "sku": product_document.get("sku", ""),
                "price": resolve_unit_price(
                    product_document, line["selected_size"], line["selected_color"]
                ),
                "quantity": line["quantity"],
                "selected_size": line["selected_size"],
                "selected_color": line["selected_color"],
                "image": product_document.get("thumbnail")
                or next(iter(product_document.get("images") or []), ""),
            }
        )

    subtotal = sum(safe_float(item["price"], 0.0) * item["quantity"] for item in items)
    totals = calculate_order_totals(subtotal, redeem_points)
    if redeem_points:
        if redeem_points < MINIMUM_REDEMPTION:
            return None, error_response(
                "MINIMUM_REDEMPTION", 400, minimum_redemption=MINIMUM_REDEMPTION
            )
        if redeem_points > int(current_user.get("points", 0) or 0):
            return None, error_response("INSUFFICIENT_POINTS", 400)

    failed_item = reserve_stock(db, items)
    if failed_item:
        logger.warning(
            "Stock reservation failed for product %s", failed_item["product_id"]
        )
        return None, error_response(
            "INSUFFICIENT_STOCK", 409, product_id=str(failed_item["product_id"])
        )

    order_id = ObjectId()
    order_number = generate_order_number()
    if totals["points_redeemed"]:
        redemption = debit_points(
            db,
            current_user["_id"],
            totals["points_redeemed"],
            f"Redeemed {totals['points_redeemed']} points on order {order_number}",
            order_id=order_id,
        )
        if not redemption:
            restore_stock(db, items)
            return None, error_response("INSUFFICIENT_POINTS", 400)

    now = utcnow()
    order_document = {
        "_id": order_id,
        "order_number": order_number,
        "user_id": current_user["_id"],
        "items": items,
        "shipping_address": shipping_address,
        "billing_address": billing_address,
        "payment_method": payment_method,
        "payment_status": "pending",
        "order_status": "pending",
        **totals,
        "points_earned": 0,
        "currency": CURRENCY,
        "notes": notes,
        "tracking_number": "",
        "estimated_delivery": None,
        "delivered_at": None,
        "cancelled_at": None,
        "cancel_reason": "",
        "refund_amount": None,
        "refunded_at": None,
        "created_at": now,
        "updated_at": now,
    }
    db.orders.insert_one(order_document)
    db.users.update_one({"_id": current_user["_id"]}, {"$push": {"orders": order_id}})

    logger.info(
        "Order %s placed by user %s for %s %s",
        order_number,
        current_user["_id"],
        order_document["total"],
        CURRENCY,
    )
    emails.send_order_confirmation_email(order_document, current_user.get("email", ""))
    return order_document, None


def register_order_routes(app, db):
    def fetch_order_for(current_user, query: Dict[str, object]):
        order_document = db.orders.find_one(query)
        if not order_document:
            return None, error_response("ORDER_NOT_FOUND", 404)
        is_admin = normalize_role(current_user.get("role")) == "admin"
        if not is_admin and order_document.get("user_id") != current_user["_id"]:
            return None, error_response("ORDER_NOT_FOUND", 404)
        return order_document, None

    def build_order_query(args, base_query: Dict[str, object]):
        query = dict(base_query)
        status = str(args.get("status", "") or args.get("order_status", "")).strip().lower()
        if status:
            if status not in ORDER_STATUSES:
                return None, validation_error(
                    f"status must be one of {', '.join(ORDER_STATUSES)}"
                )
            query["order_status"] = status
        payment_status = str(args.get("payment_status", "")).strip().lower()
        if payment_status:
            if payment_status not in PAYMENT_STATUSES:
                return None, validation_error(
                    f"payment_status must be one of {', '.join(PAYMENT_STATUSES)}"
                )
            query["payment_status"] = payment_status
        created_filter, date_error = build_date_filter(
            args.get("start_date"), args.get("end_date")
        )
        if date_error:
            return None, date_error
        if created_filter:
            query["created_at"] = created_filter
        return query, None

    def paginated_orders(query, args):
        page, limit, skip = parse_pagination(args)
        total = db.orders.count_documents(query)
        orders = (
            db.orders.find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .skip(skip)
            .limit(limit)
        )
        return {
            "orders": [serialize_order(order) for order in orders],
            "pagination": build_pagination(total, page, limit),
        }

    def cancel_order(order_document, cancel_reason: str, actor: str):
        """Cancel once; stock and redeemed points are returned by the winner."""
        now = utcnow()
        update_result = db.orders.update_one(
            {
                "_id": order_document["_id"],
                "order_status": order_document.get("order_status"),
            },
            {
                "$set": {
                    "order_status": "cancelled",
                    "cancelled_at": now,
                    "cancel_reason": cancel_reason,
                    "updated_at": now,
                }
            },
        )
        if update_result.modified_count == 0:
            return False

        restore_stock(db, order_document.get("items") or [])
        points_redeemed = int(order_document.get("points_redeemed", 0) or 0)
        if points_redeemed:
            refund_redeemed_points(
                db, order_document["user_id"], points_redeemed, order_document["_id"]
            )
        app.logger.info(
            "Order %s cancelled by %s", order_document.get("order_number"), actor
        )
        return True

    @app.route(f"{API_PREFIX}/orders", methods=["POST"])
    @jwt_required()
    def create_order():
        """Place an order from explicit items; prices come from the catalog."""
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error

        payload = request.get_json(silent=True) or {}
        lines, errors = normalize_order_items(payload.get("items"))
        if errors:
            return validation_error(errors)

        order_document, order_error = place_order(
            db, app.logger, current_user, lines, payload
        )
        if order_error:
            return order_error
        return success_response(serialize_order(order_document), "ORDER_CREATED", status=201)

    @app.route(f"{API_PREFIX}/orders/from-cart", methods=["POST"])
    @jwt_required()
    def create_order_from_cart():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error

        cart_items = current_user.get("cart") or []
        if not cart_items:
            return error_response("CART_EMPTY", 400)
        lines = [
            {
                "product_id": item.get("product_id"),
                "quantity": int(item.get("quantity", 1) or 1),
                "selected_size": item.get("selected_size") or "",
                "selected_color": item.get("selected_color") or "",
            }
            for item in cart_items
        ]

        payload = request.get_json(silent=True) or {}
        order_document, order_error = place_order(
            db, app.logger, current_user, lines, payload
        )
        if order_error:
            return order_error

        clear_cart(db, current_user["_id"])
        return success_response(serialize_order(order_document), "ORDER_CREATED", status=201)

    @app.route(f"{API_PREFIX}/orders", methods=["GET"])
    @jwt_required()
    def list_orders():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        query, query_error = build_order_query(
            request.args, {"user_id": current_user["_id"]}
        )
        if query_error:
            return query_error
        return success_response(paginated_orders(query, request.args), "ORDERS_RETRIEVED")

    @app.route(f"{API_PREFIX}/orders/statistics", methods=["GET"])
    @jwt_required()
    def order_statistics():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error

        status_counts = {status: 0 for status in ORDER_STATUSES}
        total_orders = 0
        total_spent = 0
        for order in db.orders.find(
            {"user_id": current_user["_id"]}, {"order_status": 1, "total": 1}
        ):
            total_orders += 1
            status = order.get("order_status")
            if status in status_counts:
                status_counts[status] += 1
            if status not in FINAL_STATUSES:
                total_spent += order.get("total", 0) or 0

        recent_orders = (
            db.orders.find({"user_id": current_user["_id"]})
            .sort([("created_at", -1), ("_id", -1)])
            .limit(5)
        )
        return success_response(
            {
                "total_orders": total_orders,
                "total_spent": total_spent,
                "completed_orders": status_counts["delivered"],
                "pending_orders": status_counts["pending"],
                "cancelled_orders": status_counts["cancelled"],
                "by_status": status_counts,
                "recent_orders": [
                    {
                        "id": str(order["_id"]),
                        "order_number": order.get("order_number"),
                        "total": order.get("total", 0),
                        "order_status": order.get("order_status"),
                        "created_at": isoformat(order.get("created_at")),
                    }
                    for order in recent_orders
                ],
            },
            "ORDER_STATISTICS_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/orders/number/<order_number>", methods=["GET"])
    @jwt_required()
    def get_order_by_number(order_number: str):
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        order_document, load_error = fetch_order_for(
            current_user, {"order_number": str(order_number).strip().upper()}
        )
        if load_error:
            return load_error
        return success_response(serialize_order(order_document), "ORDER_RETRIEVED")

    @app.route(f"{API_PREFIX}/orders/<order_id>", methods=["GET"])
    @jwt_required()
    def get_order(order_id: str):
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        object_id, id_error = parse_object_id(order_id)
        if id_error:
            return id_error
        order_document, load_error = fetch_order_for(current_user, {"_id": object_id})
        if load_error:
            return load_error
        return success_response(serialize_order(order_document), "ORDER_RETRIEVED")

    @app.route(f"{API_PREFIX}/orders/<order_id>/cancel", methods=["PUT"])
    @jwt_required()
    def cancel_order_route(order_id: str):
        """Cancel a pending or confirmed order, restoring stock and points."""
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        object_id, id_error = parse_object_id(order_id)
        if id_error:
            return id_error
        order_document, load_error = fetch_order_for(current_user, {"_id": object_id})
        if load_error:
            return load_error

        if order_document.get("order_status") not in CANCELLABLE_STATUSES:
            return error_response("ORDER_CANNOT_CANCEL", 400)

        payload = request.get_json(silent=True) or {}
        cancel_reason = str(payload.get("cancel_reason") or "").strip()[:500]
        if not cancel_order(order_document, cancel_reason, str(current_user["_id"])):
            return error_response("ORDER_CANNOT_CANCEL", 400)

        refreshed = db.orders.find_one({"_id": object_id})
        return success_response(serialize_order(refreshed), "ORDER_CANCELLED")

    @app.route(f"{API_PREFIX}/orders/admin/all", methods=["GET"])
    @jwt_required()
    def list_all_orders():
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        base_query: Dict[str, object] = {}
        if request.args.get("user_id"):
            user_id, id_error = parse_object_id(request.args.get("user_id"))
            if id_error:
                return id_error
            base_query["user_id"] = user_id
        query, query_error = build_order_query(request.args, base_query)
        if query_error:
            return query_error
        return success_response(paginated_orders(query, request.args), "ORDERS_RETRIEVED")

    @app.route(f"{API_PREFIX}/orders/admin/<order_id>/status", methods=["PUT"])
    @jwt_required()
    def update_order_status(order_id: str):
        """Move an order through fulfilment.

        Delivery awards loyalty points once; cancellation returns stock once;
        a refunded payment stamps ``refunded_at``.
        """
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error
        object_id, id_error = parse_object_id(order_id)
        if id_error:
            return id_error
        order_document = db.orders.find_one({"_id": object_id})
        if not order_document:
            return error_response("ORDER_NOT_FOUND", 404)

        payload = request.get_json(silent=True) or {}
        errors: List[str] = []
        updates: Dict[str, object] = {}

        order_status = str(payload.get("order_status") or "").strip().lower()
        if order_status and order_status not in ORDER_STATUSES:
            errors.append(f"order_status must be one of {', '.join(ORDER_STATUSES)}")
        payment_status = str(payload.get("payment_status") or "").strip().lower()
        if payment_status and payment_status not in PAYMENT_STATUSES:
            errors.append(f"payment_status must be one of {', '.join(PAYMENT_STATUSES)}")
        if "tracking_number" in payload:
            updates["tracking_number"] = str(payload.get("tracking_number") or "").strip()
        if payload.get("estimated_delivery"):
            estimated_delivery = parse_iso_date(payload.get("estimated_delivery"))
            if not estimated_delivery:
                errors.append("estimated_delivery must be an ISO date")
            else:
                updates["estimated_delivery"] = estimated_delivery
        refund_amount = None
        if payload.get("refund_amount") is not None:
            refund_amount = safe_float(payload.get("refund_amount"), None)
            if refund_amount is None or refund_amount < 0:
                errors.append("refund_amount must be a non-negative number")
            elif refund_amount > safe_float(order_document.get("total"), 0.0):
                errors.append("refund_amount must not exceed the order total")
        if not (order_status or payment_status or updates or refund_amount is not None):
            errors.append("nothing to update")
        if errors:
            return validation_error(errors)

        current_status = order_document.get("order_status")
        if (
            order_status
            and order_status != current_status
            and current_status in FINAL_STATUSES
        ):
            return validation_error(f"order is already {current_status}")

        now = utcnow()
        if order_status == "cancelled" and current_status != "cancelled":
            cancel_reason = str(payload.get("cancel_reason") or "").strip()[:500]
            if not cancel_order(order_document, cancel_reason, f"admin {admin_user['_id']}"):
                return error_response("ORDER_CANNOT_CANCEL", 400)
        elif order_status:
            updates["order_status"] = order_status
            if order_status == "delivered" and not order_document.get("delivered_at"):
                updates["delivered_at"] = now

        if payment_status:
            updates["payment_status"] = payment_status
            if payment_status == "refunded":
                updates["refunded_at"] = now
                updates["refund_amount"] = (
                    refund_amount
                    if refund_amount is not None
                    else order_document.get("total", 0)
                )
        if refund_amount is not None:
            updates["refund_amount"] = refund_amount

        if updates:
            updates["updated_at"] = now
            db.orders.update_one({"_id": object_id}, {"$set": updates})

        if order_status == "delivered" and not order_document.get("points_earned"):
            awarded = db.orders.update_one(
                {"_id": object_id, "points_earned": {"$in": [0, None]}},
                {"$set": {"points_earned": -1}},
            )
            if awarded.modified_count:
                try:
                    transaction = earn_points_from_order(
                        db, order_document["user_id"], order_document.get("total", 0), object_id
                    )
                except Exception:
                    db.orders.update_one(
                        {"_id": object_id, "points_earned": -1},
                        {"$set": {"points_earned": 0}},
                    )
                    app.logger.exception(
                        "Awarding points for order %s failed", order_document.get("order_number")
                    )
                    raise
                db.orders.update_one(
                    {"_id": object_id},
                    {"$set": {"points_earned": transaction["points"] if transaction else 0}},
                )

        app.logger.info(
            "Order %s updated by admin %s: %s",
            order_document.get("order_number"),
            admin_user["_id"],
            ", ".join(sorted(key for key in updates if key != "updated_at")) or "cancelled",
        )
        refreshed = db.orders.find_one({"_id": object_id})
        return success_response(serialize_order(refreshed), "ORDER_STATUS_UPDATED")
