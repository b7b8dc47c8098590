from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from flask import request
from flask_jwt_extended import jwt_required

from .helpers import (
    API_PREFIX,
    isoformat,
    normalize_object_id_list,
    normalize_object_id_value,
    normalize_text,
    parse_object_id,
    safe_float,
    safe_int,
    utcnow,
)
from .products import is_product_available
from .responses import error_response, success_response, validation_error
from .security import require_role

MIN_CART_QUANTITY = 1
MAX_CART_QUANTITY = 99
CURRENCY = "VND"


def resolve_unit_price(product_document, selected_size: str, selected_color: str) -> float:
    for variant in product_document.get("variants") or []:
        if variant.get("price") is None:
            continue
        if (variant.get("size") or "") == selected_size and (
            variant.get("color") or ""
        ) == selected_color:
            return safe_float(variant.get("price"), 0.0)
    return safe_float(product_document.get("price"), 0.0)


def validate_quantity(value) -> Tuple[Optional[int], Optional[tuple]]:
    quantity = safe_int(value)
    if quantity is None or quantity < MIN_CART_QUANTITY or quantity > MAX_CART_QUANTITY:
        return None, validation_error(
            f"quantity must be between {MIN_CART_QUANTITY} and {MAX_CART_QUANTITY}"
        )
    return quantity, None


def add_item_to_cart(
    db,
    user_document,
    product_id: ObjectId,
    quantity: int,
    selected_size: str = "",
    selected_color: str = "",
) -> Tuple[Optional[Dict], Optional[tuple]]:
    """Add a line to the user's cart, merging with an identical line.

    Returns ``(line, None)`` or ``(None, error_response)``.
    """
    product_document = db.products.find_one({"_id": product_id})
    if not is_product_available(product_document):
        return None, error_response("PRODUCT_UNAVAILABLE", 404)

    cart_items = list(user_document.get("cart") or [])
    line = None
    for item in cart_items:
        if (
            item.get("product_id") == product_id
            and (item.get("selected_size") or "") == selected_size
            and (item.get("selected_color") or "") == selected_color
        ):
            line = item
            break

    new_quantity = quantity + (int(line.get("quantity", 0)) if line else 0)
    if new_quantity > MAX_CART_QUANTITY:
        return None, validation_error(
            f"quantity must be between {MIN_CART_QUANTITY} and {MAX_CART_QUANTITY}"
        )
    available_stock = int(product_document.get("stock", 0) or 0)
    if new_quantity > available_stock:
        return None, error_response(
            "INSUFFICIENT_STOCK", 400, available_stock=available_stock
        )

    if line:
        line["quantity"] = new_quantity
    else:
        line = {
            "_id": ObjectId(),
            "product_id": product_id,
            "quantity": new_quantity,
            "selected_size": selected_size,
            "selected_color": selected_color,
            "added_at": utcnow(),
        }
        cart_items.append(line)

    db.users.update_one(
        {"_id": user_document["_id"]},
        {"$set": {"cart": cart_items, "updated_at": utcnow()}},
    )
    user_document["cart"] = cart_items
    return line, None


def build_cart_view(db, cart_items: List[Dict]) -> Dict[str, object]:
    product_ids = normalize_object_id_list(
        [item.get("product_id") for item in cart_items]
    )
    products = {
        document["_id"]: document
        for document in db.products.find({"_id": {"$in": product_ids}})
    }

    items = []
    total_amount = 0.0
    total_items = 0
    for item in cart_items:
        product_document = products.get(item.get("product_id"))
        if not is_product_available(product_document):
            continue
        quantity = int(item.get("quantity", 0) or 0)
        unit_price = resolve_unit_price(
            product_document, item.get("selected_size") or "", item.get("selected_color") or ""
        )
        subtotal = unit_price * quantity
        total_amount += subtotal
        total_items += quantity
        items.append(
            {
                "id": str(item.get("_id")),
                "product": {
                    "id": str(product_document["_id"]),
                    "name": product_document.get("name", ""),
                    "sku": product_document.get("sku", ""),
                    "price": unit_price,
                    "thumbnail": product_document.get("thumbnail", ""),
                    "stock": int(product_document.get("stock", 0) or 0),
                    "status": product_document.get("status"),
                },
                "quantity": quantity,
                "selected_size": item.get("selected_size") or "",
                "selected_color": item.get("selected_color") or "",
                "subtotal": subtotal,
                "added_at": isoformat(item.get("added_at")),
            }
        )

    return {
        "items": items,
        "total_amount": total_amount,
        "total_items": total_items,
        "currency": CURRENCY,
    }


def clear_cart(db, user_id) -> None:
    db.users.update_one(
        {"_id": user_id}, {"$set": {"cart": [], "updated_at": utcnow()}}
    )


def register_cart_routes(app, db):
    def load_line(current_user, item_id: str):
        object_id, id_error = parse_object_id(item_id)
        if id_error:
            return None, None, id_error
        cart_items = list(current_user.get("cart") or [])
        for item in cart_items:
            if item.get("_id") == object_id:
                return cart_items, item, None
        return None, None, error_response("CART_ITEM_NOT_FOUND", 404)

    @app.route(f"{API_PREFIX}/cart", methods=["GET"])
    @jwt_required()
    def get_cart():
        """Cart lines with product snapshot; unavailable products are skipped."""
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        return success_response(
            build_cart_view(db, current_user.get("cart") or []), "CART_RETRIEVED"
        )

    @app.route(f"{API_PREFIX}/cart/count", methods=["GET"])
    @jwt_required()
    def get_cart_count():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        cart_items = current_user.get("cart") or []
        return success_response(
            {
                "count": sum(int(item.get("quantity", 0) or 0) for item in cart_items),
                "lines": len(cart_items),
            },
            "CART_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/cart", methods=["POST"])
    @jwt_required()
    def add_to_cart():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error

        payload = request.get_json(silent=True) or {}
        product_id = (
            normalize_object_id_value(payload.get("product_id"))
            if payload.get("product_id")
            else None
        )
        if not product_id:
            return validation_error("product_id must be a valid identifier")
        quantity, quantity_error = validate_quantity(payload.get("quantity", 1))
        if quantity_error:
            return quantity_error

        _, add_error = add_item_to_cart(
            db,
            current_user,
            product_id,
            quantity,
            normalize_text(payload.get("selected_size")),
            normalize_text(payload.get("selected_color")),
        )
        if add_error:
            return add_error

        return success_response(
            build_cart_view(db, current_user["cart"]), "CART_ITEM_ADDED", status=201
        )

    @app.route(f"{API_PREFIX}/cart/<item_id>", methods=["PUT"])
    @jwt_required()
    def update_cart_item(item_id: str):
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        cart_items, line, load_error = load_line(current_user, item_id)
        if load_error:
            return load_error

        payload = request.get_json(silent=True) or {}
        quantity, quantity_error = validate_quantity(payload.get("quantity"))
        if quantity_error:
            return quantity_error

        product_document = db.products.find_one({"_id": line.get("product_id")})
        if not is_product_available(product_document):
            return error_response("PRODUCT_UNAVAILABLE", 404)
        available_stock = int(product_document.get("stock", 0) or 0)
        if quantity > available_stock:
            return error_response(
                "INSUFFICIENT_STOCK", 400, available_stock=available_stock
            )

        line["quantity"] = quantity
        db.users.update_one(
            {"_id": current_user["_id"]},
            {"$set": {"cart": cart_items, "updated_at": utcnow()}},
        )
        return success_response(build_cart_view(db, cart_items), "CART_ITEM_UPDATED")

    @app.route(f"{API_PREFIX}/cart/<item_id>", methods=["DELETE"])
    @jwt_required()
    def remove_cart_item(item_id: str):
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        cart_items, line, load_error = load_line(current_user, item_id)
        if load_error:
            return load_error

        remaining = [item for item in cart_items if item is not line]
        db.users.update_one(
            {"_id": current_user["_id"]},
            {"$set": {"cart": remaining, "updated_at": utcnow()}},
        )
        return success_response(build_cart_view(db, remaining), "CART_ITEM_REMOVED")

    @app.route(f"{API_PREFIX}/cart", methods=["DELETE"])
    @jwt_required()
    def clear_cart_route():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        clear_cart(db, current_user["_id"])
        return success_response(build_cart_view(db, []), "CART_CLEARED")
