from typing import Dict, List

from flask import request
from flask_jwt_extended import jwt_required

from .cart import add_item_to_cart, build_cart_view, validate_quantity
from .helpers import (
    API_PREFIX,
    build_pagination,
    normalize_object_id_list,
    normalize_text,
    parse_object_id,
    parse_pagination,
    utcnow,
)
from .products import is_product_available, serialize_product
from .responses import (
    error_response,
    resolve_message,
    success_response,
    validation_error,
)
from .security import require_role


def load_wishlist_products(db, product_ids) -> List[Dict[str, object]]:
    """Serialize wishlist products in wishlist order, skipping deleted ones."""
    products = {
        document["_id"]: document
        for document in db.products.find({"_id": {"$in": list(product_ids)}})
    }
    items = []
    for product_id in product_ids:
        product_document = products.get(product_id)
        if not product_document:
            continue
        serialized = serialize_product(product_document, include_reviews=False)
        serialized["is_available"] = is_product_available(product_document)
        items.append(serialized)
    return items


def register_wishlist_routes(app, db):
    def pull_from_wishlist(user_id, product_id):
        db.users.update_one(
            {"_id": user_id},
            {"$pull": {"wishlist": product_id}, "$set": {"updated_at": utcnow()}},
        )

    def push_to_wishlist(user_id, product_id):
        db.users.update_one(
            {"_id": user_id},
            {"$addToSet": {"wishlist": product_id}, "$set": {"updated_at": utcnow()}},
        )

    @app.route(f"{API_PREFIX}/wishlist", methods=["GET"])
    @jwt_required()
    def get_wishlist():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        items = load_wishlist_products(db, current_user.get("wishlist") or [])
        return success_response(
            {"items": items, "count": len(items)}, "WISHLIST_RETRIEVED"
        )

    @app.route(f"{API_PREFIX}/wishlist/paginated", methods=["GET"])
    @jwt_required()
    def get_wishlist_paginated():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        wishlist = list(current_user.get("wishlist") or [])
        page, limit, skip = parse_pagination(request.args)
        items = load_wishlist_products(db, wishlist[skip : skip + limit])
        return success_response(
            {"items": items, "pagination": build_pagination(len(wishlist), page, limit)},
            "WISHLIST_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/wishlist/count", methods=["GET"])
    @jwt_required()
    def get_wishlist_count():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        return success_response(
            {"count": len(current_user.get("wishlist") or [])}, "WISHLIST_RETRIEVED"
        )

    @app.route(f"{API_PREFIX}/wishlist/check/<product_id>", methods=["GET"])
    @jwt_required()
    def check_wishlist(product_id: str):
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        object_id, id_error = parse_object_id(product_id)
        if id_error:
            return id_error
        return success_response(
            {
                "product_id": str(object_id),
                "in_wishlist": object_id in (current_user.get("wishlist") or []),
            },
            "WISHLIST_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/wishlist", methods=["POST"])
    @jwt_required()
    def add_to_wishlist():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        payload = request.get_json(silent=True) or {}
        object_id, id_error = parse_object_id(payload.get("product_id"))
        if id_error:
            return id_error

        if object_id in (current_user.get("wishlist") or []):
            return error_response("WISHLIST_EXISTS", 409)
        if not is_product_available(db.products.find_one({"_id": object_id})):
            return error_response("PRODUCT_UNAVAILABLE", 404)

        push_to_wishlist(current_user["_id"], object_id)
        return success_response(
            {"product_id": str(object_id), "in_wishlist": True},
            "WISHLIST_ADDED",
            status=201,
        )

    @app.route(f"{API_PREFIX}/wishlist/toggle/<product_id>", methods=["POST"])
    @jwt_required()
    def toggle_wishlist(product_id: str):
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        object_id, id_error = parse_object_id(product_id)
        if id_error:
            return id_error

        if object_id in (current_user.get("wishlist") or []):
            pull_from_wishlist(current_user["_id"], object_id)
            return success_response(
                {"product_id": str(object_id), "in_wishlist": False, "action": "removed"},
                "WISHLIST_REMOVED",
            )

        if not is_product_available(db.products.find_one({"_id": object_id})):
            return error_response("PRODUCT_UNAVAILABLE", 404)
        push_to_wishlist(current_user["_id"], object_id)
        return success_response(
            {"product_id": str(object_id), "in_wishlist": True, "action": "added"},
            "WISHLIST_ADDED",
        )

    @app.route(f"{API_PREFIX}/wishlist/<product_id>", methods=["DELETE"])
    @jwt_required()
    def remove_from_wishlist(product_id: str):
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        object_id, id_error = parse_object_id(product_id)
        if id_error:
            return id_error
        if object_id not in (current_user.get("wishlist") or []):
            return error_response("WISHLIST_ITEM_NOT_FOUND", 404)

        pull_from_wishlist(current_user["_id"], object_id)
        return success_response({"product_id": str(object_id)}, "WISHLIST_REMOVED")

    @app.route(f"{API_PREFIX}/wishlist", methods=["DELETE"])
    @jwt_required()
    def clear_wishlist():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        db.users.update_one(
            {"_id": current_user["_id"]},
            {"$set": {"wishlist": [], "updated_at": utcnow()}},
        )
        return success_response({"count": 0}, "WISHLIST_CLEARED")

    @app.route(f"{API_PREFIX}/wishlist/<product_id>/move-to-cart", methods=["POST"])
    @jwt_required()
    def move_wishlist_item_to_cart(product_id: str):
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        object_id, id_error = parse_object_id(product_id)
        if id_error:
            return id_error
        if object_id not in (current_user.get("wishlist") or []):
            return error_response("WISHLIST_ITEM_NOT_FOUND", 404)

        payload = request.get_json(silent=True) or {}
        quantity, quantity_error = validate_quantity(payload.get("quantity", 1))
        if quantity_error:
            return quantity_error

        _, add_error = add_item_to_cart(
            db,
            current_user,
            object_id,
            quantity,
            normalize_text(payload.get("selected_size")),
            normalize_text(payload.get("selected_color")),
        )
        if add_error:
            return add_error

        pull_from_wishlist(current_user["_id"], object_id)
        return success_response(
            build_cart_view(db, current_user["cart"]), "WISHLIST_MOVED_TO_CART"
        )

    @app.route(f"{API_PREFIX}/wishlist/move-to-cart", methods=["POST"])
    @jwt_required()
    def move_wishlist_items_to_cart():
        """Move several products at once, reporting each success and failure."""
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error

        payload = request.get_json(silent=True) or {}
        raw_ids = payload.get("product_ids")
        if not isinstance(raw_ids, list) or not raw_ids:
            return validation_error("product_ids must be a non-empty list")
        product_ids = normalize_object_id_list(raw_ids)
        if len(product_ids) != len({str(value) for value in raw_ids}):
            return error_response("INVALID_ID", 400)

        wishlist = current_user.get("wishlist") or []
        moved: List[str] = []
        failed: List[Dict[str, str]] = []
        for product_id in product_ids:
            if product_id not in wishlist:
                failed.append(
                    {
                        "product_id": str(product_id),
                        "reason": resolve_message("WISHLIST_ITEM_NOT_FOUND")["en"],
                    }
                )
                continue
            _, add_error = add_item_to_cart(db, current_user, product_id, 1)
            if add_error:
                error_body = add_error[0].get_json() or {}
                failed.append(
                    {
                        "product_id": str(product_id),
                        "reason": error_body.get("message", ""),
                    }
                )
                continue
            pull_from_wishlist(current_user["_id"], product_id)
            moved.append(str(product_id))

        return success_response(
            {"moved": moved, "failed": failed}, "WISHLIST_MOVED_TO_CART"
        )
