import re
import secrets
import time
import unicodedata
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from flask import request
from flask_jwt_extended import jwt_required, verify_jwt_in_request
from pymongo.errors import DuplicateKeyError

from .categories import adjust_product_count, get_descendant_ids
from .helpers import (
    API_PREFIX,
    build_pagination,
    isoformat,
    normalize_object_id_value,
    normalize_text,
    parse_bool,
    parse_object_id,
    parse_pagination,
    safe_float,
    safe_int,
    stringify_id,
    utcnow,
)
from .responses import error_response, success_response, validation_error
from .security import load_current_user, normalize_role, require_admin_user, require_role

PRODUCT_STATUSES = {"draft", "active", "inactive", "out_of_stock"}
SORT_FIELDS = {
    "name": "name",
    "price": "price",
    "rating": "ratings.average",
    "sales": "sales",
    "created_at": "created_at",
    "views": "views",
}
DEFAULT_MIN_STOCK = 10
sku_regex = re.compile(r"^[A-Z0-9-]+$")

PRODUCT_TEXT_LIMITS = {
    "name": 200,
    "description": 2000,
    "short_description": 500,
    "brand": 100,
}


def generate_sku(name: str) -> str:
    ascii_name = (
        unicodedata.normalize("NFKD", str(name or ""))
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    prefix = re.sub(r"[^A-Za-z0-9]", "", ascii_name)[:3].upper() or "PRD"
    return f"{prefix}{str(int(time.time() * 1000))[-6:]}"


def derive_stock_status(
    current_status: str, stock: int, variants: List[Dict]
) -> str:
    variant_in_stock = any(int(variant.get("stock", 0) or 0) > 0 for variant in variants or [])
    if stock == 0 and not variant_in_stock:
        return "out_of_stock"
    if current_status == "out_of_stock" and (stock > 0 or variant_in_stock):
        return "active"
    return current_status


def refresh_stock_status(db, product_id) -> None:
    product_document = db.products.find_one(
        {"_id": product_id}, {"status": 1, "stock": 1, "variants": 1}
    )
    if not product_document:
        return
    current_status = product_document.get("status", "draft")
    status = derive_stock_status(
        current_status,
        int(product_document.get("stock", 0) or 0),
        product_document.get("variants") or [],
    )
    if status != current_status:
        db.products.update_one({"_id": product_id}, {"$set": {"status": status}})


def is_product_available(product_document) -> bool:
    return bool(
        product_document
        and product_document.get("is_active", True) is not False
        and product_document.get("status") == "active"
    )


def calculate_ratings(reviews: List[Dict]) -> Dict[str, object]:
    if not reviews:
        return {"average": 0, "count": 0}
    total = sum(int(review.get("rating", 0) or 0) for review in reviews)
    return {"average": round(total / len(reviews), 1), "count": len(reviews)}


def serialize_review(review) -> Dict[str, object]:
    return {
        "user": stringify_id(review.get("user")),
        "user_name": review.get("user_name", "") or "",
        "rating": int(review.get("rating", 0) or 0),
        "comment": review.get("comment", "") or "",
        "is_verified": bool(review.get("is_verified")),
        "created_at": isoformat(review.get("created_at")),
    }


def serialize_product(product_document, include_reviews: bool = True) -> Dict[str, object]:
    if not product_document:
        return {}

    ratings = product_document.get("ratings") or {}
    stock = int(product_document.get("stock", 0) or 0)
    min_stock = int(product_document.get("min_stock", DEFAULT_MIN_STOCK) or 0)
    serialized = {
        "id": str(product_document.get("_id")),
        "name": product_document.get("name", "") or "",
        "description": product_document.get("description", "") or "",
        "short_description": product_document.get("short_description", "") or "",
        "price": product_document.get("price", 0),
        "original_price": product_document.get("original_price"),
        "category": stringify_id(product_document.get("category")),
        "subcategory": stringify_id(product_document.get("subcategory")),
        "brand": product_document.get("brand", "") or "",
        "sku": product_document.get("sku", "") or "",
        "images": list(product_document.get("images") or []),
        "thumbnail": product_document.get("thumbnail", "") or "",
        "variants": list(product_document.get("variants") or []),
        "tags": list(product_document.get("tags") or []),
        "specifications": dict(product_document.get("specifications") or {}),
        "weight": product_document.get("weight"),
        "dimensions": product_document.get("dimensions"),
        "stock": stock,
        "min_stock": min_stock,
        "is_low_stock": stock <= min_stock,
        "is_active": product_document.get("is_active", True) is not False,
        "is_featured": bool(product_document.get("is_featured")),
        "is_digital": bool(product_document.get("is_digital")),
        "status": product_document.get("status", "draft"),
        "ratings": {
            "average": ratings.get("average", 0) or 0,
            "count": int(ratings.get("count", 0) or 0),
        },
        "sales": int(product_document.get("sales", 0) or 0),
        "views": int(product_document.get("views", 0) or 0),
        "created_at": isoformat(product_document.get("created_at")),
        "updated_at": isoformat(product_document.get("updated_at")),
    }
    if include_reviews:
        serialized["reviews"] = [
            serialize_review(review) for review in product_document.get("reviews") or []
        ]
    return serialized


def _normalize_variants(raw_variants, errors: List[str]) -> List[Dict[str, object]]:
    if not isinstance(raw_variants, list):
        errors.append("variants must be a list")
        return []
    variants: List[Dict[str, object]] = []
    for index, entry in enumerate(raw_variants):
        if not isinstance(entry, dict):
            errors.append(f"variants[{index}] must be an object")
            continue
        stock = safe_int(entry.get("stock", 0))
        if stock is None or stock < 0:
            errors.append(f"variants[{index}].stock must be a non-negative integer")
            continue
        variant: Dict[str, object] = {
            "size": normalize_text(entry.get("size")),
            "color": normalize_text(entry.get("color")),
            "stock": stock,
        }
        if entry.get("price") is not None:
            price = safe_float(entry.get("price"), None)
            if price is None or price <= 0:
                errors.append(f"variants[{index}].price must be greater than 0")
                continue
            variant["price"] = price
        if entry.get("sku"):
            variant["sku"] = str(entry.get("sku")).strip().upper()
        variants.append(variant)
    return variants


def normalize_product_payload(
    payload: Dict, partial: bool = False
) -> Tuple[Dict[str, object], List[str]]:
    """Validate a product body; ``partial`` only checks the keys present."""
    fields: Dict[str, object] = {}
    errors: List[str] = []

    def wants(key: str) -> bool:
        return key in payload or not partial

    for key, limit in PRODUCT_TEXT_LIMITS.items():
        required = key in ("name", "description")
        if key not in payload and (partial or not required):
            continue
        value = str(payload.get(key) or "").strip()
        if required and not value:
            errors.append(f"{key} is required")
        elif len(value) > limit:
            errors.append(f"{key} must be at most {limit} characters")
        else:
            fields[key] = normalize_text(value) if key == "name" else value

    if wants("price"):
        price = safe_float(payload.get("price"), None)
        if price is None or price <= 0:
            errors.append("price must be greater than 0")
        else:
            fields["price"] = price

    if payload.get("original_price") is not None:
        original_price = safe_float(payload.get("original_price"), None)
        if original_price is None or original_price < 0:
            errors.append("original_price must be a non-negative number")
        else:
            fields["original_price"] = original_price

    if wants("category"):
        category_id = (
            normalize_object_id_value(payload.get("category"))
            if payload.get("category")
            else None
        )
        if not category_id:
            errors.append("category must be a valid identifier")
        else:
            fields["category"] = category_id

    if "subcategory" in payload:
        if payload.get("subcategory"):
            subcategory_id = normalize_object_id_value(payload.get("subcategory"))
            if not subcategory_id:
                errors.append("subcategory must be a valid identifier")
            else:
                fields["subcategory"] = subcategory_id
        else:
            fields["subcategory"] = None

    if payload.get("sku"):
        sku = str(payload.get("sku")).strip().upper()
        if not sku_regex.match(sku):
            errors.append("sku may only contain letters, digits and hyphens")
        else:
            fields["sku"] = sku

    if wants("images"):
        images = payload.get("images")
        if not isinstance(images, list) or not [
            image for image in images if str(image or "").strip()
        ]:
            errors.append("images must contain at least one image")
        else:
            fields["images"] = [
                str(image).strip() for image in images if str(image or "").strip()
            ]

    if payload.get("thumbnail"):
        fields["thumbnail"] = str(payload.get("thumbnail")).strip()

    if "variants" in payload:
        fields["variants"] = _normalize_variants(payload.get("variants") or [], errors)

    if "tags" in payload:
        tags = payload.get("tags") or []
        if isinstance(tags, str):
            tags = tags.split(",")
        if not isinstance(tags, list):
            errors.append("tags must be a list")
        else:
            fields["tags"] = sorted(
                {normalize_text(tag).lower() for tag in tags if normalize_text(tag)}
            )

    if "specifications" in payload:
        specifications = payload.get("specifications") or {}
        if not isinstance(specifications, dict):
            errors.append("specifications must be an object")
        else:
            fields["specifications"] = {
                str(key).strip(): str(value).strip()
                for key, value in specifications.items()
                if str(key).strip()
            }

    if payload.get("weight") is not None:
        weight = safe_float(payload.get("weight"), None)
        if weight is None or weight < 0:
            errors.append("weight must be a non-negative number")
        else:
            fields["weight"] = weight

    if "dimensions" in payload:
        dimensions = payload.get("dimensions")
        if dimensions is None:
            fields["dimensions"] = None
        elif not isinstance(dimensions, dict):
            errors.append("dimensions must be an object")
        else:
            normalized_dimensions = {}
            for key in ("length", "width", "height"):
                value = safe_float(dimensions.get(key, 0), None)
                if value is None or value < 0:
                    errors.append(f"dimensions.{key} must be a non-negative number")
                else:
                    normalized_dimensions[key] = value
            fields["dimensions"] = normalized_dimensions

    for key, default in (("stock", 0), ("min_stock", DEFAULT_MIN_STOCK)):
        if key in payload:
            value = safe_int(payload.get(key))
            if value is None or value < 0:
                errors.append(f"{key} must be a non-negative integer")
            else:
                fields[key] = value
        elif not partial:
            fields[key] = default

    for key, default in (("is_active", True), ("is_featured", False), ("is_digital", False)):
        if key in payload:
            value = parse_bool(payload.get(key))
            if value is None:
                errors.append(f"{key} must be a boolean")
            else:
                fields[key] = value
        elif not partial:
            fields[key] = default

    if "status" in payload:
        status = str(payload.get("status") or "").strip().lower()
        if status not in PRODUCT_STATUSES:
            errors.append(f"status must be one of {', '.join(sorted(PRODUCT_STATUSES))}")
        else:
            fields["status"] = status
    elif not partial:
        fields["status"] = "draft"

    return fields, errors


def register_product_routes(app, db):
    def current_user_is_admin() -> bool:
        verify_jwt_in_request(optional=True)
        current_user = load_current_user(db)
        return bool(current_user) and normalize_role(current_user.get("role")) == "admin"

    def fetch_product(product_id: str):
        object_id, id_error = parse_object_id(product_id)
        if id_error:
            return None, id_error
        product_document = db.products.find_one({"_id": object_id})
        if not product_document:
            return None, error_response("PRODUCT_NOT_FOUND", 404)
        return product_document, None

    def category_filter(category_id: ObjectId) -> Dict[str, object]:
        category_ids = [category_id] + get_descendant_ids(db, category_id)
        return {
            "$or": [
                {"category": {"$in": category_ids}},
                {"subcategory": {"$in": category_ids}},
            ]
        }

    def search_filter(search_term: str) -> Dict[str, object]:
        pattern = re.escape(search_term)
        return {
            "$or": [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
                {"brand": {"$regex": pattern, "$options": "i"}},
                {"tags": search_term.lower()},
            ]
        }

    def build_listing_query(args, is_admin: bool):
        clauses: List[Dict[str, object]] = []

        status = str(args.get("status", "")).strip().lower()
        if is_admin and status:
            if status not in PRODUCT_STATUSES:
                return None, validation_error(
                    f"status must be one of {', '.join(sorted(PRODUCT_STATUSES))}"
                )
            clauses.append({"status": status})
        elif not (is_admin and parse_bool(args.get("include_inactive"), False)):
            clauses.append({"is_active": True, "status": "active"})

        if args.get("category"):
            category_id = normalize_object_id_value(args.get("category"))
            if not category_id:
                return None, error_response("INVALID_ID", 400)
            clauses.append(category_filter(category_id))

        brand = normalize_text(args.get("brand"))
        if brand:
            clauses.append({"brand": {"$regex": f"^{re.escape(brand)}$", "$options": "i"}})

        price_filter: Dict[str, float] = {}
        if args.get("min_price") not in (None, ""):
            min_price = safe_float(args.get("min_price"), None)
            if min_price is None or min_price < 0:
                return None, validation_error("min_price must be a non-negative number")
            price_filter["$gte"] = min_price
        if args.get("max_price") not in (None, ""):
            max_price = safe_float(args.get("max_price"), None)
            if max_price is None or max_price < 0:
                return None, validation_error("max_price must be a non-negative number")
            price_filter["$lte"] = max_price
        if (
            "$gte" in price_filter
            and "$lte" in price_filter
            and price_filter["$gte"] > price_filter["$lte"]
        ):
            return None, validation_error("min_price must not exceed max_price")
        if price_filter:
            clauses.append({"price": price_filter})

        tags = [
            normalize_text(tag).lower()
            for tag in str(args.get("tags", "")).split(",")
            if normalize_text(tag)
        ]
        if tags:
            clauses.append({"tags": {"$in": tags}})

        if args.get("rating") not in (None, ""):
            rating = safe_float(args.get("rating"), None)
            if rating is None or rating < 0 or rating > 5:
                return None, validation_error("rating must be between 0 and 5")
            clauses.append({"ratings.average": {"$gte": rating}})

        is_featured = parse_bool(args.get("is_featured"))
        if is_featured is not None:
            clauses.append({"is_featured": is_featured})

        search_term = normalize_text(args.get("search"))
        if search_term:
            clauses.append(search_filter(search_term))

        if not clauses:
            return {}, None
        if len(clauses) == 1:
            return clauses[0], None
        return {"$and": clauses}, None

    def build_sort(args):
        sort_by = SORT_FIELDS.get(str(args.get("sort_by", "created_at")).strip(), "created_at")
        sort_order = str(args.get("sort_order", "desc")).strip().lower()
        direction = 1 if sort_order == "asc" else -1
        return [(sort_by, direction), ("_id", direction)]

    def paginated_products(query, args):
        page, limit, skip = parse_pagination(args)
        total = db.products.count_documents(query)
        products = (
            db.products.find(query).sort(build_sort(args)).skip(skip).limit(limit)
        )
        return {
            "products": [
                serialize_product(product, include_reviews=False) for product in products
            ],
            "pagination": build_pagination(total, page, limit),
        }

    @app.route(f"{API_PREFIX}/products", methods=["GET"])
    def list_products():
        """Filterable, sortable and paginated product listing."""
        query, query_error = build_listing_query(request.args, current_user_is_admin())
        if query_error:
            return query_error
        return success_response(
            paginated_products(query, request.args), "PRODUCTS_RETRIEVED"
        )

    @app.route(f"{API_PREFIX}/products/featured", methods=["GET"])
    def list_featured_products():
        limit = safe_int(request.args.get("limit", 10))
        if limit is None or limit < 1:
            limit = 10
        limit = min(limit, 50)
        products = (
            db.products.find({"is_featured": True, "is_active": True, "status": "active"})
            .sort([("sales", -1), ("created_at", -1)])
            .limit(limit)
        )
        return success_response(
            [serialize_product(product, include_reviews=False) for product in products],
            "PRODUCTS_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/products/search", methods=["GET"])
    def search_products():
        search_term = normalize_text(request.args.get("q"))
        if not search_term:
            return error_response("SEARCH_QUERY_REQUIRED", 400)
        query = {
            "$and": [
                {"is_active": True, "status": "active"},
                search_filter(search_term),
            ]
        }
        return success_response(
            paginated_products(query, request.args), "PRODUCTS_RETRIEVED"
        )

    @app.route(f"{API_PREFIX}/products/category/<category_id>", methods=["GET"])
    def list_products_by_category(category_id: str):
        object_id, id_error = parse_object_id(category_id)
        if id_error:
            return id_error
        if not db.categories.find_one({"_id": object_id}, {"_id": 1}):
            return error_response("CATEGORY_NOT_FOUND", 404)
        query = {
            "$and": [
                {"is_active": True, "status": "active"},
                category_filter(object_id),
            ]
        }
        return success_response(
            paginated_products(query, request.args), "PRODUCTS_RETRIEVED"
        )

    @app.route(f"{API_PREFIX}/products/sku/<sku>", methods=["GET"])
    def get_product_by_sku(sku: str):
        normalized_sku = str(sku or "").strip().upper()
        if not normalized_sku:
            return validation_error("sku is required")
        product_document = db.products.find_one({"sku": normalized_sku})
        if not product_document or (
            not is_product_available(product_document) and not current_user_is_admin()
        ):
            return error_response("PRODUCT_NOT_FOUND", 404)
        return success_response(serialize_product(product_document), "PRODUCT_RETRIEVED")

    @app.route(f"{API_PREFIX}/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error
        if not is_product_available(product_document) and not current_user_is_admin():
            return error_response("PRODUCT_NOT_FOUND", 404)

        db.products.update_one({"_id": product_document["_id"]}, {"$inc": {"views": 1}})
        product_document["views"] = int(product_document.get("views", 0) or 0) + 1
        return success_response(serialize_product(product_document), "PRODUCT_RETRIEVED")

    @app.route(f"{API_PREFIX}/products/<product_id>/reviews", methods=["POST"])
    @jwt_required()
    def add_product_review(product_id: str):
        """One review per user; verified when a delivered order contains the product."""
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error
        if not is_product_available(product_document):
            return error_response("PRODUCT_UNAVAILABLE", 404)

        payload = request.get_json(silent=True) or {}
        errors: List[str] = []
        rating = safe_int(payload.get("rating"))
        if rating is None or rating < 1 or rating > 5:
            errors.append("rating must be an integer between 1 and 5")
        comment = str(payload.get("comment") or "").strip()
        if not comment:
            errors.append("comment is required")
        elif len(comment) > 1000:
            errors.append("comment must be at most 1000 characters")
        if errors:
            return validation_error(errors)

        reviews = list(product_document.get("reviews") or [])
        if any(review.get("user") == current_user["_id"] for review in reviews):
            return error_response("REVIEW_EXISTS", 409)

        is_verified = (
            db.orders.find_one(
                {
                    "user_id": current_user["_id"],
                    "order_status": "delivered",
                    "items.product_id": product_document["_id"],
                },
                {"_id": 1},
            )
            is not None
        )
        reviews.append(
            {
                "user": current_user["_id"],
                "user_name": current_user.get("name", ""),
                "rating": rating,
                "comment": comment,
                "is_verified": is_verified,
                "created_at": utcnow(),
            }
        )
        ratings = calculate_ratings(reviews)
        db.products.update_one(
            {"_id": product_document["_id"]},
            {"$set": {"reviews": reviews, "ratings": ratings, "updated_at": utcnow()}},
        )

        refreshed = db.products.find_one({"_id": product_document["_id"]})
        return success_response(serialize_product(refreshed), "REVIEW_ADDED", status=201)

    # --- Admin ---

    @app.route(f"{API_PREFIX}/products", methods=["POST"])
    @jwt_required()
    def create_product():
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        fields, errors = normalize_product_payload(payload)
        if errors:
            return validation_error(errors)

        if not db.categories.find_one({"_id": fields["category"]}, {"_id": 1}):
            return error_response("CATEGORY_NOT_FOUND", 404)
        if fields.get("subcategory") and not db.categories.find_one(
            {"_id": fields["subcategory"]}, {"_id": 1}
        ):
            return error_response("CATEGORY_NOT_FOUND", 404)

        if fields.get("sku"):
            if db.products.find_one({"sku": fields["sku"]}, {"_id": 1}):
                return error_response("SKU_EXISTS", 409)
        else:
            sku = generate_sku(fields["name"])
            while db.products.find_one({"sku": sku}, {"_id": 1}):
                sku = f"{sku[:3]}{secrets.randbelow(10**6):06d}"
            fields["sku"] = sku

        now = utcnow()
        product_document = {
            "short_description": "",
            "original_price": None,
            "subcategory": None,
            "brand": "",
            "variants": [],
            "tags": [],
            "specifications": {},
            "weight": None,
            "dimensions": None,
            **fields,
            "ratings": {"average": 0, "count": 0},
            "reviews": [],
            "sales": 0,
            "views": 0,
            "created_by": admin_user["_id"],
            "updated_by": admin_user["_id"],
            "created_at": now,
            "updated_at": now,
        }
        product_document.setdefault("thumbnail", product_document["images"][0])
        product_document["status"] = derive_stock_status(
            product_document["status"], product_document["stock"], product_document["variants"]
        )

        try:
            insert_result = db.products.insert_one(product_document)
        except DuplicateKeyError:
            return error_response("SKU_EXISTS", 409)
        product_document["_id"] = insert_result.inserted_id
        adjust_product_count(db, product_document["category"], 1)

        app.logger.info(
            "Product %s created by %s", product_document["_id"], admin_user["_id"]
        )
        return success_response(
            serialize_product(product_document), "PRODUCT_CREATED", status=201
        )

    def apply_product_update(product_document, fields, admin_user):
        """Persist validated ``fields``.

        Returns ``None`` on success, otherwise the ``(message_key, status)``
        that stopped the write. Nothing is written when a check fails.
        """
        if "category" in fields and not db.categories.find_one(
            {"_id": fields["category"]}, {"_id": 1}
        ):
            return "CATEGORY_NOT_FOUND", 404
        if fields.get("subcategory") and not db.categories.find_one(
            {"_id": fields["subcategory"]}, {"_id": 1}
        ):
            return "CATEGORY_NOT_FOUND", 404
        if "sku" in fields and fields["sku"] != product_document.get("sku"):
            if db.products.find_one(
                {"sku": fields["sku"], "_id": {"$ne": product_document["_id"]}},
                {"_id": 1},
            ):
                return "SKU_EXISTS", 409
        if "images" in fields and "thumbnail" not in fields:
            if product_document.get("thumbnail") not in fields["images"]:
                fields["thumbnail"] = fields["images"][0]

        merged = {**product_document, **fields}
        fields["status"] = derive_stock_status(
            merged.get("status", "draft"),
            int(merged.get("stock", 0) or 0),
            merged.get("variants") or [],
        )
        fields["updated_by"] = admin_user["_id"]
        fields["updated_at"] = utcnow()
        try:
            db.products.update_one({"_id": product_document["_id"]}, {"$set": fields})
        except DuplicateKeyError:
            return "SKU_EXISTS", 409

        previous_category = product_document.get("category")
        if "category" in fields and fields["category"] != previous_category:
            adjust_product_count(db, previous_category, -1)
            adjust_product_count(db, fields["category"], 1)
        return None

    @app.route(f"{API_PREFIX}/products/<product_id>", methods=["PUT"])
    @jwt_required()
    def update_product(product_id: str):
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error
        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error

        payload = request.get_json(silent=True) or {}
        fields, errors = normalize_product_payload(payload, partial=True)
        if errors:
            return validation_error(errors)

        update_failure = apply_product_update(product_document, fields, admin_user)
        if update_failure:
            return error_response(*update_failure)

        refreshed = db.products.find_one({"_id": product_document["_id"]})
        return success_response(serialize_product(refreshed), "PRODUCT_UPDATED")

    @app.route(f"{API_PREFIX}/products/<product_id>/stock", methods=["PATCH"])
    @jwt_required()
    def update_product_stock(product_id: str):
        """Apply a signed stock delta; results below zero are rejected."""
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error
        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error

        payload = request.get_json(silent=True) or {}
        quantity = safe_int(payload.get("quantity"))
        if quantity is None:
            return validation_error("quantity must be an integer")

        query: Dict[str, object] = {"_id": product_document["_id"]}
        if quantity < 0:
            query["stock"] = {"$gte": -quantity}
        update_result = db.products.update_one(
            query,
            {
                "$inc": {"stock": quantity},
                "$set": {"updated_by": admin_user["_id"], "updated_at": utcnow()},
            },
        )
        if update_result.matched_count == 0:
            return error_response(
                "STOCK_NEGATIVE", 400, current_stock=int(product_document.get("stock", 0) or 0)
            )
        refresh_stock_status(db, product_document["_id"])

        refreshed = db.products.find_one({"_id": product_document["_id"]})
        app.logger.info(
            "Stock for product %s changed by %s to %s",
            product_document["_id"],
            quantity,
            refreshed.get("stock"),
        )
        return success_response(serialize_product(refreshed), "STOCK_UPDATED")

    @app.route(f"{API_PREFIX}/products/bulk-update", methods=["PATCH"])
    @jwt_required()
    def bulk_update_products():
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True)
        entries = payload.get("updates") if isinstance(payload, dict) else payload
        if not isinstance(entries, list) or not entries:
            return validation_error("updates must be a non-empty list")

        prepared = []
        errors: List[str] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict) or not isinstance(entry.get("data"), dict):
                errors.append(f"updates[{index}] must have an id and a data object")
                continue
            product_id = normalize_object_id_value(entry.get("id")) if entry.get("id") else None
            if not product_id:
                errors.append(f"updates[{index}].id must be a valid identifier")
                continue
            fields, field_errors = normalize_product_payload(entry["data"], partial=True)
            errors.extend(f"updates[{index}].{message}" for message in field_errors)
            prepared.append((product_id, fields))
        if errors:
            return validation_error(errors)

        updated: List[str] = []
        missing: List[str] = []
        failed: List[Dict[str, object]] = []
        for product_id, fields in prepared:
            product_document = db.products.find_one({"_id": product_id})
            if not product_document:
                missing.append(str(product_id))
                continue
            update_failure = apply_product_update(product_document, fields, admin_user)
            if update_failure:
                failed.append({"id": str(product_id), "error": update_failure[0]})
                continue
            updated.append(str(product_id))

        app.logger.info(
            "Bulk product update completed for %s products (%s failed)",
            len(updated),
            len(failed),
        )
        return success_response(
            {"updated": updated, "not_found": missing, "failed": failed},
            "PRODUCTS_UPDATED",
        )

    @app.route(f"{API_PREFIX}/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error
        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error

        db.products.delete_one({"_id": product_document["_id"]})
        adjust_product_count(db, product_document.get("category"), -1)
        db.users.update_many(
            {"wishlist": product_document["_id"]},
            {"$pull": {"wishlist": product_document["_id"]}},
        )

        app.logger.info(
            "Product %s deleted by %s", product_document["_id"], admin_user["_id"]
        )
        return success_response({"id": str(product_document["_id"])}, "PRODUCT_DELETED")

    @app.route(f"{API_PREFIX}/products/analytics/top-selling", methods=["GET"])
    @jwt_required()
    def top_selling_products():
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error
        limit = safe_int(request.args.get("limit", 10))
        if limit is None or limit < 1:
            limit = 10
        products = (
            db.products.find({"is_active": True})
            .sort([("sales", -1), ("_id", 1)])
            .limit(min(limit, 100))
        )
        return success_response(
            [serialize_product(product, include_reviews=False) for product in products],
            "PRODUCTS_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/products/analytics/low-stock", methods=["GET"])
    @jwt_required()
    def low_stock_products():
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        threshold = None
        if request.args.get("threshold") not in (None, ""):
            threshold = safe_int(request.args.get("threshold"))
            if threshold is None or threshold < 0:
                return validation_error("threshold must be a non-negative integer")

        low_stock = []
        for product in db.products.find({"is_active": True}).sort("stock", 1):
            stock = int(product.get("stock", 0) or 0)
            limit = (
                threshold
                if threshold is not None
                else int(product.get("min_stock", DEFAULT_MIN_STOCK) or 0)
            )
            if stock <= limit:
                low_stock.append(serialize_product(product, include_reviews=False))
        return success_response(low_stock, "PRODUCTS_RETRIEVED")

    @app.route(f"{API_PREFIX}/products/<product_id>/analytics", methods=["GET"])
    @jwt_required()
    def product_analytics(product_id: str):
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error
        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error

        ratings = product_document.get("ratings") or {}
        sales = int(product_document.get("sales", 0) or 0)
        stock = int(product_document.get("stock", 0) or 0)
        return success_response(
            {
                "id": str(product_document["_id"]),
                "name": product_document.get("name", ""),
                "views": int(product_document.get("views", 0) or 0),
                "sales": sales,
                "stock": stock,
                "revenue": sales * safe_float(product_document.get("price"), 0.0),
                "rating": {
                    "average": ratings.get("average", 0) or 0,
                    "count": int(ratings.get("count", 0) or 0),
                },
                "review_count": len(product_document.get("reviews") or []),
                "is_low_stock": stock
                <= int(product_document.get("min_stock", DEFAULT_MIN_STOCK) or 0),
            },
            "PRODUCT_RETRIEVED",
        )
