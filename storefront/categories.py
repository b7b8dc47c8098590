import re
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from flask import request
from flask_jwt_extended import jwt_required
from pymongo.errors import DuplicateKeyError

from .helpers import (
    API_PREFIX,
    isoformat,
    normalize_object_id_value,
    normalize_text,
    parse_bool,
    parse_object_id,
    safe_int,
    slug_regex,
    slugify_category_name,
    stringify_id,
    utcnow,
)
from .responses import error_response, success_response, validation_error
from .security import require_admin_user

MAX_CATEGORY_LEVEL = 4
CATEGORY_NAME_MAX_LENGTH = 100
CATEGORY_DESCRIPTION_MAX_LENGTH = 500
CATEGORY_SORT = [("level", 1), ("sort_order", 1), ("name", 1)]


def serialize_category(category_document) -> Dict[str, object]:
    if not category_document:
        return {}
    return {
        "id": str(category_document.get("_id")),
        "name": category_document.get("name", "") or "",
        "description": category_document.get("description", "") or "",
        "slug": category_document.get("slug", "") or "",
        "image": category_document.get("image", "") or "",
        "icon": category_document.get("icon", "") or "",
        "parent": stringify_id(category_document.get("parent")),
        "children": [str(child) for child in category_document.get("children") or []],
        "level": int(category_document.get("level", 0) or 0),
        "path": [str(ancestor) for ancestor in category_document.get("path") or []],
        "is_active": category_document.get("is_active", True) is not False,
        "sort_order": int(category_document.get("sort_order", 0) or 0),
        "product_count": int(category_document.get("product_count", 0) or 0),
        "seo_title": category_document.get("seo_title", "") or "",
        "seo_description": category_document.get("seo_description", "") or "",
        "seo_keywords": list(category_document.get("seo_keywords") or []),
        "created_at": isoformat(category_document.get("created_at")),
        "updated_at": isoformat(category_document.get("updated_at")),
    }


def build_category_tree(category_documents) -> List[Dict[str, object]]:
    nodes: Dict[ObjectId, Dict[str, object]] = {}
    ordered: List[Tuple[Optional[ObjectId], Dict[str, object]]] = []
    for document in category_documents:
        node = serialize_category(document)
        node["children"] = []
        nodes[document["_id"]] = node
        ordered.append((document.get("parent"), node))

    roots: List[Dict[str, object]] = []
    for parent_id, node in ordered:
        parent_node = nodes.get(parent_id) if parent_id else None
        if parent_node is not None:
            parent_node["children"].append(node)
        else:
            roots.append(node)
    return roots


def get_descendant_ids(db, category_id: ObjectId) -> List[ObjectId]:
    return [
        document["_id"]
        for document in db.categories.find({"path": category_id}, {"_id": 1})
    ]


def adjust_product_count(db, category_id, delta: int) -> None:
    if not category_id or not delta:
        return
    db.categories.update_one(
        {"_id": category_id},
        {"$inc": {"product_count": delta}},
    )
    db.categories.update_one(
        {"_id": category_id, "product_count": {"$lt": 0}},
        {"$set": {"product_count": 0}},
    )


def fetch_category(db, category_id: str):
    object_id, id_error = parse_object_id(category_id)
    if id_error:
        return None, id_error
    category_document = db.categories.find_one({"_id": object_id})
    if not category_document:
        return None, error_response("CATEGORY_NOT_FOUND", 404)
    return category_document, None


def _failure(key: str, status: int, errors: Optional[List[str]] = None) -> Dict[str, object]:
    return {"key": key, "status": status, "errors": errors or []}


def _failure_response(failure: Dict[str, object]):
    if failure["errors"]:
        return error_response(failure["key"], failure["status"], errors=failure["errors"])
    return error_response(failure["key"], failure["status"])


def normalize_category_fields(payload: Dict, partial: bool = False):
    fields: Dict[str, object] = {}
    errors: List[str] = []

    if "name" in payload or not partial:
        name = normalize_text(payload.get("name"))
        if not name:
            errors.append("name is required")
        elif len(name) > CATEGORY_NAME_MAX_LENGTH:
            errors.append(f"name must be at most {CATEGORY_NAME_MAX_LENGTH} characters")
        else:
            fields["name"] = name

    if "description" in payload:
        description = str(payload.get("description") or "").strip()
        if len(description) > CATEGORY_DESCRIPTION_MAX_LENGTH:
            errors.append(
                f"description must be at most {CATEGORY_DESCRIPTION_MAX_LENGTH} characters"
            )
        else:
            fields["description"] = description

    if payload.get("slug"):
        slug = str(payload.get("slug")).strip().lower()
        if not slug_regex.match(slug):
            errors.append("slug may only contain lowercase letters, digits and hyphens")
        else:
            fields["slug"] = slug

    for key in ("image", "icon", "seo_title", "seo_description"):
        if key in payload:
            fields[key] = str(payload.get(key) or "").strip()

    if "seo_keywords" in payload:
        keywords = payload.get("seo_keywords") or []
        if isinstance(keywords, str):
            keywords = keywords.split(",")
        if not isinstance(keywords, list):
            errors.append("seo_keywords must be a list")
        else:
            fields["seo_keywords"] = [
                normalize_text(keyword) for keyword in keywords if normalize_text(keyword)
            ]

    if "is_active" in payload:
        is_active = parse_bool(payload.get("is_active"))
        if is_active is None:
            errors.append("is_active must be a boolean")
        else:
            fields["is_active"] = is_active

    if "sort_order" in payload:
        sort_order = safe_int(payload.get("sort_order"))
        if sort_order is None:
            errors.append("sort_order must be an integer")
        else:
            fields["sort_order"] = sort_order

    return fields, errors


def create_category(db, payload: Dict, actor_id) -> Tuple[Optional[Dict], Optional[Dict]]:
    """Validate ``payload`` and insert a category under its optional parent."""
    if not isinstance(payload, dict):
        return None, _failure("VALIDATION_ERROR", 400, ["category must be an object"])

    fields, errors = normalize_category_fields(payload)
    parent_document = None
    if payload.get("parent"):
        parent_id = normalize_object_id_value(payload.get("parent"))
        if not parent_id:
            errors.append("parent must be a valid identifier")
        else:
            parent_document = db.categories.find_one({"_id": parent_id})
            if not errors and not parent_document:
                return None, _failure("PARENT_CATEGORY_NOT_FOUND", 404)
    if errors:
        return None, _failure("VALIDATION_ERROR", 400, errors)

    level = int(parent_document.get("level", 0)) + 1 if parent_document else 0
    if level > MAX_CATEGORY_LEVEL:
        return None, _failure("CATEGORY_DEPTH_EXCEEDED", 400)

    slug = fields.get("slug") or slugify_category_name(fields["name"])
    if db.categories.find_one({"slug": slug}, {"_id": 1}):
        return None, _failure("CATEGORY_SLUG_EXISTS", 409)

    now = utcnow()
    category_document = {
        "name": fields["name"],
        "description": fields.get("description", ""),
        "slug": slug,
        "image": fields.get("image", ""),
        "icon": fields.get("icon", ""),
        "parent": parent_document["_id"] if parent_document else None,
        "children": [],
        "level": level,
        "path": (
            list(parent_document.get("path") or []) + [parent_document["_id"]]
            if parent_document
            else []
        ),
        "is_active": fields.get("is_active", True),
        "sort_order": fields.get("sort_order", 0),
        "product_count": 0,
        "seo_title": fields.get("seo_title", ""),
        "seo_description": fields.get("seo_description", ""),
        "seo_keywords": fields.get("seo_keywords", []),
        "created_by": actor_id,
        "updated_by": actor_id,
        "created_at": now,
        "updated_at": now,
    }
    try:
        insert_result = db.categories.insert_one(category_document)
    except DuplicateKeyError:
        return None, _failure("CATEGORY_SLUG_EXISTS", 409)
    category_document["_id"] = insert_result.inserted_id

    if parent_document:
        db.categories.update_one(
            {"_id": parent_document["_id"]},
            {"$addToSet": {"children": category_document["_id"]}},
        )
    return category_document, None


def move_category(db, category_document, new_parent) -> None:
    """Re-parent a category and rewrite level and path of its whole subtree."""
    category_id = category_document["_id"]
    old_parent_id = category_document.get("parent")
    new_path = (
        list(new_parent.get("path") or []) + [new_parent["_id"]] if new_parent else []
    )

    if old_parent_id:
        db.categories.update_one(
            {"_id": old_parent_id}, {"$pull": {"children": category_id}}
        )
    if new_parent:
        db.categories.update_one(
            {"_id": new_parent["_id"]}, {"$addToSet": {"children": category_id}}
        )

    db.categories.update_one(
        {"_id": category_id},
        {
            "$set": {
                "parent": new_parent["_id"] if new_parent else None,
                "path": new_path,
                "level": len(new_path),
            }
        },
    )

    for descendant in db.categories.find({"path": category_id}):
        old_path = list(descendant.get("path") or [])
        suffix = old_path[old_path.index(category_id):]
        descendant_path = new_path + suffix
        db.categories.update_one(
            {"_id": descendant["_id"]},
            {"$set": {"path": descendant_path, "level": len(descendant_path)}},
        )


def validate_hierarchy(db) -> Dict[str, object]:
    categories = {document["_id"]: document for document in db.categories.find()}
    issues: List[Dict[str, str]] = []

    def report(category_id, problem: str):
        issues.append({"category_id": str(category_id), "issue": problem})

    for category_id, document in categories.items():
        parent_id = document.get("parent")
        path = list(document.get("path") or [])
        level = int(document.get("level", 0) or 0)

        if parent_id:
            parent = categories.get(parent_id)
            if not parent:
                report(category_id, "parent does not exist")
                continue
            if category_id not in (parent.get("children") or []):
                report(category_id, "missing from parent's children")
            expected_path = list(parent.get("path") or []) + [parent_id]
            if path != expected_path:
                report(category_id, "path does not match parent path")
            if level != int(parent.get("level", 0) or 0) + 1:
                report(category_id, "level does not match parent level")
        elif path or level != 0:
            report(category_id, "root category has a path or non-zero level")

        if category_id in path:
            report(category_id, "category appears in its own path")
        if level > MAX_CATEGORY_LEVEL:
            report(category_id, "category is nested too deep")

        for child_id in document.get("children") or []:
            child = categories.get(child_id)
            if not child or child.get("parent") != category_id:
                report(category_id, f"child {child_id} does not point back")

    return {"valid": not issues, "checked": len(categories), "issues": issues}


def register_category_routes(app, db):
    def active_filter_from_args() -> Dict[str, object]:
        query: Dict[str, object] = {}
        is_active = parse_bool(request.args.get("is_active"))
        if is_active is not None:
            query["is_active"] = is_active
        return query

    @app.route(f"{API_PREFIX}/categories", methods=["GET"])
    def list_categories():
        category_documents = db.categories.find(active_filter_from_args()).sort(
            CATEGORY_SORT
        )
        return success_response(
            [serialize_category(document) for document in category_documents],
            "CATEGORIES_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/categories/root", methods=["GET"])
    def list_root_categories():
        query = active_filter_from_args()
        query["parent"] = None
        category_documents = db.categories.find(query).sort(
            [("sort_order", 1), ("name", 1)]
        )
        return success_response(
            [serialize_category(document) for document in category_documents],
            "CATEGORIES_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/categories/tree", methods=["GET"])
    def get_category_tree():
        """Nested category tree built in one pass over the sorted categories."""
        category_documents = db.categories.find(active_filter_from_args()).sort(
            CATEGORY_SORT
        )
        return success_response(
            build_category_tree(category_documents), "CATEGORY_TREE_RETRIEVED"
        )

    @app.route(f"{API_PREFIX}/categories/search", methods=["GET"])
    def search_categories():
        search_term = normalize_text(request.args.get("q"))
        if not search_term:
            return error_response("SEARCH_QUERY_REQUIRED", 400)

        pattern = re.escape(search_term)
        query = active_filter_from_args()
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
        category_documents = db.categories.find(query).sort(CATEGORY_SORT).limit(50)
        return success_response(
            [serialize_category(document) for document in category_documents],
            "CATEGORIES_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/categories/slug/<slug>", methods=["GET"])
    def get_category_by_slug(slug: str):
        category_document = db.categories.find_one({"slug": str(slug).strip().lower()})
        if not category_document:
            return error_response("CATEGORY_NOT_FOUND", 404)
        return success_response(serialize_category(category_document), "CATEGORY_RETRIEVED")

    @app.route(f"{API_PREFIX}/categories/with-product-count", methods=["GET"])
    @jwt_required()
    def list_categories_with_product_count():
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        counts: Dict[ObjectId, int] = {}
        for product in db.products.find({}, {"category": 1}):
            category_id = product.get("category")
            if category_id:
                counts[category_id] = counts.get(category_id, 0) + 1

        categories = []
        for document in db.categories.find().sort(CATEGORY_SORT):
            serialized = serialize_category(document)
            serialized["actual_product_count"] = counts.get(document["_id"], 0)
            categories.append(serialized)
        return success_response(categories, "CATEGORIES_RETRIEVED")

    @app.route(f"{API_PREFIX}/categories/validate-hierarchy", methods=["GET"])
    @jwt_required()
    def validate_category_hierarchy():
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error
        return success_response(validate_hierarchy(db), "CATEGORY_HIERARCHY_CHECKED")

    @app.route(f"{API_PREFIX}/categories/<category_id>", methods=["GET"])
    def get_category(category_id: str):
        category_document, load_error = fetch_category(db, category_id)
        if load_error:
            return load_error
        return success_response(serialize_category(category_document), "CATEGORY_RETRIEVED")

    @app.route(f"{API_PREFIX}/categories/<category_id>/children", methods=["GET"])
    def get_category_children(category_id: str):
        category_document, load_error = fetch_category(db, category_id)
        if load_error:
            return load_error
        query = active_filter_from_args()
        query["parent"] = category_document["_id"]
        children = db.categories.find(query).sort([("sort_order", 1), ("name", 1)])
        return success_response(
            [serialize_category(document) for document in children],
            "CATEGORIES_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/categories/<category_id>/path", methods=["GET"])
    def get_category_path(category_id: str):
        """Breadcrumb from the root down to the requested category."""
        category_document, load_error = fetch_category(db, category_id)
        if load_error:
            return load_error

        ancestor_ids = list(category_document.get("path") or [])
        ancestors = {
            document["_id"]: document
            for document in db.categories.find({"_id": {"$in": ancestor_ids}})
        }
        breadcrumb = [
            serialize_category(ancestors[ancestor_id])
            for ancestor_id in ancestor_ids
            if ancestor_id in ancestors
        ]
        breadcrumb.append(serialize_category(category_document))
        return success_response(breadcrumb, "CATEGORY_PATH_RETRIEVED")

    @app.route(f"{API_PREFIX}/categories/<category_id>/analytics", methods=["GET"])
    @jwt_required()
    def get_category_analytics(category_id: str):
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error
        category_document, load_error = fetch_category(db, category_id)
        if load_error:
            return load_error

        category_ids = [category_document["_id"]] + get_descendant_ids(
            db, category_document["_id"]
        )
        products = list(
            db.products.find(
                {"category": {"$in": category_ids}},
                {"price": 1, "stock": 1, "sales": 1, "views": 1, "status": 1, "category": 1},
            )
        )
        direct_products = [
            product for product in products if product.get("category") == category_document["_id"]
        ]
        prices = [float(product.get("price", 0) or 0) for product in products]
        return success_response(
            {
                "category": serialize_category(category_document),
                "subcategory_count": len(category_ids) - 1,
                "direct_product_count": len(direct_products),
                "total_product_count": len(products),
                "active_product_count": sum(
                    1 for product in products if product.get("status") == "active"
                ),
                "out_of_stock_count": sum(
                    1 for product in products if product.get("status") == "out_of_stock"
                ),
                "total_stock": sum(int(product.get("stock", 0) or 0) for product in products),
                "total_sales": sum(int(product.get("sales", 0) or 0) for product in products),
                "total_views": sum(int(product.get("views", 0) or 0) for product in products),
                "average_price": round(sum(prices) / len(prices)) if prices else 0,
            },
            "CATEGORY_RETRIEVED",
        )

    @app.route(f"{API_PREFIX}/categories", methods=["POST"])
    @jwt_required()
    def create_category_route():
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        category_document, failure = create_category(db, payload, admin_user["_id"])
        if failure:
            return _failure_response(failure)

        app.logger.info(
            "Created category %s (%s)", category_document["_id"], category_document["slug"]
        )
        return success_response(
            serialize_category(category_document), "CATEGORY_CREATED", status=201
        )

    @app.route(f"{API_PREFIX}/categories/bulk-create", methods=["POST"])
    @jwt_required()
    def bulk_create_categories():
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True)
        entries = payload.get("categories") if isinstance(payload, dict) else payload
        if not isinstance(entries, list) or not entries:
            return validation_error("categories must be a non-empty list")

        created = []
        failed = []
        for index, entry in enumerate(entries):
            category_document, failure = create_category(db, entry, admin_user["_id"])
            if failure:
                failed.append(
                    {
                        "index": index,
                        "name": entry.get("name") if isinstance(entry, dict) else None,
                        "error": failure["key"],
                        "errors": failure["errors"],
                    }
                )
                continue
            created.append(serialize_category(category_document))

        if not created:
            return error_response("VALIDATION_ERROR", 400, failed=failed)

        app.logger.info("Bulk created %s categories (%s failed)", len(created), len(failed))
        return success_response(
            {"created": created, "failed": failed}, "CATEGORY_CREATED", status=201
        )

    @app.route(f"{API_PREFIX}/categories/reorder", methods=["PATCH"])
    @jwt_required()
    def reorder_categories():
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True)
        entries = payload.get("categories") if isinstance(payload, dict) else payload
        if not isinstance(entries, list) or not entries:
            return validation_error("categories must be a non-empty list")

        updates = []
        errors: List[str] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                errors.append(f"categories[{index}] must be an object")
                continue
            category_id = normalize_object_id_value(entry.get("id")) if entry.get("id") else None
            sort_order = safe_int(entry.get("sort_order"))
            if not category_id or sort_order is None:
                errors.append(f"categories[{index}] needs a valid id and integer sort_order")
                continue
            updates.append((category_id, sort_order))
        if errors:
            return validation_error(errors)

        now = utcnow()
        updated = 0
        for category_id, sort_order in updates:
            result = db.categories.update_one(
                {"_id": category_id},
                {
                    "$set": {
                        "sort_order": sort_order,
                        "updated_by": admin_user["_id"],
                        "updated_at": now,
                    }
                },
            )
            updated += result.matched_count
        return success_response({"updated": updated}, "CATEGORIES_REORDERED")

    @app.route(f"{API_PREFIX}/categories/<category_id>", methods=["PUT"])
    @jwt_required()
    def update_category(category_id: str):
        """Update a category; moving it rewrites the path of every descendant."""
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error
        category_document, load_error = fetch_category(db, category_id)
        if load_error:
            return load_error

        payload = request.get_json(silent=True) or {}
        fields, errors = normalize_category_fields(payload, partial=True)
        if errors:
            return validation_error(errors)

        if "slug" in fields and fields["slug"] != category_document.get("slug"):
            if db.categories.find_one(
                {"slug": fields["slug"], "_id": {"$ne": category_document["_id"]}},
                {"_id": 1},
            ):
                return error_response("CATEGORY_SLUG_EXISTS", 409)

        if "parent" in payload:
            raw_parent = payload.get("parent")
            new_parent = None
            if raw_parent:
                new_parent_id = normalize_object_id_value(raw_parent)
                if not new_parent_id:
                    return validation_error("parent must be a valid identifier")
                if new_parent_id == category_document["_id"]:
                    return error_response("CATEGORY_SELF_PARENT", 400)
                if new_parent_id in get_descendant_ids(db, category_document["_id"]):
                    return error_response("CATEGORY_DESCENDANT_PARENT", 400)
                new_parent = db.categories.find_one({"_id": new_parent_id})
                if not new_parent:
                    return error_response("PARENT_CATEGORY_NOT_FOUND", 404)

            current_parent = category_document.get("parent")
            target_parent = new_parent["_id"] if new_parent else None
            if target_parent != current_parent:
                new_level = int(new_parent.get("level", 0)) + 1 if new_parent else 0
                subtree_depth = 0
                own_level = int(category_document.get("level", 0) or 0)
                for descendant in db.categories.find(
                    {"path": category_document["_id"]}, {"level": 1}
                ):
                    subtree_depth = max(
                        subtree_depth, int(descendant.get("level", 0) or 0) - own_level
                    )
                if new_level + subtree_depth > MAX_CATEGORY_LEVEL:
                    return error_response("CATEGORY_DEPTH_EXCEEDED", 400)
                move_category(db, category_document, new_parent)
                app.logger.info(
                    "Moved category %s under %s", category_document["_id"], target_parent
                )

        fields["updated_by"] = admin_user["_id"]
        fields["updated_at"] = utcnow()
        try:
            db.categories.update_one({"_id": category_document["_id"]}, {"$set": fields})
        except DuplicateKeyError:
            return error_response("CATEGORY_SLUG_EXISTS", 409)

        refreshed = db.categories.find_one({"_id": category_document["_id"]})
        return success_response(serialize_category(refreshed), "CATEGORY_UPDATED")

    @app.route(f"{API_PREFIX}/categories/<category_id>", methods=["DELETE"])
    @jwt_required()
    def delete_category(category_id: str):
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error
        category_document, load_error = fetch_category(db, category_id)
        if load_error:
            return load_error

        category_object_id = category_document["_id"]
        if db.categories.count_documents({"parent": category_object_id}) > 0:
            return error_response("CATEGORY_HAS_CHILDREN", 409)
        if (
            db.products.count_documents(
                {
                    "$or": [
                        {"category": category_object_id},
                        {"subcategory": category_object_id},
                    ]
                }
            )
            > 0
        ):
            return error_response("CATEGORY_HAS_PRODUCTS", 409)

        db.categories.delete_one({"_id": category_object_id})
        if category_document.get("parent"):
            db.categories.update_one(
                {"_id": category_document["parent"]},
                {"$pull": {"children": category_object_id}},
            )

        app.logger.info(
            "Admin %s deleted category %s", admin_user["_id"], category_object_id
        )
        return success_response({"id": str(category_object_id)}, "CATEGORY_DELETED")
