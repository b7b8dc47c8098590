import re
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from flask import request
from flask_jwt_extended import jwt_required

from .helpers import (
    API_PREFIX,
    build_pagination,
    is_valid_email,
    is_valid_phone,
    isoformat,
    normalize_email,
    normalize_text,
    parse_bool,
    parse_object_id,
    parse_pagination,
    utcnow,
)
from .responses import error_response, success_response, validation_error
from .security import (
    ALLOWED_USER_ROLES,
    check_password,
    hash_password,
    normalize_role,
    require_admin_user,
    require_role,
)

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 100
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50

ADDRESS_FIELDS = ("full_name", "phone", "street", "ward", "district", "city")
ADDRESS_FIELD_LIMITS = {
    "full_name": 100,
    "phone": 20,
    "street": 200,
    "ward": 100,
    "district": 100,
    "city": 100,
}


def validate_password(password: str) -> Optional[str]:
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"password must be at least {PASSWORD_MIN_LENGTH} characters"
    if len(password) > PASSWORD_MAX_LENGTH:
        return f"password must be at most {PASSWORD_MAX_LENGTH} characters"
    return None


def validate_name(name: str) -> Optional[str]:
    if len(name) < NAME_MIN_LENGTH or len(name) > NAME_MAX_LENGTH:
        return f"name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"
    return None


def serialize_address(address) -> Dict[str, object]:
    if not address:
        return {}
    serialized = {"id": str(address.get("_id"))}
    for field in ADDRESS_FIELDS:
        serialized[field] = address.get(field, "") or ""
    serialized["is_default"] = bool(address.get("is_default"))
    return serialized


def serialize_user(user_document) -> Dict[str, object]:
    if not user_document:
        return {}

    return {
        "id": str(user_document.get("_id")),
        "name": user_document.get("name", "") or "",
        "email": user_document.get("email", "") or "",
        "role": normalize_role(user_document.get("role")),
        "phone_number": user_document.get("phone_number", "") or "",
        "avatar": user_document.get("avatar", "") or "",
        "is_active": user_document.get("is_active", True) is not False,
        "is_email_verified": bool(user_document.get("is_email_verified")),
        "email_verified_at": isoformat(user_document.get("email_verified_at")),
        "points": int(user_document.get("points", 0) or 0),
        "addresses": [
            serialize_address(address) for address in user_document.get("addresses") or []
        ],
        "last_login_at": isoformat(user_document.get("last_login_at")),
        "created_at": isoformat(user_document.get("created_at")),
        "updated_at": isoformat(user_document.get("updated_at")),
    }


def normalize_address_payload(
    payload: Optional[Dict], partial: bool = False
) -> Tuple[Dict[str, object], List[str]]:
    if not isinstance(payload, dict):
        return {}, ["address must be an object"]

    normalized: Dict[str, object] = {}
    errors: List[str] = []
    for field in ADDRESS_FIELDS:
        if field not in payload:
            if not partial:
                errors.append(f"{field} is required")
            continue
        value = normalize_text(payload.get(field))
        if not value:
            errors.append(f"{field} is required")
            continue
        if len(value) > ADDRESS_FIELD_LIMITS[field]:
            errors.append(
                f"{field} must be at most {ADDRESS_FIELD_LIMITS[field]} characters"
            )
            continue
        normalized[field] = value

    if "phone" in normalized and not is_valid_phone(normalized["phone"]):
        errors.append("phone must be a valid phone number")

    if "is_default" in payload:
        normalized["is_default"] = bool(parse_bool(payload.get("is_default"), False))

    return normalized, errors


def find_address(user_document, address_id: ObjectId):
    for address in user_document.get("addresses") or []:
        if address.get("_id") == address_id:
            return address
    return None


def get_default_address(user_document):
    addresses = user_document.get("addresses") or []
    for address in addresses:
        if address.get("is_default"):
            return address
    return None


def save_addresses(db, user_id, addresses: List[Dict]) -> None:
    db.users.update_one(
        {"_id": user_id},
        {"$set": {"addresses": addresses, "updated_at": utcnow()}},
    )


def register_user_routes(app, db):
    # --- Profile ---

    @app.route(f"{API_PREFIX}/users/profile", methods=["GET"])
    @jwt_required()
    def get_profile():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        return success_response(serialize_user(current_user), "PROFILE_RETRIEVED")

    @app.route(f"{API_PREFIX}/users/profile", methods=["PUT"])
    @jwt_required()
    def update_profile():
        """Update name, phone, avatar, email or password of the current user."""
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error

        payload = request.get_json(silent=True) or {}
        updates: Dict[str, object] = {}
        errors: List[str] = []

        if "name" in payload:
            name = normalize_text(payload.get("name"))
            name_error = validate_name(name)
            if name_error:
                errors.append(name_error)
            else:
                updates["name"] = name

        if "phone_number" in payload:
            phone_number = normalize_text(payload.get("phone_number"))
            if phone_number and not is_valid_phone(phone_number):
                errors.append("phone_number must be a valid phone number")
            else:
                updates["phone_number"] = phone_number

        if "avatar" in payload:
            updates["avatar"] = str(payload.get("avatar") or "").strip()

        if "email" in payload:
            email = normalize_email(payload.get("email"))
            if not is_valid_email(email):
                errors.append("email must be a valid email address")
            elif email != current_user.get("email"):
                if db.users.find_one({"email": email, "_id": {"$ne": current_user["_id"]}}):
                    return error_response("EMAIL_EXISTS", 409)
                updates["email"] = email
                updates["is_email_verified"] = False
                updates["email_verified_at"] = None

        new_password = payload.get("new_password") or payload.get("password")
        if new_password:
            new_password = str(new_password)
            password_error = validate_password(new_password)
            if password_error:
                errors.append(password_error)
            elif not check_password(
                str(payload.get("current_password") or ""), current_user.get("password")
            ):
                return error_response("CURRENT_PASSWORD_INVALID", 400)
            else:
                updates["password"] = hash_password(new_password)

        if errors:
            return validation_error(errors)

        if updates:
            updates["updated_at"] = utcnow()
            db.users.update_one({"_id": current_user["_id"]}, {"$set": updates})
            if "password" in updates:
                app.logger.info("User %s changed their password", current_user["_id"])

        refreshed = db.users.find_one({"_id": current_user["_id"]})
        return success_response(serialize_user(refreshed), "PROFILE_UPDATED")

    # --- Admin user management ---

    @app.route(f"{API_PREFIX}/users", methods=["GET"])
    @jwt_required()
    def list_users():
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        query: Dict[str, object] = {}
        search_term = normalize_text(request.args.get("q") or request.args.get("search"))
        if search_term:
            pattern = re.escape(search_term)
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"email": {"$regex": pattern, "$options": "i"}},
            ]
        role = str(request.args.get("role", "")).strip().lower()
        if role in ALLOWED_USER_ROLES:
            query["role"] = role
        is_active = parse_bool(request.args.get("is_active"))
        if is_active is not None:
            query["is_active"] = is_active

        page, limit, skip = parse_pagination(request.args)
        total = db.users.count_documents(query)
        users = (
            db.users.find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .skip(skip)
            .limit(limit)
        )
        return success_response(
            {
                "users": [serialize_user(user) for user in users],
                "pagination": build_pagination(total, page, limit),
            },
            "USERS_RETRIEVED",
        )

    def fetch_user(user_id: str):
        object_id, id_error = parse_object_id(user_id)
        if id_error:
            return None, id_error
        user_document = db.users.find_one({"_id": object_id})
        if not user_document:
            return None, error_response("USER_NOT_FOUND", 404)
        return user_document, None

    @app.route(f"{API_PREFIX}/users/<user_id>", methods=["GET"])
    @jwt_required()
    def get_user(user_id: str):
        _, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        user_document, load_error = fetch_user(user_id)
        if load_error:
            return load_error
        return success_response(serialize_user(user_document), "USER_RETRIEVED")

    @app.route(f"{API_PREFIX}/users/<user_id>", methods=["PUT"])
    @jwt_required()
    def update_user(user_id: str):
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        user_document, load_error = fetch_user(user_id)
        if load_error:
            return load_error

        payload = request.get_json(silent=True) or {}
        updates: Dict[str, object] = {}
        errors: List[str] = []

        if "name" in payload:
            name = normalize_text(payload.get("name"))
            name_error = validate_name(name)
            if name_error:
                errors.append(name_error)
            else:
                updates["name"] = name

        if "email" in payload:
            email = normalize_email(payload.get("email"))
            if not is_valid_email(email):
                errors.append("email must be a valid email address")
            elif email != user_document.get("email"):
                if db.users.find_one({"email": email, "_id": {"$ne": user_document["_id"]}}):
                    return error_response("EMAIL_EXISTS", 409)
                updates["email"] = email

        if "phone_number" in payload:
            phone_number = normalize_text(payload.get("phone_number"))
            if phone_number and not is_valid_phone(phone_number):
                errors.append("phone_number must be a valid phone number")
            else:
                updates["phone_number"] = phone_number

        if "role" in payload:
            role = str(payload.get("role") or "").strip().lower()
            if role not in ALLOWED_USER_ROLES:
                errors.append("role must be one of admin, user")
            elif user_document["_id"] == admin_user["_id"] and role != "admin":
                return error_response("CANNOT_MODIFY_SELF", 400)
            else:
                updates["role"] = role

        if "is_active" in payload:
            is_active = parse_bool(payload.get("is_active"))
            if is_active is None:
                errors.append("is_active must be a boolean")
            elif user_document["_id"] == admin_user["_id"] and not is_active:
                return error_response("CANNOT_MODIFY_SELF", 400)
            else:
                updates["is_active"] = is_active

        if payload.get("password"):
            password = str(payload.get("password"))
            password_error = validate_password(password)
            if password_error:
                errors.append(password_error)
            else:
                updates["password"] = hash_password(password)

        if errors:
            return validation_error(errors)

        if updates:
            updates["updated_at"] = utcnow()
            db.users.update_one({"_id": user_document["_id"]}, {"$set": updates})
            app.logger.info(
                "Admin %s updated user %s (%s)",
                admin_user["_id"],
                user_document["_id"],
                ", ".join(sorted(key for key in updates if key != "password")),
            )

        refreshed = db.users.find_one({"_id": user_document["_id"]})
        return success_response(serialize_user(refreshed), "USER_UPDATED")

    @app.route(f"{API_PREFIX}/users/<user_id>/status", methods=["PATCH"])
    @jwt_required()
    def update_user_status(user_id: str):
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        user_document, load_error = fetch_user(user_id)
        if load_error:
            return load_error

        payload = request.get_json(silent=True) or {}
        is_active = parse_bool(payload.get("is_active"))
        if is_active is None:
            return validation_error("is_active must be a boolean")
        if user_document["_id"] == admin_user["_id"]:
            return error_response("CANNOT_MODIFY_SELF", 400)

        db.users.update_one(
            {"_id": user_document["_id"]},
            {"$set": {"is_active": is_active, "updated_at": utcnow()}},
        )
        app.logger.info(
            "User %s %s by admin %s",
            user_document["_id"],
            "activated" if is_active else "deactivated",
            admin_user["_id"],
        )
        refreshed = db.users.find_one({"_id": user_document["_id"]})
        return success_response(serialize_user(refreshed), "USER_UPDATED")

    @app.route(f"{API_PREFIX}/users/<user_id>", methods=["DELETE"])
    @jwt_required()
    def delete_user(user_id: str):
        admin_user, admin_error = require_admin_user(db)
        if admin_error:
            return admin_error

        user_document, load_error = fetch_user(user_id)
        if load_error:
            return load_error
        if user_document["_id"] == admin_user["_id"]:
            return error_response("CANNOT_MODIFY_SELF", 400)

        db.users.delete_one({"_id": user_document["_id"]})
        db.email_verification_tokens.delete_many({"email": user_document.get("email")})
        app.logger.info(
            "Admin %s deleted user %s", admin_user["_id"], user_document["_id"]
        )
        return success_response({"id": str(user_document["_id"])}, "USER_DELETED")

    # --- Addresses ---

    @app.route(f"{API_PREFIX}/users/addresses", methods=["GET"])
    @jwt_required()
    def list_addresses():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        addresses = current_user.get("addresses") or []
        return success_response(
            [serialize_address(address) for address in addresses], "ADDRESSES_RETRIEVED"
        )

    @app.route(f"{API_PREFIX}/users/addresses/default", methods=["GET"])
    @jwt_required()
    def get_default_address_route():
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        address = get_default_address(current_user)
        if not address:
            return error_response("DEFAULT_ADDRESS_NOT_FOUND", 404)
        return success_response(serialize_address(address), "ADDRESS_RETRIEVED")

    @app.route(f"{API_PREFIX}/users/addresses/<address_id>", methods=["GET"])
    @jwt_required()
    def get_address(address_id: str):
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        object_id, id_error = parse_object_id(address_id)
        if id_error:
            return id_error
        address = find_address(current_user, object_id)
        if not address:
            return error_response("ADDRESS_NOT_FOUND", 404)
        return success_response(serialize_address(address), "ADDRESS_RETRIEVED")

    @app.route(f"{API_PREFIX}/users/addresses", methods=["POST"])
    @jwt_required()
    def add_address():
        """Add an address. The first address always becomes the default."""
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error

        payload = request.get_json(silent=True) or {}
        address, errors = normalize_address_payload(payload)
        if errors:
            return validation_error(errors)

        addresses = list(current_user.get("addresses") or [])
        make_default = not addresses or bool(address.get("is_default"))
        if make_default:
            for existing in addresses:
                existing["is_default"] = False
        address["_id"] = ObjectId()
        address["is_default"] = make_default
        addresses.append(address)
        save_addresses(db, current_user["_id"], addresses)

        return success_response(serialize_address(address), "ADDRESS_ADDED", status=201)

    @app.route(f"{API_PREFIX}/users/addresses/<address_id>", methods=["PUT"])
    @jwt_required()
    def update_address(address_id: str):
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        object_id, id_error = parse_object_id(address_id)
        if id_error:
            return id_error

        payload = request.get_json(silent=True) or {}
        changes, errors = normalize_address_payload(payload, partial=True)
        if errors:
            return validation_error(errors)

        addresses = list(current_user.get("addresses") or [])
        target = find_address({"addresses": addresses}, object_id)
        if not target:
            return error_response("ADDRESS_NOT_FOUND", 404)

        make_default = changes.pop("is_default", None)
        target.update(changes)
        if make_default:
            for existing in addresses:
                existing["is_default"] = existing is target
        save_addresses(db, current_user["_id"], addresses)

        return success_response(serialize_address(target), "ADDRESS_UPDATED")

    @app.route(f"{API_PREFIX}/users/addresses/<address_id>/default", methods=["PUT"])
    @jwt_required()
    def set_default_address(address_id: str):
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        object_id, id_error = parse_object_id(address_id)
        if id_error:
            return id_error

        addresses = list(current_user.get("addresses") or [])
        target = find_address({"addresses": addresses}, object_id)
        if not target:
            return error_response("ADDRESS_NOT_FOUND", 404)

        for existing in addresses:
            existing["is_default"] = existing is target
        save_addresses(db, current_user["_id"], addresses)

        return success_response(serialize_address(target), "ADDRESS_DEFAULT_SET")

    @app.route(f"{API_PREFIX}/users/addresses/<address_id>", methods=["DELETE"])
    @jwt_required()
    def delete_address(address_id: str):
        """Remove an address; deleting the default promotes the first remaining one."""
        current_user, auth_error = require_role(db)
        if auth_error:
            return auth_error
        object_id, id_error = parse_object_id(address_id)
        if id_error:
            return id_error

        addresses = list(current_user.get("addresses") or [])
        target = find_address({"addresses": addresses}, object_id)
        if not target:
            return error_response("ADDRESS_NOT_FOUND", 404)

        remaining = [address for address in addresses if address is not target]
        if target.get("is_default") and remaining:
            remaining[0]["is_default"] = True
        save_addresses(db, current_user["_id"], remaining)

        return success_response(
            [serialize_address(address) for address in remaining], "ADDRESS_DELETED"
        )
