import secrets
from datetime import timedelta
from typing import Dict, List

from flask import request
from flask_jwt_extended import (
    create_access_token,
    get_jwt,
    get_jwt_identity,
    jwt_required,
)
from pymongo.errors import DuplicateKeyError

from . import emails
from .helpers import (
    API_PREFIX,
    is_valid_email,
    is_valid_phone,
    isoformat,
    normalize_email,
    normalize_object_id_value,
    normalize_text,
    utcnow,
)
from .responses import error_response, success_response, validation_error
from .security import (
    check_password,
    hash_password,
    issue_tokens,
    normalize_role,
    revoke_encoded_token,
    revoke_token,
)
from .users import serialize_user, validate_name, validate_password

otp_code_length = 6
verification_expiration_hours = 24
password_reset_expiration_minutes = 10
max_failed_otp_attempts = 5

RESET_FIELDS = {
    "password_reset_otp": "",
    "password_reset_expires": "",
    "password_reset_attempts": "",
}


def generate_otp_code(length: int = otp_code_length) -> str:
    upper_bound = 10**length
    return f"{secrets.randbelow(upper_bound):0{length}d}"


def is_well_formed_otp(otp: str) -> bool:
    return otp.isdigit() and len(otp) == otp_code_length


def persist_verification_code(db, email: str, otp: str):
    expires_at = utcnow() + timedelta(hours=verification_expiration_hours)
    db.email_verification_tokens.update_one(
        {"email": email},
        {
            "$set": {
                "email": email,
                "otp_hash": hash_password(otp),
                "expires_at": expires_at,
                "created_at": utcnow(),
                "failed_attempts": 0,
            }
        },
        upsert=True,
    )
    return expires_at


def dispatch_verification_code(db, email: str) -> Dict[str, object]:
    otp = generate_otp_code()
    expires_at = persist_verification_code(db, email, otp)

    sent, error_details = emails.send_verification_email(
        email, otp, verification_expiration_hours
    )
    if not sent:
        db.email_verification_tokens.delete_one({"email": email})
        return {
            "success": False,
            "error": error_details or "Failed to deliver verification email.",
        }

    return {"success": True, "expires_at": expires_at}


def register_auth_routes(app, db, limiter):
    auth_limit = limiter.limit(lambda: app.config["AUTH_RATE_LIMIT"])

    @app.route(f"{API_PREFIX}/auth/register", methods=["POST"])
    @auth_limit
    def register():
        """Create an account and email a six digit verification code."""
        payload = request.get_json(silent=True) or {}
        name = normalize_text(payload.get("name"))
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")
        phone_number = normalize_text(payload.get("phone_number"))

        errors: List[str] = []
        name_error = validate_name(name)
        if name_error:
            errors.append(name_error)
        if not is_valid_email(email):
            errors.append("email must be a valid email address")
        password_error = validate_password(password)
        if password_error:
            errors.append(password_error)
        if phone_number and not is_valid_phone(phone_number):
            errors.append("phone_number must be a valid phone number")
        if errors:
            return validation_error(errors)

        if db.users.find_one({"email": email}, {"_id": 1}):
            return error_response("EMAIL_EXISTS", 409)

        now = utcnow()
        user_document = {
            "name": name,
            "email": email,
            "password": hash_password(password),
            "role": "user",
            "phone_number": phone_number,
            "avatar": "",
            "is_active": True,
            "is_email_verified": False,
            "email_verified_at": None,
            "addresses": [],
            "cart": [],
            "wishlist": [],
            "orders": [],
            "points": 0,
            "failed_login_attempts": 0,
            "lock_until": None,
            "last_login_at": None,
            "created_at": now,
            "updated_at": now,
        }
        try:
            insert_result = db.users.insert_one(user_document)
        except DuplicateKeyError:
            return error_response("EMAIL_EXISTS", 409)
        user_document["_id"] = insert_result.inserted_id

        otp_result = dispatch_verification_code(db, email)
        if not otp_result.get("success"):
            app.logger.warning(
                "Verification email for %s was not delivered: %s",
                email,
                otp_result.get("error"),
            )

        app.logger.info("Registered new account %s", insert_result.inserted_id)
        return success_response(
            {
                "user": serialize_user(user_document),
                **issue_tokens(user_document),
                "requires_verification": True,
                "email_sent": bool(otp_result.get("success")),
                "verification_expires_at": isoformat(otp_result.get("expires_at")),
            },
            "REGISTER_SUCCESS",
            status=201,
        )

    @app.route(f"{API_PREFIX}/auth/login", methods=["POST"])
    @auth_limit
    def login():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")

        if not email or not password:
            return validation_error("email and password are required")

        user = db.users.find_one({"email": email})
        if not user:
            app.logger.warning("Login attempt for unknown email %s", email)
            return error_response("INVALID_CREDENTIALS", 401)

        now = utcnow()
        lock_until = user.get("lock_until")
        if lock_until and lock_until > now:
            return error_response(
                "ACCOUNT_LOCKED", 423, lock_until=isoformat(lock_until)
            )

        if not check_password(password, user.get("password")):
            failed_attempts = int(user.get("failed_login_attempts", 0) or 0) + 1
            max_attempts = int(app.config["MAX_FAILED_LOGIN_ATTEMPTS"])
            if failed_attempts >= max_attempts:
                lock_until = now + timedelta(minutes=int(app.config["ACCOUNT_LOCK_MINUTES"]))
                db.users.update_one(
                    {"_id": user["_id"]},
                    {"$set": {"failed_login_attempts": 0, "lock_until": lock_until}},
                )
                app.logger.warning(
                    "Account %s locked after %s failed logins", user["_id"], failed_attempts
                )
                return error_response(
                    "ACCOUNT_LOCKED", 423, lock_until=isoformat(lock_until)
                )

            db.users.update_one(
                {"_id": user["_id"]},
                {"$set": {"failed_login_attempts": failed_attempts, "lock_until": None}},
            )
            app.logger.warning(
                "Failed login for %s (%s/%s)", email, failed_attempts, max_attempts
            )
            return error_response("INVALID_CREDENTIALS", 401)

        if user.get("is_active") is False:
            return error_response("ACCOUNT_DISABLED", 403)

        if app.config.get("REQUIRE_EMAIL_VERIFICATION") and not user.get(
            "is_email_verified"
        ):
            return error_response(
                "EMAIL_NOT_VERIFIED", 403, requires_verification=True
            )

        db.users.update_one(
            {"_id": user["_id"]},
            {
                "$set": {
                    "failed_login_attempts": 0,
                    "lock_until": None,
                    "last_login_at": now,
                }
            },
        )
        user = db.users.find_one({"_id": user["_id"]})

        return success_response(
            {"user": serialize_user(user), **issue_tokens(user)}, "LOGIN_SUCCESS"
        )

    @app.route(f"{API_PREFIX}/auth/refresh-token", methods=["POST"])
    @jwt_required(refresh=True)
    def refresh_access_token():
        user_id = normalize_object_id_value(get_jwt_identity())
        user = db.users.find_one({"_id": user_id}) if user_id else None
        if not user:
            return error_response("UNAUTHORIZED", 401)
        if user.get("is_active") is False:
            return error_response("ACCOUNT_DISABLED", 403)

        access_token = create_access_token(
            identity=str(user["_id"]),
            additional_claims={
                "role": normalize_role(user.get("role")),
                "email": user.get("email", ""),
            },
        )
        expires = app.config["JWT_ACCESS_TOKEN_EXPIRES"]
        return success_response(
            {
                "access_token": access_token,
                "token_type": "Bearer",
                "expires_in": int(expires.total_seconds()),
            },
            "TOKEN_REFRESH_SUCCESS",
        )

    @app.route(f"{API_PREFIX}/auth/logout", methods=["POST"])
    @jwt_required()
    def logout():
        """Revoke the access token and, when supplied, the refresh token."""
        revoke_token(db, get_jwt())
        payload = request.get_json(silent=True) or {}
        refresh_token = str(payload.get("refresh_token") or "").strip()
        refresh_revoked = False
        if refresh_token:
            refresh_revoked = revoke_encoded_token(db, refresh_token, get_jwt_identity())
        return success_response(
            {"refresh_token_revoked": refresh_revoked}, "LOGOUT_SUCCESS"
        )

    @app.route(f"{API_PREFIX}/auth/verify-email", methods=["POST"])
    @auth_limit
    def verify_email():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        otp = str(payload.get("otp", "")).strip()

        if not is_valid_email(email):
            return validation_error("email must be a valid email address")
        if not is_well_formed_otp(otp):
            return validation_error(f"otp must be {otp_code_length} digits")

        user = db.users.find_one({"email": email})
        if user and user.get("is_email_verified"):
            return success_response({"verified": True}, "EMAIL_ALREADY_VERIFIED")

        code_record = db.email_verification_tokens.find_one({"email": email})
        if not code_record or not user:
            return error_response("VERIFICATION_CODE_EXPIRED", 400)

        expires_at = code_record.get("expires_at")
        if not expires_at or expires_at < utcnow():
            db.email_verification_tokens.delete_one({"_id": code_record["_id"]})
            return error_response("VERIFICATION_CODE_EXPIRED", 400)

        if not check_password(otp, code_record.get("otp_hash")):
            failed_attempts = int(code_record.get("failed_attempts", 0) or 0) + 1
            if failed_attempts >= max_failed_otp_attempts:
                db.email_verification_tokens.delete_one({"_id": code_record["_id"]})
                return error_response("VERIFICATION_TOO_MANY_ATTEMPTS", 400)

            db.email_verification_tokens.update_one(
                {"_id": code_record["_id"]},
                {"$set": {"failed_attempts": failed_attempts}},
            )
            return error_response("VERIFICATION_CODE_INVALID", 400)

        db.email_verification_tokens.delete_one({"_id": code_record["_id"]})
        verified_at = utcnow()
        db.users.update_one(
            {"_id": user["_id"]},
            {
                "$set": {
                    "is_email_verified": True,
                    "email_verified_at": verified_at,
                    "updated_at": verified_at,
                }
            },
        )
        app.logger.info("Email verified for user %s", user["_id"])
        return success_response(
            {"verified": True, "verified_at": isoformat(verified_at)}, "EMAIL_VERIFIED"
        )

    @app.route(f"{API_PREFIX}/auth/resend-verification-email", methods=["POST"])
    @auth_limit
    def resend_verification_email():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        if not is_valid_email(email):
            return validation_error("email must be a valid email address")

        user = db.users.find_one({"email": email})
        if user and user.get("is_email_verified"):
            return error_response("EMAIL_ALREADY_VERIFIED", 400)

        if user:
            otp_result = dispatch_verification_code(db, email)
            if not otp_result.get("success"):
                app.logger.warning(
                    "Verification email for %s was not delivered: %s",
                    email,
                    otp_result.get("error"),
                )
        else:
            app.logger.warning("Verification requested for unknown email %s", email)

        return success_response({"email": email}, "VERIFICATION_SENT")

    @app.route(f"{API_PREFIX}/auth/forgot-password", methods=["POST"])
    @auth_limit
    def forgot_password():
        """Always answers the same way so account existence does not leak."""
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))

        if not is_valid_email(email):
            return success_response(None, "PASSWORD_RESET_SENT")

        user = db.users.find_one({"email": email})
        if user:
            otp = generate_otp_code()
            db.users.update_one(
                {"_id": user["_id"]},
                {
                    "$set": {
                        "password_reset_otp": hash_password(otp),
                        "password_reset_attempts": 0,
                        "password_reset_expires": utcnow()
                        + timedelta(minutes=password_reset_expiration_minutes),
                    }
                },
            )
            emails.send_password_reset_email(
                email, otp, password_reset_expiration_minutes
            )

        return success_response(None, "PASSWORD_RESET_SENT")

    @app.route(f"{API_PREFIX}/auth/reset-password", methods=["POST"])
    @auth_limit
    def reset_password():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        otp = str(payload.get("otp", "")).strip()
        new_password = str(payload.get("new_password") or "")

        if not email or not otp or not new_password:
            return validation_error("email, otp and new_password are required")
        password_error = validate_password(new_password)
        if password_error:
            return validation_error(password_error)

        user = db.users.find_one({"email": email})
        if not user:
            return error_response("RESET_CODE_INVALID", 400)

        expires_at = user.get("password_reset_expires")
        if not expires_at or expires_at < utcnow():
            db.users.update_one(
                {"_id": user["_id"]},
                {"$unset": RESET_FIELDS},
            )
            return error_response("RESET_CODE_INVALID", 400)

        if not check_password(otp, user.get("password_reset_otp")):
            failed_attempts = int(user.get("password_reset_attempts", 0) or 0) + 1
            if failed_attempts >= max_failed_otp_attempts:
                db.users.update_one({"_id": user["_id"]}, {"$unset": RESET_FIELDS})
                app.logger.warning(
                    "Password reset code for user %s discarded after %s failed attempts",
                    user["_id"],
                    failed_attempts,
                )
            else:
                db.users.update_one(
                    {"_id": user["_id"]},
                    {"$set": {"password_reset_attempts": failed_attempts}},
                )
            return error_response("RESET_CODE_INVALID", 400)

        db.users.update_one(
            {"_id": user["_id"]},
            {
                "$set": {
                    "password": hash_password(new_password),
                    "failed_login_attempts": 0,
                    "lock_until": None,
                    "updated_at": utcnow(),
                },
                "$unset": RESET_FIELDS,
            },
        )
        app.logger.info("Password reset for user %s", user["_id"])
        return success_response(None, "PASSWORD_RESET_SUCCESS")
