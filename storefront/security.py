from datetime import datetime
from typing import Dict, Optional

import bcrypt
from flask import current_app
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_jwt_identity,
)
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from .helpers import normalize_object_id_value, utcnow
from .responses import error_response

ALLOWED_USER_ROLES = {"user", "admin"}


def hash_password(password: str) -> str:
    rounds = int(current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def check_password(password: str, stored_hash) -> bool:
    if not password or not stored_hash:
        return False
    if isinstance(stored_hash, str):
        stored_hash = stored_hash.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored_hash)
    except ValueError:
        return False


def normalize_role(value: Optional[str]) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in ALLOWED_USER_ROLES else "user"


def load_current_user(db):
    user_id = normalize_object_id_value(get_jwt_identity())
    if not user_id:
        return None
    return db.users.find_one({"_id": user_id})


def require_role(db, *roles: str):
    """Resolve the authenticated user and check it against ``roles``.

    Must run after ``jwt_required``. Returns ``(user, None)`` on success and
    ``(None, error_response)`` otherwise; an empty ``roles`` accepts any
    active account.
    """
    current_user = load_current_user(db)
    if not current_user:
        return None, error_response("UNAUTHORIZED", 401)

    if current_user.get("is_active") is False:
        return None, error_response("ACCOUNT_DISABLED", 403)

    allowed = {normalize_role(role) for role in roles if role}
    user_role = normalize_role(current_user.get("role"))
    if not allowed or user_role in allowed:
        return current_user, None

    return None, error_response("FORBIDDEN", 403)


def require_admin_user(db):
    return require_role(db, "admin")


def issue_tokens(user_document) -> Dict[str, object]:
    identity = str(user_document["_id"])
    claims = {
        "role": normalize_role(user_document.get("role")),
        "email": user_document.get("email", ""),
    }
    access_expires = current_app.config["JWT_ACCESS_TOKEN_EXPIRES"]
    return {
        "access_token": create_access_token(
            identity=identity, additional_claims=claims
        ),
        "refresh_token": create_refresh_token(
            identity=identity, additional_claims=claims
        ),
        "token_type": "Bearer",
        "expires_in": int(access_expires.total_seconds()),
    }


def revoke_token(db, decoded_token: Dict[str, object]) -> None:
    jti = decoded_token.get("jti")
    if not jti:
        return
    expires = decoded_token.get("exp")
    expires_at = (
        datetime.utcfromtimestamp(int(expires)) if expires else utcnow()
    )
    db.token_blocklist.update_one(
        {"jti": jti},
        {
            "$set": {
                "jti": jti,
                "token_type": decoded_token.get("type"),
                "user_id": decoded_token.get("sub"),
                "expires_at": expires_at,
                "created_at": utcnow(),
            }
        },
        upsert=True,
    )


def revoke_encoded_token(db, encoded_token: str, expected_identity: str) -> bool:
    """Revoke a raw refresh token sent alongside a logout request.

    Tokens that fail to decode or belong to someone else are ignored.
    """
    try:
        decoded = decode_token(encoded_token, allow_expired=True)
    except (JWTExtendedException, PyJWTError) as exc:
        current_app.logger.warning("Ignoring undecodable token on logout: %s", exc)
        return False
    if str(decoded.get("sub")) != str(expected_identity):
        return False
    revoke_token(db, decoded)
    return True


def register_jwt_callbacks(jwt: JWTManager, db) -> None:
    @jwt.token_in_blocklist_loader
    def is_token_revoked(jwt_header, jwt_payload) -> bool:
        return (
            db.token_blocklist.find_one({"jti": jwt_payload.get("jti")}) is not None
        )

    @jwt.revoked_token_loader
    def revoked_token_response(jwt_header, jwt_payload):
        return error_response("TOKEN_REVOKED", 401)

    @jwt.expired_token_loader
    def expired_token_response(jwt_header, jwt_payload):
        return error_response("TOKEN_EXPIRED", 401)

    @jwt.invalid_token_loader
    def invalid_token_response(reason):
        current_app.logger.warning("Rejected invalid token: %s", reason)
        return error_response("TOKEN_INVALID", 401)

    @jwt.unauthorized_loader
    def missing_token_response(reason):
        return error_response("TOKEN_MISSING", 401)

    @jwt.needs_fresh_token_loader
    def stale_token_response(jwt_header, jwt_payload):
        return error_response("TOKEN_INVALID", 401)

    @jwt.user_lookup_error_loader
    def unknown_user_response(jwt_header, jwt_payload):
        return error_response("UNAUTHORIZED", 401)

    @jwt.token_verification_failed_loader
    def failed_verification_response(jwt_header, jwt_payload):
        return error_response("TOKEN_INVALID", 401)
