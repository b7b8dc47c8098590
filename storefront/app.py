import logging
import os
from datetime import timedelta
from typing import Dict, Optional

import click
from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_pymongo import PyMongo
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .auth import register_auth_routes
from .cart import register_cart_routes
from .categories import register_category_routes
from .helpers import parse_bool
from .loyalty import expire_points, register_loyalty_routes
from .openapi import register_openapi_routes
from .orders import register_order_routes
from .products import register_product_routes
from .responses import error_response
from .security import register_jwt_callbacks
from .seed import seed_database
from .users import register_user_routes
from .wishlist import register_wishlist_routes

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name, str(default))
    try:
        return int(raw_value)
    except (TypeError, ValueError):
        return default


def load_config() -> Dict[str, object]:
    return {
        "APP_NAME": os.getenv("APP_NAME", "Storefront"),
        "MONGO_URI": os.getenv("MONGO_URI", "mongodb://localhost:27017/storefront"),
        "JWT_SECRET_KEY": os.getenv("JWT_SECRET_KEY", "change-me-in-production"),
        "JWT_ACCESS_TOKEN_EXPIRES": timedelta(
            minutes=_env_int("JWT_ACCESS_TOKEN_MINUTES", 15)
        ),
        "JWT_REFRESH_TOKEN_EXPIRES": timedelta(
            days=_env_int("JWT_REFRESH_TOKEN_DAYS", 7)
        ),
        "BCRYPT_ROUNDS": _env_int("BCRYPT_ROUNDS", 12),
        "REQUIRE_EMAIL_VERIFICATION": parse_bool(
            os.getenv("REQUIRE_EMAIL_VERIFICATION"), False
        ),
        "MAX_FAILED_LOGIN_ATTEMPTS": _env_int("MAX_FAILED_LOGIN_ATTEMPTS", 5),
        "ACCOUNT_LOCK_MINUTES": _env_int("ACCOUNT_LOCK_MINUTES", 15),
        "RESEND_API_KEY": (os.getenv("RESEND_API_KEY") or "").strip(),
        "EMAIL_SENDER": (
            os.getenv("EMAIL_SENDER", "no-reply@storefront.local")
            or "no-reply@storefront.local"
        ),
        "FRONTEND_URL": os.getenv("FRONTEND_URL", "http://localhost:5173").strip(),
        "CORS_ALLOWED_ORIGINS": os.getenv("CORS_ALLOWED_ORIGINS", ""),
        "TRUSTED_PROXY_HOPS": _env_int("TRUSTED_PROXY_HOPS", 1),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO").upper(),
        "RATELIMIT_ENABLED": parse_bool(os.getenv("RATELIMIT_ENABLED"), True),
        "RATELIMIT_STORAGE_URI": os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        "API_RATE_LIMIT": os.getenv("API_RATE_LIMIT", "100 per 15 minutes"),
        "AUTH_RATE_LIMIT": os.getenv("AUTH_RATE_LIMIT", "10 per minute"),
    }


def create_app(config_overrides: Optional[Dict] = None, database=None) -> Flask:
    """Create and configure the Flask application.

    ``database`` replaces the PyMongo connection, which lets tests run
    against an in-memory database.
    """
    app = Flask(__name__)
    app.config.update(load_config())
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(
        getattr(logging, str(app.config["LOG_LEVEL"]), logging.INFO)
    )
    app.json.sort_keys = False

    # Honor proxy headers so generated links keep the public HTTPS origin.
    trusted_proxy_hops = max(0, int(app.config["TRUSTED_PROXY_HOPS"]))
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:3000",
        str(app.config.get("FRONTEND_URL") or "").strip(),
    ]
    cors_extra = str(app.config.get("CORS_ALLOWED_ORIGINS") or "")
    for origin in cors_extra.split(","):
        trimmed = origin.strip()
        if trimmed:
            allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]
    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    jwt = JWTManager(app)
    limiter = Limiter(
        key_func=get_remote_address,
        app=app,
        default_limits=[lambda: app.config["API_RATE_LIMIT"]],
        storage_uri=app.config["RATELIMIT_STORAGE_URI"],
    )
    if database is None:
        mongo = PyMongo(app)
        db = mongo.db
    else:
        db = database
    app.extensions["storefront_db"] = db

    register_jwt_callbacks(jwt, db)
    ensure_indexes(app, db)

    register_auth_routes(app, db, limiter)
    register_user_routes(app, db)
    register_category_routes(app, db)
    register_product_routes(app, db)
    register_cart_routes(app, db)
    register_wishlist_routes(app, db)
    register_order_routes(app, db)
    register_loyalty_routes(app, db)
    register_openapi_routes(app)
    register_error_handlers(app)
    register_cli_commands(app, db)

    @app.route("/health")
    @limiter.exempt
    def health():
        """Report service liveness and database reachability."""
        try:
            db.command("ping")
            database_status = "ok"
        except PyMongoError as exc:
            app.logger.warning("Database ping failed: %s", exc)
            database_status = "unavailable"
        return jsonify({"status": "ok", "database": database_status}), 200

    return app


def ensure_indexes(app: Flask, db) -> None:
    try:
        db.users.create_index("email", unique=True)
        db.categories.create_index("slug", unique=True)
        db.categories.create_index([("parent", 1), ("sort_order", 1)])
        db.products.create_index("sku", unique=True)
        db.products.create_index([("category", 1), ("status", 1)])
        db.orders.create_index("order_number", unique=True)
        db.orders.create_index([("user_id", 1), ("created_at", -1)])
        db.loyalty_transactions.create_index([("user_id", 1), ("created_at", -1)])
        db.loyalty_transactions.create_index([("type", 1), ("expires_at", 1)])
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure collection indexes: %s", exc)

    try:
        db.email_verification_tokens.create_index("expires_at", expireAfterSeconds=0)
        db.token_blocklist.create_index("expires_at", expireAfterSeconds=0)
        db.token_blocklist.create_index("jti", unique=True)
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure TTL indexes for tokens: %s", exc)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(404)
    def route_not_found(error):
        app.logger.warning("Route not found: %s %s", request.method, request.path)
        return error_response("ROUTE_NOT_FOUND", 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response("METHOD_NOT_ALLOWED", 405)

    @app.errorhandler(HTTPException)
    def http_error(error):
        if error.code == 400:
            return error_response("VALIDATION_ERROR", 400)
        if error.code == 413:
            return error_response("VALIDATION_ERROR", 413)
        if error.code == 429:
            app.logger.warning("Rate limit exceeded on %s %s", request.method, request.path)
            return error_response("TOO_MANY_REQUESTS", 429)
        status = error.code or 500
        if status < 500:
            return error_response("REQUEST_ERROR", status)
        return error_response("INTERNAL_ERROR", status)

    @app.errorhandler(Exception)
    def unexpected_error(error):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return error_response("INTERNAL_ERROR", 500)


def register_cli_commands(app: Flask, db) -> None:
    @app.cli.command("seed")
    @click.option("--force", is_flag=True, help="Drop existing catalog data first.")
    def seed_command(force):
        """Load sample users, categories and products."""
        summary = seed_database(db, force=force)
        click.echo(
            "Seeded {users} users, {categories} categories and {products} products.".format(
                **summary
            )
        )

    @app.cli.command("expire-points")
    def expire_points_command():
        """Expire loyalty points whose validity window has passed."""
        result = expire_points(db)
        click.echo(
            f"Expired {result['expired_points']} points across "
            f"{result['processed_transactions']} transactions."
        )
