import inspect
import re
from typing import Dict

from flask import jsonify

from .helpers import API_PREFIX

API_VERSION = "1.0.0"
PUBLIC_PREFIXES = ("/auth/",)
PUBLIC_READ_PREFIXES = ("/categories", "/products")
TOKEN_AUTH_PATHS = {"/auth/logout", "/auth/refresh-token"}
ADMIN_READ_PATHS = {"/categories/with-product-count", "/categories/validate-hierarchy"}
_converter_regex = re.compile(r"<(?:[^:<>]+:)?([^<>]+)>")


def _is_public(path: str, method: str) -> bool:
    relative = path[len(API_PREFIX):]
    if relative == "/openapi.json":
        return True
    if relative.startswith(PUBLIC_PREFIXES):
        return relative not in TOKEN_AUTH_PATHS
    if method != "get" or not relative.startswith(PUBLIC_READ_PREFIXES):
        return False
    if relative in ADMIN_READ_PATHS:
        return False
    return "/admin" not in relative and "/analytics" not in relative


def build_openapi_document(app) -> Dict[str, object]:
    """Describe every ``/api/v1`` route registered on ``app``.

    Summaries come from the first docstring line of each view.
    """
    paths: Dict[str, Dict[str, object]] = {}
    for rule in sorted(app.url_map.iter_rules(), key=lambda item: item.rule):
        if not rule.rule.startswith(API_PREFIX) or rule.endpoint == "static":
            continue

        path = _converter_regex.sub(r"{\1}", rule.rule)
        view = app.view_functions[rule.endpoint]
        docstring = inspect.getdoc(view) or ""
        tag = path[len(API_PREFIX):].strip("/").split("/")[0] or "root"
        parameters = [
            {"name": name, "in": "path", "required": True, "schema": {"type": "string"}}
            for name in rule.arguments
        ]

        for method in sorted((rule.methods or set()) - {"HEAD", "OPTIONS"}):
            method = method.lower()
            operation: Dict[str, object] = {
                "operationId": rule.endpoint,
                "tags": [tag],
                "summary": docstring.splitlines()[0] if docstring else rule.endpoint.replace("_", " "),
                "responses": {
                    "200": {"description": "Success"},
                    "400": {"description": "Validation error"},
                },
            }
            if docstring and "\n" in docstring:
                operation["description"] = docstring
            if parameters:
                operation["parameters"] = parameters
            if method in ("post", "put", "patch"):
                operation["requestBody"] = {
                    "required": False,
                    "content": {"application/json": {"schema": {"type": "object"}}},
                }
            if _is_public(path, method):
                operation["security"] = []
            else:
                operation["responses"]["401"] = {"description": "Authentication required"}
            paths.setdefault(path, {})[method] = operation

    return {
        "openapi": "3.0.3",
        "info": {
            "title": f"{app.config.get('APP_NAME', 'Storefront')} API",
            "version": API_VERSION,
            "description": "E-commerce backend: catalog, cart, wishlist, orders and loyalty points.",
        },
        "servers": [{"url": "/"}],
        "components": {
            "securitySchemes": {
                "bearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
            }
        },
        "security": [{"bearerAuth": []}],
        "paths": paths,
    }


def register_openapi_routes(app):
    @app.route(f"{API_PREFIX}/openapi.json", methods=["GET"])
    def openapi_document():
        """OpenAPI document for the registered API routes."""
        return jsonify(build_openapi_document(app)), 200
