# Overview: Request decorators and error helpers for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import IntegrityFailure, StockLedgerError

TENANT_HEADER = "X-Tenant-Code"
ACTOR_HEADER = "X-Actor"


def require_tenant(f):
    """
    Establish tenant context from the X-Tenant-Code header.

    The tenant is resolved by the caller's gateway; this core only requires
    it to be present. Sets:
    - g.tenant_code: explicit tenant, passed as the first argument to services
    - g.actor: X-Actor header (may be None; routes fall back to the body)

    Returns 400 if the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_code = (request.headers.get(TENANT_HEADER) or "").strip()
        if not tenant_code:
            return jsonify({"error": f"{TENANT_HEADER} header is required", "code": "TENANT_REQUIRED"}), 400
        if len(tenant_code) > 50:
            return jsonify({"error": "Tenant code too long", "code": "TENANT_REQUIRED"}), 400

        g.tenant_code = tenant_code
        g.actor = (request.headers.get(ACTOR_HEADER) or "").strip() or None
        return f(*args, **kwargs)

    return decorated_function


def resolve_actor(data: dict | None = None):
    """Actor identity: X-Actor header first, else "actor" in the JSON body."""
    actor = getattr(g, "actor", None)
    if actor:
        return actor
    if data and data.get("actor"):
        return str(data["actor"]).strip() or None
    return None


def error_response(exc: StockLedgerError):
    """Serialize a typed error; integrity failures are logged for alerting."""
    if isinstance(exc, IntegrityFailure):
        current_app.logger.error("Integrity failure on %s %s: %s", request.method, request.path, exc.message)
    return jsonify(exc.to_dict()), exc.status_code
