# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return False


def require_identity(f):
    """
    Establish caller identity from the upstream auth layer.

    Token verification happens before requests reach this service; the auth
    collaborator forwards the verified identity as headers:
    - X-Tenant-Id (required) -> g.tenant_id
    - X-User-Id (optional)   -> g.user_id

    Returns 400 if the tenant header is missing or not an integer. There is
    no default tenant.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = _header_int("X-Tenant-Id")
        if tenant_id is None:
            return jsonify({"error": "X-Tenant-Id header required"}), 400
        if tenant_id is False:
            return jsonify({"error": "X-Tenant-Id must be an integer"}), 400

        user_id = _header_int("X-User-Id")
        if user_id is False:
            return jsonify({"error": "X-User-Id must be an integer"}), 400

        g.tenant_id = tenant_id
        g.user_id = user_id
        return f(*args, **kwargs)

    return decorated_function
