# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .services.tenant_service import TenantAccessError, build_tenant_context


def _header_int(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        raise TenantAccessError(f"{name} header must be an integer")


def require_tenant(f):
    """
    Require an identified caller and establish tenant context.

    Identity is established upstream (gateway / auth service) and forwarded
    as headers:
    - X-User-Id: the authenticated user - REQUIRED
    - X-Company-Id: the user's company
    - X-Branch-Id: the user's branch (None for company-level users)
    - X-User-Role: optional role label

    Sets g.tenant to a TenantContext.

    SECURITY: Returns 401 without a user and 403 when the claimed branch
    does not belong to the claimed company.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            user_id = _header_int("X-User-Id")
            if user_id is None:
                return jsonify({"error": "Authentication required"}), 401

            g.tenant = build_tenant_context(
                user_id=user_id,
                company_id=_header_int("X-Company-Id"),
                branch_id=_header_int("X-Branch-Id"),
                role=request.headers.get("X-User-Role"),
            )
        except TenantAccessError as e:
            current_app.logger.warning("Tenant context rejected for %s: %s", request.path, e)
            return jsonify({"error": str(e)}), 403

        return f(*args, **kwargs)

    return decorated_function
