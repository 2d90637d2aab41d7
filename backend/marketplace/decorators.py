# Overview: Request decorators for admin and cron API routes.

import hmac
from functools import wraps
from flask import request, jsonify, g, current_app

from .services import auth_service
from .services.auth_service import AuthServiceError, AuthUser


def require_admin(f):
    """
    Require an authenticated admin.

    Sets g.current_user to the AuthUser behind the token.

    SECURITY: Returns 401 if:
    - No admin_token cookie and no Authorization: Bearer header
    - Token rejected by the auth service
    Returns 403 if the user's email is not on ADMIN_EMAILS.
    Returns 503 if the auth service cannot be reached.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if auth_service.should_bypass_auth():
            g.current_user = AuthUser(id="dev", email="dev@localhost")
            return f(*args, **kwargs)

        if not auth_service.token_from_request():
            return jsonify({"error": "Authentication required"}), 401

        try:
            user = auth_service.authenticate_request()
        except AuthServiceError:
            current_app.logger.exception("Failed to validate admin token")
            return jsonify({"error": "Authentication service unavailable"}), 503

        if user is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        if not auth_service.is_admin_email(user.email):
            current_app.logger.warning("Non-admin %s denied on %s", user.email, request.path)
            return jsonify({"error": "Access denied. Admin privileges required."}), 403

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_cron_secret(f):
    """
    Require the cron shared secret (Authorization: Bearer CRON_SECRET) or the
    scheduler platform's X-Vercel-Cron header. Open when no secret is configured.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET")
        if secret:
            header = request.headers.get("Authorization") or ""
            supplied = header.split(" ", 1)[1] if header.startswith("Bearer ") else ""
            from_platform = bool(request.headers.get("X-Vercel-Cron"))
            if not from_platform and not hmac.compare_digest(supplied.encode(), secret.encode()):
                return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)

    return decorated_function
