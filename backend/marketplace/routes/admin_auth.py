# Overview: Admin session routes; password login via the auth service, cookie logout, session check.

# backend/marketplace/routes/admin_auth.py
"""
Admin session routes.

Login trades email/password for an access token and stores it in an
httponly admin_token cookie. API clients may send the same token as
Authorization: Bearer instead.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_admin
from ..services import auth_service
from ..services.auth_service import AuthServiceError, InvalidCredentialsError

admin_auth_bp = Blueprint("admin_auth", __name__, url_prefix="/api/admin")


@admin_auth_bp.post("/login")
def login_route():
    """
    Body: {"email", "password"}

    401 bad credentials, 403 not on the admin allow-list, 503 auth service down.
    """
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    try:
        session = auth_service.login_admin(email, password)
    except PermissionError as e:
        return jsonify({"error": str(e)}), 403
    except InvalidCredentialsError as e:
        return jsonify({"error": str(e)}), 401
    except AuthServiceError:
        current_app.logger.exception("Failed to login admin")
        return jsonify({"error": "Authentication service unavailable"}), 503

    response = jsonify({
        "success": True,
        "user": session.user.to_dict(),
        "token": session.access_token,
        "expires_in": session.expires_in,
    })
    response.set_cookie(
        current_app.config["ADMIN_COOKIE_NAME"],
        session.access_token,
        max_age=min(session.expires_in, current_app.config["ADMIN_COOKIE_MAX_AGE"]),
        httponly=True,
        secure=current_app.config.get("APP_ENV") == "production",
        samesite="Lax",
        path="/",
    )
    return response, 200


@admin_auth_bp.post("/logout")
def logout_route():
    response = jsonify({"success": True})
    response.delete_cookie(current_app.config["ADMIN_COOKIE_NAME"], path="/")
    return response, 200


@admin_auth_bp.get("/auth")
@require_admin
def auth_status_route():
    """Current admin, or 401/403 from require_admin."""
    return jsonify({"authenticated": True, "user": g.current_user.to_dict()}), 200
