# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/storefront/routes/auth.py
"""
Authentication API routes

- Self-registration creates a "user" account (role is never client-chosen)
- Reseller applications are created pending and cannot sign in until approved
- Password strength validation on registration
- Session management with bearer tokens
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..errors import StoreError, error_response, internal_error_response
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_payload(user, message: str):
    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return {
        "success": True,
        "user": user.to_dict(),
        "token": token,
        "session": session.to_dict(),
        "message": message,
    }


@auth_bp.post("/register")
def register_route():
    """
    Register a customer account and log it in.

    Request body: {"name", "email", "password", "phone" (optional)}
    """
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.create_user(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            phone=data.get("phone"),
        )
        current_app.logger.info("Registered user %s", user.id)
        return jsonify(_session_payload(user, "Registration successful")), 201

    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to register user")
        return internal_error_response(e)


@auth_bp.post("/register-reseller")
def register_reseller_route():
    """
    Apply for a reseller account.

    Request body: {"name", "email", "password", "business_name",
    "phone" (optional), "gst_number" (optional)}

    No session is issued; the applicant can sign in once an admin approves.
    """
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.register_reseller(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            phone=data.get("phone"),
            business_name=data.get("business_name"),
            gst_number=data.get("gst_number"),
        )
        current_app.logger.info("Reseller application %s received", user.id)
        return jsonify({
            "success": True,
            "user": user.to_dict(),
            "message": "Reseller application submitted. Please wait for admin approval.",
        }), 201

    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to register reseller")
        return internal_error_response(e)


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"success": False, "error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            return jsonify({"success": False, "error": "Invalid credentials"}), 401

        auth_service.ensure_can_sign_in(user)
        return jsonify(_session_payload(user, "Login successful")), 200

    except StoreError as e:
        return error_response(e)
    except Exception as e:
        current_app.logger.exception("Failed to login user")
        return internal_error_response(e)


@auth_bp.post("/logout")
def logout_route():
    """Revoke the bearer token."""
    try:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"success": False, "error": "Authorization header required"}), 401

        token = auth_header.split(" ", 1)[1]
        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"success": False, "error": "Invalid or expired token"}), 401

        return jsonify({"success": True, "message": "Logout successful"}), 200

    except Exception as e:
        current_app.logger.exception("Failed to logout user")
        return internal_error_response(e)


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({
        "success": True,
        "user": g.current_user.to_dict(),
        "session": g.session_context.session.to_dict(),
    }), 200
