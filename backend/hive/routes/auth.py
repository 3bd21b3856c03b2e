# Overview: Flask API routes for accounts; registration, login, OTP flows and post-purchase account creation.

# backend/hive/routes/auth.py
"""
Account API routes

SECURITY FEATURES:
- Password strength validation on registration and reset
- Opaque session tokens (hashed at rest, see session_service)
- Unverified accounts must confirm an emailed OTP from the second login on
- Password reset never reveals whether an email is registered
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..models import User
from ..services import auth_service
from ..services import session_service
from ..services import order_service
from ..services.auth_service import AuthError, PasswordValidationError
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
users_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")


def _issue_session(user):
    _, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return token


@auth_bp.post("/create-account-post-purchase")
def create_account_post_purchase_route():
    """
    Turn a guest buyer into an account and link their earlier guest orders.

    Request body:
    {
        "email": "buyer@example.com",
        "password": "secret123",
        "firstName": "Ada",   (optional)
        "lastName": "Obi"     (optional)
    }

    Returns:
        201: Account created, guest orders linked, session token issued
        400: Missing email/password or weak password
        409: Email already registered
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")
        if not email or not password:
            return jsonify({"error": "Please provide email and password"}), 400

        user, linked = order_service.create_account_after_purchase(
            email=email,
            password=password,
            first_name=data.get("firstName") or "",
            last_name=data.get("lastName") or "",
        )
        token = _issue_session(user)

        return jsonify({
            "message": "Account created successfully",
            "token": token,
            "user": user.to_dict(),
            "linked_orders": linked,
        }), 201

    except (ValidationError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError:
        return jsonify({"error": "Email already registered. Please login."}), 409
    except Exception:
        current_app.logger.exception("Failed to create account after purchase")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/register")
def register_route():
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.register_user(
            email=data.get("email"),
            password=data.get("password"),
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            phone=data.get("phone"),
        )
        token = _issue_session(user)
        return jsonify({"user": user.to_dict(), "token": token}), 201

    except (ValidationError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    From the second login on, an account whose phone is not verified gets an
    OTP by email instead of a token:
    { "requires_verification": true, "user_id": 7 }
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")
        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)

        if auth_service.requires_verification(user):
            auth_service.send_phone_otp(user)
            return jsonify({
                "requires_verification": True,
                "user_id": user.id,
                "message": "Please verify your account. OTP has been sent to your email.",
            }), 200

        token = _issue_session(user)
        return jsonify({"user": user.to_dict(), "token": token, "message": "Login successful"}), 200

    except AuthError:
        return jsonify({"error": "Invalid credentials"}), 401
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token, reason="User logout")
        return jsonify({"message": "Logout successful"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/verify-phone")
def verify_phone_route():
    """Confirm the login OTP; returns a session token on success."""
    try:
        data = request.get_json(silent=True) or {}
        user_id = data.get("userId")
        otp = data.get("otp")
        if not user_id or not otp:
            return jsonify({"error": "userId and otp required"}), 400

        user = auth_service.verify_phone_otp(int(user_id), str(otp))
        token = _issue_session(user)
        return jsonify({"user": user.to_dict(), "token": token, "message": "Account verified"}), 200

    except (ValueError, TypeError) as e:
        return jsonify({"error": str(e) or "Invalid request"}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to verify phone OTP")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/resend-otp")
def resend_otp_route():
    try:
        data = request.get_json(silent=True) or {}
        user_id = data.get("userId")
        if not user_id:
            return jsonify({"error": "userId required"}), 400

        user = db.session.get(User, int(user_id))
        if not user:
            return jsonify({"error": "User not found"}), 404
        if user.is_phone_verified:
            return jsonify({"error": "Account already verified"}), 400

        auth_service.send_phone_otp(user)
        return jsonify({"message": "OTP sent"}), 200

    except (ValueError, TypeError):
        return jsonify({"error": "userId must be an integer"}), 400
    except Exception:
        current_app.logger.exception("Failed to resend OTP")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/forgot-password")
def forgot_password_route():
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        if not email:
            return jsonify({"error": "email required"}), 400

        auth_service.request_password_reset(email)
        return jsonify({"message": "If that email is registered, a reset code has been sent."}), 200

    except Exception:
        current_app.logger.exception("Failed to start password reset")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/verify-reset-otp")
def verify_reset_otp_route():
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        otp = data.get("otp")
        if not email or not otp:
            return jsonify({"error": "email and otp required"}), 400

        auth_service.check_password_reset_otp(email, str(otp))
        return jsonify({"message": "OTP verified"}), 200

    except (ValidationError, NotFoundError):
        return jsonify({"error": "Invalid or expired OTP"}), 400
    except Exception:
        current_app.logger.exception("Failed to verify reset OTP")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/reset-password")
def reset_password_route():
    """Set a new password with a valid reset OTP; every existing session is revoked."""
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        otp = data.get("otp")
        new_password = data.get("newPassword") or data.get("password")
        if not all([email, otp, new_password]):
            return jsonify({"error": "email, otp and newPassword required"}), 400

        auth_service.reset_password(email, str(otp), new_password)
        return jsonify({"message": "Password reset successful"}), 200

    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except (ValidationError, NotFoundError):
        return jsonify({"error": "Invalid or expired OTP"}), 400
    except Exception:
        current_app.logger.exception("Failed to reset password")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@users_bp.put("/profile")
@require_auth
def update_profile_route():
    """
    Partial profile update.

    Request body (any subset):
    { "firstName": "Ada", "lastName": "Obi", "email": "...", "phone": "...", "address": {...} }
    """
    try:
        user = auth_service.update_profile(g.current_user, request.get_json(silent=True) or {})
        return jsonify({"user": user.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "field": e.field}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.put("/password")
@require_auth
def update_password_route():
    """Change password; all sessions are revoked and a fresh token returned."""
    try:
        data = request.get_json(silent=True) or {}
        current_password = data.get("currentPassword")
        new_password = data.get("newPassword")
        if not current_password or not new_password:
            return jsonify({"error": "Please provide current and new password"}), 400

        user = auth_service.change_password(g.current_user, current_password, new_password)
        token = _issue_session(user)
        return jsonify({"message": "Password updated successfully", "token": token}), 200

    except AuthError as e:
        return jsonify({"error": str(e)}), 401
    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update password")
        return jsonify({"error": "Internal server error"}), 500
