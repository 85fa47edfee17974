from flask import current_app, g, jsonify, request
from flask_login import current_user, login_user, logout_user

from shiori.auth import auth_bp
from shiori.extensions import db
from shiori.models import ApiToken, User
from shiori.services.audit import (
    ACTION_LOGIN,
    ACTION_LOGIN_FAILED,
    ACTION_LOGOUT,
    ACTION_REGISTER,
    ACTION_TOKEN_CREATE,
    OUTCOME_FAILURE,
    SEVERITY_MEDIUM,
    log_audit_event,
)
from shiori.services.security import api_auth_required
from shiori.services.validation import (
    ValidationError,
    api_error,
    validate_registration_payload,
)


def _credentials():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    return payload, username, password


def _authenticate(username: str, password: str):
    user = User.query.filter_by(username=username).first()
    if user and user.is_active and user.check_password(password):
        return user

    current_app.logger.warning("Rejected credentials for user %r", username)
    log_audit_event(
        ACTION_LOGIN_FAILED,
        user.id if user else None,
        resource_type="user",
        details={"username": username},
        severity=SEVERITY_MEDIUM,
        outcome=OUTCOME_FAILURE,
    )
    db.session.commit()
    return None


@auth_bp.errorhandler(ValidationError)
def handle_validation_error(error: ValidationError):
    return api_error("VALIDATION_ERROR", error.message, 400, error.details)


@auth_bp.route("/bootstrap-admin", methods=["POST"])
def bootstrap_admin():
    if User.query.count() > 0:
        return api_error("CONFLICT", "bootstrap already completed", 409)

    _, username, password = _credentials()
    if not username or not password:
        return api_error("VALIDATION_ERROR", "username and password are required", 400)

    admin = User(username=username, is_admin=True, is_active=True)
    admin.set_password(password)
    db.session.add(admin)
    db.session.flush()
    log_audit_event(ACTION_REGISTER, admin.id, "user", admin.id, {"admin": True})
    db.session.commit()
    return jsonify({"status": "created", "user_id": admin.id}), 201


@auth_bp.route("/register", methods=["POST"])
def register():
    data = validate_registration_payload(request.get_json(silent=True) or {})
    if User.query.filter_by(username=data["username"]).first():
        return api_error("CONFLICT", "username already exists", 409)
    if data["email"] and User.query.filter_by(email=data["email"]).first():
        return api_error("CONFLICT", "email already registered", 409)

    user = User(username=data["username"], email=data["email"], is_active=True)
    user.set_password(data["password"])
    db.session.add(user)
    db.session.flush()
    log_audit_event(ACTION_REGISTER, user.id, "user", user.id)
    db.session.commit()
    return jsonify({"data": user.as_dict()}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    _, username, password = _credentials()
    if not username or not password:
        return api_error("VALIDATION_ERROR", "username and password are required", 400)

    user = _authenticate(username, password)
    if not user:
        return api_error("AUTHENTICATION_ERROR", "invalid credentials", 401)

    login_user(user)
    log_audit_event(ACTION_LOGIN, user.id, "user", user.id)
    db.session.commit()
    return jsonify({"data": user.as_dict()})


@auth_bp.route("/logout", methods=["POST"])
@api_auth_required()
def logout():
    log_audit_event(ACTION_LOGOUT, g.api_user.id, "user", g.api_user.id)
    db.session.commit()
    if current_user.is_authenticated:
        logout_user()
    return jsonify({"status": "logged_out"})


@auth_bp.route("/me", methods=["GET"])
@api_auth_required()
def me():
    return jsonify({"data": g.api_user.as_dict()})


@auth_bp.route("/token", methods=["POST"])
def create_token_with_credentials():
    payload, username, password = _credentials()
    token_name = (payload.get("token_name") or "Shiori API Token").strip()[:100]

    user = _authenticate(username, password)
    if not user:
        return api_error("AUTHENTICATION_ERROR", "invalid credentials", 401)

    token, token_hash = ApiToken.issue_token(current_app.config["TOKEN_PREFIX"])
    row = ApiToken(user_id=user.id, name=token_name, token_hash=token_hash)
    db.session.add(row)
    db.session.flush()
    log_audit_event(ACTION_TOKEN_CREATE, user.id, "api_token", row.id)
    db.session.commit()
    return jsonify({"token": token, "token_name": token_name, "user_id": user.id})
