from flask import Blueprint, jsonify
from flask_login import current_user, login_user, logout_user
from Form.forms import LoginForm, SetupForm
from service import auth_service
from util.until import api_errors, json_error

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


# Đăng nhập
@auth_bp.route("/login", methods=["POST"])
@api_errors
def login():
    form = LoginForm()
    if not form.validate():
        return json_error("Username and password are required", 400)
    user = auth_service.verify(form.username.data, form.password.data)
    if not user:
        return json_error("Invalid username or password", 401)
    login_user(user, remember=True)
    return jsonify({"success": True, "username": user.username})


# Đăng xuất
@auth_bp.route("/logout", methods=["POST"])
def logout():
    logout_user()
    return jsonify({"success": True, "message": "Logged out"})


@auth_bp.route("/me", methods=["GET"])
def me():
    if not current_user.is_authenticated:
        return json_error("Not authenticated", 401)
    return jsonify({"success": True, "username": current_user.username})


@auth_bp.route("/verify", methods=["GET"])
def verify():
    config = auth_service.auth_config()
    return jsonify({
        "success": True,
        "authenticated": current_user.is_authenticated,
        "auth_enabled": auth_service.auth_enabled(),
        "setup_completed": config["setup_completed"],
        "username": current_user.username if current_user.is_authenticated else None,
    })


# Setup lần đầu
@auth_bp.route("/setup", methods=["GET"])
def setup_status():
    return jsonify({"success": True, **auth_service.auth_config()})


@auth_bp.route("/setup", methods=["POST"])
@api_errors
def setup():
    form = SetupForm()
    if not form.validate():
        return json_error(form.first_error(), 400)
    enabled = form.enabled.data if "enabled" in form.payload() else True
    auth_service.setup(form.username.data, form.password.data, enabled)
    if enabled:
        login_user(auth_service.verify(form.username.data, form.password.data), remember=True)
    return jsonify({"success": True, "message": "Authentication set up"})


@auth_bp.route("/setup/skip", methods=["POST"])
@api_errors
def skip_setup():
    auth_service.skip_setup()
    return jsonify({"success": True, "message": "Authentication disabled"})
