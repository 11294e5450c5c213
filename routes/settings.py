from flask import Blueprint, jsonify, request
from service import auth_service, auto_sync_service, notification_service
from util.env_store import (
    delete_setting,
    get_bool,
    get_json,
    get_setting,
    set_bool,
    set_json,
    set_setting,
)
from util.until import api_errors, json_error

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")

VIEW_MODES = ("card", "list")
FILTER_FIELDS = ("searchQuery", "showUpdatable", "selectedTypes", "sortBy", "sortOrder")


def _body():
    return request.get_json(silent=True) or {}


def _require_bool(data, key):
    value = data.get(key)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean")
    return value


# ---------- GitHub token ----------

@settings_bp.route("/github-token", methods=["GET"])
def github_token():
    token = get_setting("GITHUB_TOKEN")
    # Only a masked preview leaves the server
    masked = f"{token[:4]}…{token[-4:]}" if token and len(token) > 8 else None
    return jsonify({"success": True, "configured": bool(token), "token": masked})


@settings_bp.route("/github-token", methods=["POST"])
@api_errors
def save_github_token():
    token = (_body().get("token") or "").strip()
    if not token:
        raise ValueError("token is required")
    set_setting("GITHUB_TOKEN", token)
    return jsonify({"success": True, "message": "GitHub token saved"})


@settings_bp.route("/github-token", methods=["DELETE"])
def delete_github_token():
    delete_setting("GITHUB_TOKEN")
    return jsonify({"success": True, "message": "GitHub token removed"})


# ---------- Filters ----------

@settings_bp.route("/save-filter", methods=["GET"])
def save_filter():
    return jsonify({"success": True, "enabled": get_bool("SAVE_FILTER")})


@settings_bp.route("/save-filter", methods=["POST"])
@api_errors
def set_save_filter():
    enabled = _require_bool(_body(), "enabled")
    set_bool("SAVE_FILTER", enabled)
    if not enabled:
        delete_setting("FILTERS")
    return jsonify({"success": True, "enabled": enabled})


@settings_bp.route("/filters", methods=["GET"])
def filters():
    return jsonify({"success": True, "filters": get_json("FILTERS")})


@settings_bp.route("/filters", methods=["POST"])
@api_errors
def save_filters():
    data = _body().get("filters")
    if not isinstance(data, dict):
        raise ValueError("Filters object is required")
    missing = [f for f in FILTER_FIELDS if f not in data]
    if missing:
        raise ValueError(f"Missing required field: {missing[0]}")
    set_json("FILTERS", data)
    return jsonify({"success": True, "message": "Filters saved"})


@settings_bp.route("/filters", methods=["DELETE"])
def clear_filters():
    delete_setting("FILTERS")
    return jsonify({"success": True, "message": "Filters cleared"})


# ---------- Display ----------

@settings_bp.route("/color-coding", methods=["GET"])
def color_coding():
    return jsonify({"success": True, "enabled": get_bool("SERVER_COLOR_CODING_ENABLED")})


@settings_bp.route("/color-coding", methods=["POST"])
@api_errors
def set_color_coding():
    enabled = _require_bool(_body(), "enabled")
    set_bool("SERVER_COLOR_CODING_ENABLED", enabled)
    return jsonify({"success": True, "enabled": enabled})


@settings_bp.route("/view-mode", methods=["GET"])
def view_mode():
    return jsonify({"success": True, "viewMode": get_setting("VIEW_MODE", "card")})


@settings_bp.route("/view-mode", methods=["POST"])
@api_errors
def set_view_mode():
    mode = _body().get("viewMode")
    if mode not in VIEW_MODES:
        raise ValueError("viewMode must be 'card' or 'list'")
    set_setting("VIEW_MODE", mode)
    return jsonify({"success": True, "viewMode": mode})


# ---------- Auth credentials ----------

@settings_bp.route("/auth-credentials", methods=["GET"])
def auth_credentials():
    return jsonify({"success": True, **auth_service.auth_config()})


@settings_bp.route("/auth-credentials", methods=["POST"])
@api_errors
def save_auth_credentials():
    data = _body()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if len(username) < 3:
        raise ValueError("Username must be at least 3 characters")
    if len(password) < 6:
        raise ValueError("Password must be at least 6 characters")
    enabled = data.get("enabled")
    auth_service.set_credentials(username, password, bool(enabled) if enabled is not None else None)
    return jsonify({"success": True, "message": "Credentials updated"})


@settings_bp.route("/auth-credentials", methods=["PATCH"])
@api_errors
def toggle_auth():
    enabled = _require_bool(_body(), "enabled")
    auth_service.set_enabled(enabled)
    return jsonify({
        "success": True,
        "message": f"Authentication {'enabled' if enabled else 'disabled'} successfully",
    })


# ---------- Auto-sync ----------

@settings_bp.route("/auto-sync", methods=["GET"])
def auto_sync():
    return jsonify({"success": True, "settings": auto_sync_service.get_settings()})


@settings_bp.route("/auto-sync", methods=["POST"])
@api_errors
def save_auto_sync():
    settings = auto_sync_service.save_settings(_body())
    return jsonify({"success": True, "settings": settings})


@settings_bp.route("/auto-sync/run", methods=["POST"])
@api_errors
def run_auto_sync():
    result = auto_sync_service.run_auto_sync()
    if result.get("already_running"):
        return json_error("Auto-sync already running", 409)
    return jsonify(result), 200 if result.get("success") else 502


@settings_bp.route("/auto-sync/test-notification", methods=["POST"])
@api_errors
def test_notification():
    return jsonify(notification_service.send_test_notification())


@settings_bp.route("/auto-sync/health", methods=["GET"])
def auto_sync_health():
    return jsonify({"success": True, **auto_sync_service.auto_sync_health()})
