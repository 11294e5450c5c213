from flask import Blueprint, jsonify
from service import auto_sync_service, version_service

home_bp = Blueprint("home", __name__)


@home_bp.route("/")
def home():
    # Map of the API for the UI / curl users, grouped like the dashboard tabs
    home_sections = [
        {
            "title": "Scripts",
            "endpoints": [
                "GET /api/scripts",
                "GET /api/scripts/categories",
                "POST /api/scripts/sync",
                "POST /api/scripts/<slug>/load",
                "WS /ws/script-execution",
            ],
        },
        {
            "title": "Installed scripts",
            "endpoints": [
                "GET /api/installed-scripts",
                "GET /api/installed-scripts/stats",
                "POST /api/installed-scripts/auto-detect",
                "POST /api/installed-scripts/cleanup",
            ],
        },
        {
            "title": "Servers",
            "endpoints": ["GET /api/servers", "POST /api/servers/generate-keypair"],
        },
        {
            "title": "Settings",
            "endpoints": [
                "GET /api/repositories",
                "GET /api/settings/auto-sync",
                "GET /api/version/status",
            ],
        },
    ]
    return jsonify({"name": "PVE Scripts Local", "sections": home_sections})


@home_bp.route("/api/health")
def health():
    try:
        version = version_service.current_version()
    except RuntimeError:
        version = None
    return jsonify({
        "success": True,
        "version": version,
        "auto_sync": auto_sync_service.auto_sync_health(),
    })
