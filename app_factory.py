import logging
import os
import secrets
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_login import current_user
from werkzeug.exceptions import HTTPException

from database_init import db
from extensions import cors, csrf, login_manager, migrate, sock
from log import setup_logging
from util.until import str_to_bool

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

load_dotenv(os.getenv("ENV_FILE", os.path.join(BASE_DIR, ".env")))

logger = logging.getLogger(__name__)

# Reachable without a session even when login is enabled
PUBLIC_ENDPOINTS = {
    "auth.login",
    "auth.logout",
    "auth.verify",
    "auth.setup",
    "auth.setup_status",
    "auth.skip_setup",
    "home.home",
    "home.health",
}


def _default_config():
    data_dir = os.path.join(BASE_DIR, "data")
    return {
        "APP_ROOT": BASE_DIR,
        "SECRET_KEY": os.getenv("SECRET_KEY") or secrets.token_hex(32),
        "SQLALCHEMY_DATABASE_URI": os.getenv(
            "DATABASE_URL", f"sqlite:///{os.path.join(data_dir, 'pve_scripts.db')}"
        ),
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "PERMANENT_SESSION_LIFETIME": timedelta(days=7),
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SECURE": str_to_bool(os.getenv("SESSION_COOKIE_SECURE"), False),
        "SESSION_COOKIE_SAMESITE": "Lax",
        "ENV_FILE": os.getenv("ENV_FILE", os.path.join(BASE_DIR, ".env")),
        "SCRIPTS_DIR": os.getenv("SCRIPTS_DIR", os.path.join(BASE_DIR, "scripts")),
        "REPO_BRANCH": os.getenv("REPO_BRANCH", "main"),
        "JSON_FOLDER": os.getenv("JSON_FOLDER", "frontend/public/json"),
        "LOG_DIR": os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs")),
        "SSH_TIMEOUT": int(os.getenv("SSH_TIMEOUT", 20)),
        "INSTALL_MAX_RUNTIME": int(os.getenv("INSTALL_MAX_RUNTIME", 3600)),
        "INSTALL_IDLE_TIMEOUT": int(os.getenv("INSTALL_IDLE_TIMEOUT", 900)),
        "ENABLE_AUTO_SYNC_THREAD": str_to_bool(os.getenv("ENABLE_AUTO_SYNC_THREAD"), True),
    }


def _ensure_paths(app):
    os.makedirs(app.config["SCRIPTS_DIR"], exist_ok=True)
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        os.makedirs(os.path.dirname(uri[len("sqlite:///"):]) or ".", exist_ok=True)
    env_file = app.config["ENV_FILE"]
    if not os.path.exists(env_file):
        # set_key needs the file to exist
        open(env_file, "a").close()


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_mapping(_default_config())
    if test_config:
        app.config.from_mapping(test_config)

    # Cấu hình logging
    setup_logging(app.config["LOG_DIR"])
    _ensure_paths(app)

    # /ws routes must exist before sock.init_app registers its blueprint
    import routes.ws  # noqa: F401

    cors.init_app(app, resources={r"/api/*": {"origins": "*"}}, supports_credentials=True)
    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    sock.init_app(app)

    # Models phải được import trước create_all
    from models.backup import Backup, PBSCredential  # noqa: F401
    from models.installed_script import InstalledScript  # noqa: F401
    from models.repository import Repository  # noqa: F401
    from models.script_descriptor import Category, ScriptDescriptor  # noqa: F401
    from models.server import Server  # noqa: F401
    from service import auth_service

    # Định nghĩa user_loader cho Flask-Login
    @login_manager.user_loader
    def load_user(user_id):
        return auth_service.load_user(user_id)

    from routes.auth import auth_bp
    from routes.backup import backup_bp
    from routes.home import home_bp
    from routes.installed_script import installed_script_bp
    from routes.repository import repository_bp
    from routes.script import script_bp
    from routes.server import server_bp
    from routes.settings import settings_bp
    from routes.version import version_bp

    for bp in (
        home_bp,
        auth_bp,
        server_bp,
        installed_script_bp,
        backup_bp,
        script_bp,
        repository_bp,
        settings_bp,
        version_bp,
    ):
        # JSON API, session cookie + SameSite instead of CSRF tokens
        csrf.exempt(bp)
        app.register_blueprint(bp)

    # Kiểm soát truy cập khi AUTH_ENABLED=true
    @app.before_request
    def require_login():
        if not (request.path.startswith("/api/") or request.path.startswith("/ws/")):
            return None
        if request.method == "OPTIONS" or request.endpoint in PUBLIC_ENDPOINTS:
            return None
        if current_user.is_authenticated or not auth_service.auth_enabled():
            return None
        return jsonify({"success": False, "error": "Authentication required"}), 401

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"success": False, "error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        logger.error(f"Unhandled error on {request.path}: {e}", exc_info=True)
        return jsonify({"success": False, "error": "Internal server error"}), 500

    with app.app_context():
        from service.repository_service import seed_default_repository

        db.create_all()
        seed_default_repository()

    if app.config["ENABLE_AUTO_SYNC_THREAD"]:
        from service.auto_sync_service import start_auto_sync_thread

        start_auto_sync_thread(app)

    return app
