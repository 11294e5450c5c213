import logging
from werkzeug.security import check_password_hash, generate_password_hash
from models.user import User
from util.env_store import delete_setting, get_bool, get_setting, set_bool, set_setting

logger = logging.getLogger(__name__)


def auth_config():
    username = get_setting("AUTH_USERNAME")
    return {
        "username": username,
        "has_credentials": bool(username and get_setting("AUTH_PASSWORD_HASH")),
        "enabled": get_bool("AUTH_ENABLED"),
        "setup_completed": get_bool("AUTH_SETUP_COMPLETED"),
    }


def auth_enabled():
    return get_bool("AUTH_ENABLED") and bool(get_setting("AUTH_PASSWORD_HASH"))


def load_user(user_id):
    """user_loader cho Flask-Login."""
    if user_id and user_id == get_setting("AUTH_USERNAME"):
        return User(user_id)
    return None


def set_credentials(username, password, enabled=None):
    set_setting("AUTH_USERNAME", username.strip())
    set_setting("AUTH_PASSWORD_HASH", generate_password_hash(password))
    if enabled is not None:
        set_bool("AUTH_ENABLED", enabled)
    set_bool("AUTH_SETUP_COMPLETED", True)
    logger.info(f"Auth credentials updated for {username}")


def setup(username, password, enabled=True):
    """Lần setup đầu tiên; sau đó chỉ đổi qua settings."""
    if get_bool("AUTH_SETUP_COMPLETED") and get_setting("AUTH_PASSWORD_HASH"):
        raise PermissionError("Authentication is already set up")
    set_credentials(username, password, enabled)


def skip_setup():
    if get_bool("AUTH_SETUP_COMPLETED") and get_setting("AUTH_PASSWORD_HASH"):
        raise PermissionError("Authentication is already set up")
    set_bool("AUTH_ENABLED", False)
    set_bool("AUTH_SETUP_COMPLETED", True)


def set_enabled(enabled):
    if enabled and not get_setting("AUTH_PASSWORD_HASH"):
        raise ValueError("Set a username and password before enabling authentication")
    set_bool("AUTH_ENABLED", enabled)


def clear_credentials():
    for key in ("AUTH_USERNAME", "AUTH_PASSWORD_HASH"):
        delete_setting(key)
    set_bool("AUTH_ENABLED", False)


def verify(username, password):
    """Trả về User nếu đúng tài khoản, ngược lại None."""
    stored_user = get_setting("AUTH_USERNAME")
    stored_hash = get_setting("AUTH_PASSWORD_HASH")
    if not stored_user or not stored_hash or username != stored_user:
        return None
    if not check_password_hash(stored_hash, password):
        return None
    return User(stored_user)
