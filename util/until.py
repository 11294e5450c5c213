import logging
from functools import wraps

import requests
from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

from database_init import db

logger = logging.getLogger(__name__)

TRUE_STRINGS = {"1", "true", "yes", "on"}


def str_to_bool(value, default=None):
    """'true' / '1' / 'yes' -> True, None/'' -> default."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_STRINGS


def json_error(message, status=400):
    return jsonify({"success": False, "error": str(message)}), status


def api_errors(func):
    """
    Bọc 1 route JSON: lỗi service -> {"success": false, "error": ...}.
    ValueError 400, LookupError 404, PermissionError 403, remote failures 502,
    local filesystem errors (OSError) 500.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PermissionError as e:
            return json_error(e, 403)
        except LookupError as e:
            return json_error(e, 404)
        except ValueError as e:
            return json_error(e, 400)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"{func.__name__}: database error: {e}", exc_info=True)
            return json_error("Database error", 500)
        except (RuntimeError, TimeoutError, requests.RequestException) as e:
            logger.error(f"{func.__name__}: {e}")
            return json_error(e, 502)
        except OSError as e:
            logger.error(f"{func.__name__}: {e}", exc_info=True)
            return json_error(e, 500)

    return wrapper
