"""
Key/value settings persisted in the project's ``.env`` file.

Every key is read and written on its own; there is no schema. Reads go to
the file each time so a value written by one request is seen by the next.
"""

import json
import os

from dotenv import dotenv_values, set_key, unset_key
from flask import current_app, has_app_context

TRUE_VALUES = {"1", "true", "yes", "on"}


def env_path() -> str:
    if has_app_context():
        return current_app.config["ENV_FILE"]
    return os.getenv("ENV_FILE", os.path.join(os.getcwd(), ".env"))


def get_setting(key: str, default=None):
    value = dotenv_values(env_path(), interpolate=False).get(key)
    return default if value is None else value


def set_setting(key: str, value) -> None:
    if value is None:
        delete_setting(key)
        return
    set_key(env_path(), key, str(value), quote_mode="always")


def delete_setting(key: str) -> None:
    path = env_path()
    if key in dotenv_values(path, interpolate=False):
        unset_key(path, key)


def get_bool(key: str, default: bool = False) -> bool:
    value = get_setting(key)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


def set_bool(key: str, value: bool) -> None:
    set_setting(key, "true" if value else "false")


def get_json(key: str, default=None):
    value = get_setting(key)
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default


def set_json(key: str, value) -> None:
    set_setting(key, json.dumps(value, separators=(",", ":")))
