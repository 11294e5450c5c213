"""
Auto-sync: a single background thread that runs the catalog sync on the
configured cron schedule, records the outcome in settings and sends a
notification.
"""

import logging
import os
import threading
from datetime import datetime

from croniter import croniter

from service import catalog_service, notification_service
from util.constant import DEFAULT_SYNC_INTERVAL, SYNC_INTERVALS
from util.env_store import (
    delete_setting,
    get_bool,
    get_json,
    get_setting,
    set_bool,
    set_json,
    set_setting,
)

logger = logging.getLogger("cronjob")

THREAD_NAME = "AUTO-SYNC"
POLL_SECONDS = 30

RATE_LIMIT_MESSAGE = (
    "GitHub API rate limit exceeded. Please set a GITHUB_TOKEN in your .env file "
    "for higher rate limits."
)

_stop_event = threading.Event()


# ========== SETTINGS ==========

def get_settings():
    return {
        "auto_sync_enabled": get_bool("AUTO_SYNC_ENABLED"),
        "sync_interval_type": get_setting("SYNC_INTERVAL_TYPE", "predefined"),
        "sync_interval_predefined": get_setting("SYNC_INTERVAL_PREDEFINED", DEFAULT_SYNC_INTERVAL),
        "sync_interval_cron": get_setting("SYNC_INTERVAL_CRON", ""),
        "notification_enabled": get_bool("NOTIFICATION_ENABLED"),
        "apprise_urls": get_json("APPRISE_URLS", []) or [],
        "last_auto_sync": get_setting("LAST_AUTO_SYNC", ""),
        "last_auto_sync_error": get_setting("LAST_AUTO_SYNC_ERROR", ""),
        "last_auto_sync_error_time": get_setting("LAST_AUTO_SYNC_ERROR_TIME", ""),
        "is_running": catalog_service.is_sync_running(),
    }


def validate_cron(expr):
    return bool(expr) and len(expr.split()) == 5 and croniter.is_valid(expr)


def save_settings(data):
    """Chỉ ghi các key có trong data; validate interval/cron trước khi ghi."""
    interval_type = data.get("sync_interval_type")
    if interval_type is not None and interval_type not in ("predefined", "custom"):
        raise ValueError("sync_interval_type must be 'predefined' or 'custom'")
    predefined = data.get("sync_interval_predefined")
    if predefined is not None and predefined not in SYNC_INTERVALS:
        raise ValueError(f"Unknown interval {predefined}, expected one of {', '.join(SYNC_INTERVALS)}")
    cron = data.get("sync_interval_cron")
    if cron and not validate_cron(cron):
        raise ValueError(f"Invalid cron expression: {cron}")
    if interval_type == "custom" and not (cron or get_setting("SYNC_INTERVAL_CRON")):
        raise ValueError("A cron expression is required for a custom interval")
    urls = data.get("apprise_urls")
    if urls is not None and (
        not isinstance(urls, list) or not all(isinstance(u, str) for u in urls)
    ):
        raise ValueError("apprise_urls must be a list of URLs")

    if "auto_sync_enabled" in data:
        set_bool("AUTO_SYNC_ENABLED", bool(data["auto_sync_enabled"]))
    if interval_type is not None:
        set_setting("SYNC_INTERVAL_TYPE", interval_type)
    if predefined is not None:
        set_setting("SYNC_INTERVAL_PREDEFINED", predefined)
    if cron is not None:
        set_setting("SYNC_INTERVAL_CRON", cron.strip())
    if "notification_enabled" in data:
        set_bool("NOTIFICATION_ENABLED", bool(data["notification_enabled"]))
    if urls is not None:
        set_json("APPRISE_URLS", [u.strip() for u in urls if u.strip()])
    return get_settings()


def current_cron():
    if get_setting("SYNC_INTERVAL_TYPE") == "custom":
        cron = get_setting("SYNC_INTERVAL_CRON", "")
        if validate_cron(cron):
            return cron
        logger.warning(f"Invalid custom cron {cron!r}, falling back to {DEFAULT_SYNC_INTERVAL}")
    key = get_setting("SYNC_INTERVAL_PREDEFINED", DEFAULT_SYNC_INTERVAL)
    return SYNC_INTERVALS.get(key, SYNC_INTERVALS[DEFAULT_SYNC_INTERVAL])


def next_run(cron, base=None):
    return croniter(cron, base or datetime.now()).get_next(datetime)


# ========== RUN ==========

def run_auto_sync():
    """1 chu kỳ: sync, lưu kết quả vào settings, gửi notification."""
    logger.info("===> Auto-sync START")
    result = catalog_service.sync_catalog()
    if result.get("already_running"):
        logger.info("Auto-sync skipped, already running")
        return result

    now = datetime.utcnow().isoformat()
    if result.get("success"):
        set_setting("LAST_AUTO_SYNC", now)
        delete_setting("LAST_AUTO_SYNC_ERROR")
        delete_setting("LAST_AUTO_SYNC_ERROR_TIME")
        logger.info(f"Auto-sync done: {result.get('message')}")
    else:
        error = RATE_LIMIT_MESSAGE if result.get("rate_limited") else result.get("error", "")
        set_setting("LAST_AUTO_SYNC_ERROR", error)
        set_setting("LAST_AUTO_SYNC_ERROR_TIME", now)
        logger.error(f"Auto-sync failed: {result.get('error')}")

    result["notification"] = notification_service.notify_sync_result(result)
    return result


def auto_sync_worker(app):
    """Vòng lặp của thread: đọc lịch mỗi POLL_SECONDS, chạy khi tới giờ."""
    with app.app_context():
        logger.info("[AUTO-SYNC] Worker started")
        scheduled_for, due = None, None
        while not _stop_event.is_set():
            try:
                if not get_bool("AUTO_SYNC_ENABLED"):
                    scheduled_for, due = None, None
                else:
                    cron = current_cron()
                    if cron != scheduled_for:
                        scheduled_for, due = cron, next_run(cron)
                        logger.info(f"[AUTO-SYNC] Next run at {due} ({cron})")
                    elif datetime.now() >= due:
                        run_auto_sync()
                        due = next_run(cron)
                        logger.info(f"[AUTO-SYNC] Next run at {due}")
            except Exception as e:
                # The thread must survive a bad cycle
                logger.exception(f"[AUTO-SYNC] Unexpected error: {e}")
            _stop_event.wait(POLL_SECONDS)
        logger.info("[AUTO-SYNC] Worker stopped")


def start_auto_sync_thread(app):
    """Start thread 1 lần duy nhất (bỏ qua process cha của reloader)."""
    if app.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true":
        logger.info("[AUTO-SYNC] Skip start (not main reloader process).")
        return None

    for t in threading.enumerate():
        if t.name == THREAD_NAME and t.is_alive():
            logger.info("[AUTO-SYNC] Already running, skip.")
            return t

    _stop_event.clear()
    thread = threading.Thread(
        target=auto_sync_worker, args=(app,), daemon=True, name=THREAD_NAME
    )
    thread.start()
    return thread


def stop_auto_sync_thread():
    _stop_event.set()


def auto_sync_health():
    alive = any(t.name == THREAD_NAME and t.is_alive() for t in threading.enumerate())
    return {"alive": alive, "running": catalog_service.is_sync_running()}
