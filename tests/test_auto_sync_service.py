from datetime import datetime

import pytest
import requests

from service import auto_sync_service, catalog_service, notification_service
from util.env_store import get_setting, set_json, set_setting


@pytest.mark.parametrize("expr, ok", [
    ("0 * * * *", True),
    ("*/15 * * * *", True),
    ("0 0 * * 1-5", True),
    ("", False),
    ("every hour", False),
    ("61 * * * *", False),
    ("0 * * *", False),
])
def test_validate_cron(expr, ok):
    assert auto_sync_service.validate_cron(expr) is ok


def test_save_settings_round_trip(app):
    settings = auto_sync_service.save_settings({
        "auto_sync_enabled": True,
        "sync_interval_type": "custom",
        "sync_interval_cron": "*/5 * * * *",
        "notification_enabled": True,
        "apprise_urls": ["https://apprise.local/notify/abc", "  "],
    })

    assert settings["auto_sync_enabled"] is True
    assert settings["sync_interval_cron"] == "*/5 * * * *"
    assert settings["apprise_urls"] == ["https://apprise.local/notify/abc"]
    assert auto_sync_service.current_cron() == "*/5 * * * *"


@pytest.mark.parametrize("data", [
    {"sync_interval_type": "weekly"},
    {"sync_interval_predefined": "2hours"},
    {"sync_interval_cron": "not a cron"},
    {"sync_interval_type": "custom"},
    {"apprise_urls": "https://single.url"},
])
def test_save_settings_rejects_bad_input(app, data):
    with pytest.raises(ValueError):
        auto_sync_service.save_settings(data)


def test_current_cron_defaults_to_hourly(app):
    assert auto_sync_service.current_cron() == "0 * * * *"
    set_setting("SYNC_INTERVAL_PREDEFINED", "6hours")
    assert auto_sync_service.current_cron() == "0 */6 * * *"


def test_invalid_stored_custom_cron_falls_back(app):
    set_setting("SYNC_INTERVAL_TYPE", "custom")
    set_setting("SYNC_INTERVAL_CRON", "bogus")
    assert auto_sync_service.current_cron() == "0 * * * *"


def test_next_run():
    base = datetime(2024, 1, 1, 10, 20)
    assert auto_sync_service.next_run("0 * * * *", base) == datetime(2024, 1, 1, 11, 0)


def test_successful_run_records_timestamp(app, fake_github):
    fake_github.add_script("pihole")
    set_setting("LAST_AUTO_SYNC_ERROR", "old error")

    result = auto_sync_service.run_auto_sync()

    assert result["success"] is True
    assert get_setting("LAST_AUTO_SYNC")
    assert get_setting("LAST_AUTO_SYNC_ERROR") is None


def test_rate_limited_run_stores_token_hint(app, fake_github):
    fake_github.rate_limited = True

    result = auto_sync_service.run_auto_sync()

    assert result["success"] is False
    assert get_setting("LAST_AUTO_SYNC_ERROR") == auto_sync_service.RATE_LIMIT_MESSAGE
    assert "GITHUB_TOKEN" in get_setting("LAST_AUTO_SYNC_ERROR")
    assert get_setting("LAST_AUTO_SYNC_ERROR_TIME")


def test_run_skipped_while_sync_in_progress(app, fake_github):
    assert catalog_service._sync_lock.acquire(blocking=False)
    try:
        result = auto_sync_service.run_auto_sync()
    finally:
        catalog_service._sync_lock.release()

    assert result["already_running"] is True
    assert get_setting("LAST_AUTO_SYNC") is None


def test_notification_failure_does_not_break_the_cycle(app, fake_github, monkeypatch):
    set_setting("NOTIFICATION_ENABLED", "true")
    set_json("APPRISE_URLS", ["https://apprise.local/notify/abc"])

    def refuse(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(notification_service.requests, "post", refuse)
    fake_github.add_script("pihole")

    result = auto_sync_service.run_auto_sync()

    assert result["success"] is True
    assert result["notification"]["success"] is False


def test_sync_summary_lists_downloads_and_caps_errors():
    title, body = notification_service.build_sync_summary({
        "success": True, "count": 10, "new": 1, "updated": 0, "removed": 0,
        "auto_download": {"downloaded": ["pihole"], "errors": [f"e{i}" for i in range(7)]},
    })

    assert title.endswith("Auto-Sync Completed")
    assert "• pihole" in body
    assert "• e4" in body
    assert "• e5" not in body
    assert "... and 2 more errors" in body


def test_send_notification_posts_form_data(monkeypatch):
    posted = []

    class Resp:
        status_code = 200

        def raise_for_status(self):
            return None

    def fake_post(url, data=None, timeout=None):
        posted.append((url, data))
        return Resp()

    monkeypatch.setattr(notification_service.requests, "post", fake_post)

    result = notification_service.send_notification("T", "B", ["https://a", "https://b"])

    assert result["message"] == "Notification sent to 2/2 services"
    assert posted[0] == ("https://a", {"title": "T", "body": "B", "tags": "all"})


def test_health_without_thread(app):
    assert auto_sync_service.auto_sync_health() == {"alive": False, "running": False}
