import logging
import os
import subprocess

from flask import current_app

from util import github

logger = logging.getLogger(__name__)

RELEASES_REPO_URL = "https://github.com/community-scripts/ProxmoxVE-Local"


def _root():
    return current_app.config["APP_ROOT"]


def current_version():
    path = os.path.join(_root(), "VERSION")
    try:
        with open(path, encoding="utf-8") as f:
            return f.read().strip()
    except OSError as e:
        raise RuntimeError(f"Failed to read VERSION file: {e}") from e


def version_status():
    """So sánh VERSION local với release mới nhất trên GitHub."""
    current = current_version()
    release = github.get_latest_release(RELEASES_REPO_URL)
    latest = (release.get("tag_name") or "").lstrip("v")
    up_to_date = current == latest
    return {
        "success": True,
        "currentVersion": current,
        "latestVersion": latest,
        "isUpToDate": up_to_date,
        "updateAvailable": not up_to_date,
        "releaseInfo": {
            "tagName": release.get("tag_name"),
            "name": release.get("name"),
            "publishedAt": release.get("published_at"),
            "htmlUrl": release.get("html_url"),
        },
    }


def update_log_path():
    return os.path.join(_root(), "update.log")


def start_update():
    """Chạy update.sh tách rời khỏi tiến trình web, trả về ngay."""
    script = os.path.join(_root(), "update.sh")
    if not os.path.isfile(script):
        raise RuntimeError("update.sh not found")
    with open(update_log_path(), "ab") as log_file:
        proc = subprocess.Popen(
            ["bash", script],
            cwd=_root(),
            stdin=subprocess.DEVNULL,
            stdout=log_file,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    logger.info(f"Self-update started (pid {proc.pid})")
    return {
        "success": True,
        "message": "Update started in background. The server will restart automatically when complete.",
        "pid": proc.pid,
    }


def read_update_log(offset=0):
    """Đọc update.log từ byte offset, trả về phần mới + offset kế tiếp."""
    path = update_log_path()
    if not os.path.isfile(path):
        return {"success": True, "logs": "", "offset": 0, "exists": False}
    size = os.path.getsize(path)
    # Log was truncated by a new run
    if offset > size:
        offset = 0
    with open(path, "rb") as f:
        f.seek(offset)
        data = f.read()
    return {
        "success": True,
        "logs": data.decode("utf-8", errors="replace"),
        "offset": offset + len(data),
        "exists": True,
    }
