import logging
import requests
from util.env_store import get_bool, get_json

logger = logging.getLogger("cronjob")

DEFAULT_TITLE = "PVE Scripts Local"


def apprise_urls():
    urls = get_json("APPRISE_URLS", []) or []
    return [u for u in urls if isinstance(u, str) and u.strip()]


def send_notification(title, body, urls):
    """
    POST form data (title, body, tags=all) tới từng Apprise URL.
    Raises RuntimeError only when every URL failed.
    """
    if not urls:
        raise ValueError("No Apprise URLs provided")

    results = []
    for url in urls:
        try:
            resp = requests.post(
                url,
                data={"title": title or DEFAULT_TITLE, "body": body or "", "tags": "all"},
                timeout=10,
            )
            resp.raise_for_status()
            results.append({"url": url, "success": True, "status": resp.status_code})
        except requests.RequestException as e:
            logger.error(f"Notification to {url} failed: {e}")
            results.append({"url": url, "success": False, "error": str(e)})

    ok = sum(1 for r in results if r["success"])
    if ok == 0:
        raise RuntimeError("All notification attempts failed")
    return {
        "success": True,
        "message": f"Notification sent to {ok}/{len(urls)} services",
        "results": results,
    }


def build_sync_summary(result):
    title = "PVE Scripts Local - Auto-Sync Completed"
    lines = ["Auto-sync completed successfully.", ""]
    lines.append(f"Scripts in catalog: {result.get('count', 0)}")
    lines.append(f"New: {result.get('new', 0)}, updated: {result.get('updated', 0)}, "
                 f"removed: {result.get('removed', 0)}")

    downloads = result.get("auto_download") or {}
    if downloads.get("downloaded"):
        lines.append("")
        lines.append(f"Scripts downloaded: {len(downloads['downloaded'])}")
        lines.extend(f"• {slug}" for slug in downloads["downloaded"])
    errors = downloads.get("errors") or []
    if errors:
        lines.append("")
        lines.append(f"Script errors encountered: {len(errors)}")
        lines.extend(f"• {e}" for e in errors[:5])
        if len(errors) > 5:
            lines.append(f"• ... and {len(errors) - 5} more errors")
    if not result.get("new") and not result.get("updated"):
        lines.append("")
        lines.append("No script changes detected.")
    return title, "\n".join(lines)


def notify_sync_result(result):
    """Gửi tóm tắt sau auto-sync. Never raises."""
    if not get_bool("NOTIFICATION_ENABLED"):
        return None
    urls = apprise_urls()
    if not urls:
        return None
    if result.get("success"):
        title, body = build_sync_summary(result)
    else:
        title = "PVE Scripts Local - Auto-Sync Failed"
        body = f"Auto-sync failed: {result.get('error')}"
    try:
        return send_notification(title, body, urls)
    except (RuntimeError, ValueError) as e:
        logger.error(f"Sync notification failed: {e}")
        return {"success": False, "error": str(e)}


def send_test_notification():
    urls = apprise_urls()
    if not urls:
        raise ValueError("No Apprise URLs configured")
    return send_notification("Test", "This is a test notification", urls)
