"""
Catalog sync: pull script descriptors from every enabled repository, merge
them (first slug wins) and replace the local catalog in one transaction.
"""

import json
import logging
import threading
from datetime import datetime

import requests
from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from database_init import db
from models.repository import Repository
from models.script_descriptor import Category, ScriptDescriptor
from service import script_downloader
from util import git_provider
from util.github import RateLimitError

logger = logging.getLogger("sync_logger")

METADATA_FILE = "metadata.json"

# Auto-sync thread and manual sync share this, one cycle at a time
_sync_lock = threading.Lock()


# ========== PARSING ==========

def _to_int(value):
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def parse_descriptor(doc, repo_url):
    """Chuẩn hóa 1 file JSON thành dict descriptor, None nếu thiếu slug."""
    if not isinstance(doc, dict) or not doc.get("slug"):
        return None
    methods = []
    for m in doc.get("install_methods") or []:
        if isinstance(m, dict):
            methods.append({
                "type": m.get("type"),
                "script": m.get("script"),
                "resources": m.get("resources") or {},
            })
    return {
        "slug": str(doc["slug"]).strip(),
        "name": doc.get("name") or doc["slug"],
        "description": doc.get("description"),
        "type": doc.get("type"),
        "categories": [c for c in (_to_int(c) for c in doc.get("categories") or []) if c is not None],
        "install_methods": methods,
        "updateable": bool(doc.get("updateable")),
        "website": doc.get("website"),
        "logo": doc.get("logo"),
        "interface_port": _to_int(doc.get("interface_port")),
        "repository_url": repo_url,
        "raw": doc,
    }


def parse_categories(doc):
    categories = []
    for c in (doc or {}).get("categories") or []:
        cid = _to_int(c.get("id")) if isinstance(c, dict) else None
        if cid is None:
            continue
        categories.append({
            "id": cid,
            "name": c.get("name") or str(cid),
            "sort_order": _to_int(c.get("sort_order")) or 0,
        })
    return categories


def merge_descriptors(batches):
    """Gộp nhiều danh sách theo thứ tự, trùng slug thì giữ bản xuất hiện đầu tiên."""
    merged = {}
    for batch in batches:
        for item in batch:
            merged.setdefault(item["slug"], item)
    return list(merged.values())


def merge_categories(batches):
    merged = {}
    for batch in batches:
        for item in batch:
            merged.setdefault(item["id"], item)
    return sorted(merged.values(), key=lambda c: (c["sort_order"], c["id"]))


# ========== FETCH ==========

def fetch_repository(repo_url):
    """
    Lấy toàn bộ descriptor + category của 1 repo.
    Rate limit / network errors propagate; a bad single file is skipped.
    """
    folder = current_app.config["JSON_FOLDER"]
    branch = current_app.config.get("REPO_BRANCH") or "main"
    descriptors, categories = [], []

    for f in git_provider.list_json_files(repo_url, folder, branch):
        content = git_provider.download_raw(repo_url, f["path"], branch)
        if content is None:
            logger.warning(f"{repo_url}: {f['path']} not found, skipped")
            continue
        try:
            doc = json.loads(content)
        except ValueError as e:
            logger.warning(f"{repo_url}: malformed JSON in {f['path']}: {e}")
            continue

        if f["name"] == METADATA_FILE:
            categories.extend(parse_categories(doc))
            continue
        descriptor = parse_descriptor(doc, repo_url)
        if descriptor is None:
            logger.warning(f"{repo_url}: {f['path']} has no slug, skipped")
            continue
        descriptors.append(descriptor)

    logger.info(f"{repo_url}: {len(descriptors)} scripts, {len(categories)} categories")
    return descriptors, categories


def enabled_repositories():
    return (
        Repository.query.filter_by(enabled=True)
        .order_by(Repository.priority.asc(), Repository.id.asc())
        .all()
    )


# ========== SYNC ==========

def sync_catalog():
    """Chạy 1 chu kỳ sync; bỏ qua nếu đang có chu kỳ khác chạy."""
    if not _sync_lock.acquire(blocking=False):
        logger.info("Sync skipped, another cycle is already running")
        return {"success": False, "error": "Sync already running", "already_running": True}
    try:
        return _sync_catalog()
    finally:
        _sync_lock.release()


def is_sync_running():
    return _sync_lock.locked()


def _sync_catalog():
    repos = enabled_repositories()
    if not repos:
        return {"success": False, "error": "No enabled repositories"}

    desc_batches, cat_batches = [], []
    try:
        for repo in repos:
            descriptors, categories = fetch_repository(repo.url)
            desc_batches.append(descriptors)
            cat_batches.append(categories)
    except RateLimitError as e:
        logger.error(f"Sync aborted: {e}")
        return {"success": False, "error": str(e), "rate_limited": True}
    except (requests.RequestException, RuntimeError, ValueError) as e:
        logger.error(f"Sync aborted: {e}")
        return {"success": False, "error": str(e)}

    merged = merge_descriptors(desc_batches)
    categories = merge_categories(cat_batches)

    previous = {d.slug: d.raw for d in ScriptDescriptor.query.all()}
    new_slugs = [d["slug"] for d in merged if d["slug"] not in previous]
    updated_slugs = [
        d["slug"] for d in merged
        if d["slug"] in previous and previous[d["slug"]] != d["raw"]
    ]
    removed = len(set(previous) - {d["slug"] for d in merged})

    now = datetime.utcnow()
    try:
        ScriptDescriptor.query.delete()
        Category.query.delete()
        for d in merged:
            db.session.add(ScriptDescriptor(synced_at=now, **d))
        for c in categories:
            db.session.add(Category(**c))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Sync DB write failed: {e}", exc_info=True)
        return {"success": False, "error": f"Database error: {e}"}

    logger.info(
        f"Synced {len(merged)} scripts: {len(new_slugs)} new, "
        f"{len(updated_slugs)} updated, {removed} removed"
    )
    result = {
        "success": True,
        "message": f"Successfully synced {len(merged)} scripts",
        "count": len(merged),
        "new": len(new_slugs),
        "updated": len(updated_slugs),
        "removed": removed,
        "new_slugs": new_slugs,
        "updated_slugs": updated_slugs,
    }
    result["auto_download"] = auto_download(repos, new_slugs, updated_slugs)
    return result


def auto_download(repos, new_slugs, updated_slugs):
    """Tải script mới / cập nhật cho các repo bật auto_download."""
    auto_urls = {r.url for r in repos if r.auto_download}
    outcome = {"downloaded": [], "errors": []}
    if not auto_urls:
        return outcome

    updated = set(updated_slugs)
    for slug in list(new_slugs) + list(updated_slugs):
        descriptor = ScriptDescriptor.query.filter_by(slug=slug).first()
        if not descriptor or descriptor.repository_url not in auto_urls:
            continue
        if slug in updated and not script_downloader.is_downloaded(descriptor):
            continue
        res = script_downloader.load_script(descriptor)
        if res["success"]:
            outcome["downloaded"].append(slug)
        else:
            outcome["errors"].append(f"{slug}: {res['message']}")
    if outcome["downloaded"] or outcome["errors"]:
        logger.info(
            f"Auto-download: {len(outcome['downloaded'])} ok, {len(outcome['errors'])} failed"
        )
    return outcome


# ========== QUERIES ==========

def descriptor_to_card(d, downloaded=None):
    return {
        "slug": d.slug,
        "name": d.name,
        "description": d.description,
        "type": d.type,
        "categories": d.categories or [],
        "updateable": d.updateable,
        "website": d.website,
        "logo": d.logo,
        "interface_port": d.interface_port,
        "repository_url": d.repository_url,
        "downloaded": script_downloader.is_downloaded(d) if downloaded is None else downloaded,
    }


def descriptor_to_dict(d):
    data = descriptor_to_card(d)
    data["install_methods"] = d.install_methods or []
    data["raw"] = d.raw
    data["synced_at"] = d.synced_at.isoformat() if d.synced_at else None
    return data


def list_scripts(category_id=None, script_type=None, search=None, downloaded=None):
    query = ScriptDescriptor.query
    if script_type:
        query = query.filter(ScriptDescriptor.type == script_type)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            ScriptDescriptor.name.ilike(like),
            ScriptDescriptor.slug.ilike(like),
            ScriptDescriptor.description.ilike(like),
        ))
    cards = []
    for d in query.order_by(ScriptDescriptor.name.asc()).all():
        # JSON column, filtered in Python to stay portable across backends
        if category_id is not None and category_id not in (d.categories or []):
            continue
        is_dl = script_downloader.is_downloaded(d)
        if downloaded is not None and is_dl != downloaded:
            continue
        cards.append(descriptor_to_card(d, downloaded=is_dl))
    return cards


def get_script(slug):
    d = ScriptDescriptor.query.filter_by(slug=slug).first()
    if not d:
        raise LookupError(f"Script {slug} not found")
    return d


def list_categories():
    counts = {}
    for d in ScriptDescriptor.query.all():
        for cid in d.categories or []:
            counts[cid] = counts.get(cid, 0) + 1
    return [
        {"id": c.id, "name": c.name, "sort_order": c.sort_order, "count": counts.get(c.id, 0)}
        for c in Category.query.order_by(Category.sort_order.asc(), Category.id.asc()).all()
    ]
