import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from database_init import db
from models.repository import Repository
from util.constant import DEFAULT_REPO_URL
from util.git_provider import get_provider, normalize_repo_url

logger = logging.getLogger("sync_logger")


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


def repository_to_dict(repo):
    return {
        "id": repo.id,
        "url": repo.url,
        "provider": get_provider(repo.url),
        "enabled": repo.enabled,
        "is_default": repo.is_default,
        "is_removable": repo.is_removable,
        "priority": repo.priority,
        "auto_download": repo.auto_download,
        "created_at": repo.created_at.isoformat() if repo.created_at else None,
        "updated_at": repo.updated_at.isoformat() if repo.updated_at else None,
    }


def list_repositories(enabled_only=False):
    query = Repository.query
    if enabled_only:
        query = query.filter_by(enabled=True)
    return query.order_by(Repository.priority.asc(), Repository.id.asc()).all()


def get_repository(repo_id):
    repo = Repository.query.get(repo_id)
    if not repo:
        raise LookupError(f"Repository {repo_id} not found")
    return repo


def create_repository(data):
    url = normalize_repo_url(data.get("url"))
    if Repository.query.filter_by(url=url).first():
        raise ValueError(f"Repository {url} already exists")
    priority = data.get("priority")
    if priority is None:
        # New repositories merge after the existing ones
        priority = (db.session.query(func.max(Repository.priority)).scalar() or 0) + 1
    repo = Repository(
        url=url,
        enabled=data.get("enabled", True),
        priority=priority,
        auto_download=bool(data.get("auto_download", False)),
        is_default=False,
        is_removable=True,
    )
    db.session.add(repo)
    _commit()
    logger.info(f"Repository {url} added (priority {priority})")
    return repo


def update_repository(repo_id, data):
    repo = get_repository(repo_id)
    if data.get("url"):
        url = normalize_repo_url(data["url"])
        if url != repo.url:
            if repo.is_default:
                raise ValueError("The URL of the default repository cannot be changed")
            if Repository.query.filter_by(url=url).first():
                raise ValueError(f"Repository {url} already exists")
            repo.url = url
    for key in ("enabled", "auto_download"):
        if data.get(key) is not None:
            setattr(repo, key, bool(data[key]))
    if data.get("priority") is not None:
        repo.priority = int(data["priority"])
    _commit()
    return repo


def delete_repository(repo_id):
    repo = get_repository(repo_id)
    if repo.is_default or not repo.is_removable:
        raise ValueError("The default repository cannot be removed")
    db.session.delete(repo)
    _commit()
    logger.info(f"Repository {repo.url} removed")


def seed_default_repository():
    """Đảm bảo repo mặc định luôn tồn tại."""
    repo = Repository.query.filter_by(url=DEFAULT_REPO_URL).first()
    if repo:
        if not repo.is_default or repo.is_removable:
            repo.is_default, repo.is_removable = True, False
            _commit()
        return repo
    repo = Repository(
        url=DEFAULT_REPO_URL,
        enabled=True,
        is_default=True,
        is_removable=False,
        priority=0,
        auto_download=False,
    )
    db.session.add(repo)
    _commit()
    logger.info(f"Default repository {DEFAULT_REPO_URL} seeded")
    return repo
