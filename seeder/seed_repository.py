# seeder/seed_repository.py
import os

from models.repository import Repository
from service.repository_service import create_repository, seed_default_repository


def seed_repositories(app):
    """Repo mặc định + các repo trong EXTRA_REPO_URLS (cách nhau bởi dấu phẩy)."""
    with app.app_context():
        seed_default_repository()
        urls = [u.strip() for u in os.getenv("EXTRA_REPO_URLS", "").split(",") if u.strip()]
        for url in urls:
            if Repository.query.filter_by(url=url.rstrip("/")).first():
                print(f"⚠️ Repo {url} đã tồn tại, bỏ qua.")
                continue
            try:
                create_repository({"url": url})
                print(f"✅ Đã thêm repo: {url}")
            except ValueError as e:
                print(f"❌ Bỏ qua {url}: {e}")
