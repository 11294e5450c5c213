# seed.py
from app_factory import create_app
from database_init import db
from seeder.seed_repository import seed_repositories
from seeder.seed_user import seed_admin_user

app = create_app({"ENABLE_AUTO_SYNC_THREAD": False})
with app.app_context():
    db.create_all()
    seed_repositories(app)
    seed_admin_user(app)
