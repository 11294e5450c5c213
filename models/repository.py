from datetime import datetime
from database_init import db


class Repository(db.Model):
    __tablename__ = "repository"
    id = db.Column(db.Integer, primary_key=True)
    url = db.Column(db.String(512), unique=True, nullable=False)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_removable = db.Column(db.Boolean, nullable=False, default=True)
    # Lower priority merges first, so it wins slug conflicts
    priority = db.Column(db.Integer, nullable=False, default=0)
    auto_download = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self):
        return f"<Repository {self.url}>"
