from datetime import datetime
from database_init import db


class ScriptDescriptor(db.Model):
    """One catalog entry, rebuilt wholesale by every successful sync."""

    __tablename__ = "script_descriptor"
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(32), nullable=True)
    categories = db.Column(db.JSON, default=list)
    install_methods = db.Column(db.JSON, default=list)
    updateable = db.Column(db.Boolean, default=False)
    website = db.Column(db.String(512), nullable=True)
    logo = db.Column(db.String(512), nullable=True)
    interface_port = db.Column(db.Integer, nullable=True)
    repository_url = db.Column(db.String(512), nullable=False)
    raw = db.Column(db.JSON, nullable=False)
    synced_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<ScriptDescriptor {self.slug}>"


class Category(db.Model):
    __tablename__ = "category"
    # Ids come from the upstream metadata.json, not autoincrement
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    name = db.Column(db.String(255), nullable=False)
    sort_order = db.Column(db.Integer, default=0)

    def __repr__(self):
        return f"<Category {self.id} {self.name}>"
