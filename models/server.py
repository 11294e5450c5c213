from datetime import datetime
from database_init import db
from util.constant import AUTH_TYPE


class Server(db.Model):
    __tablename__ = "server"
    id = db.Column(db.Integer, primary_key=True)
    # Names are not unique, the UI only suggests distinct names
    name = db.Column(db.String(128), nullable=False)
    ip = db.Column(db.String(255), nullable=False)
    user = db.Column(db.String(128), nullable=False, default="root")
    password = db.Column(db.String(256), nullable=True)
    auth_type = db.Column(db.String(16), default=AUTH_TYPE.password.value)
    ssh_key = db.Column(db.Text, nullable=True)
    ssh_key_passphrase = db.Column(db.String(256), nullable=True)
    ssh_port = db.Column(db.Integer, default=22)
    color = db.Column(db.String(16), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    installed_scripts = db.relationship(
        "InstalledScript", back_populates="server", lazy=True, passive_deletes=True
    )
    backups = db.relationship(
        "Backup", back_populates="server", lazy=True, cascade="all, delete-orphan"
    )
    pbs_credentials = db.relationship(
        "PBSCredential", back_populates="server", lazy=True, cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Server {self.name} ({self.ip})>"
