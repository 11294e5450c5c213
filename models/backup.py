from datetime import datetime
from database_init import db
from util.constant import BACKUP_STORAGE_TYPE


class Backup(db.Model):
    """Backup của 1 container được tìm thấy trên storage của server (pvesm / PBS)."""
    __tablename__ = "backup"
    id = db.Column(db.Integer, primary_key=True)
    server_id = db.Column(
        db.Integer, db.ForeignKey("server.id", ondelete="CASCADE"), nullable=False
    )
    container_id = db.Column(db.String(16), nullable=False)
    hostname = db.Column(db.String(255), nullable=True)
    backup_name = db.Column(db.String(512), nullable=False)
    # PVE volume id, passed as-is to pct restore
    backup_path = db.Column(db.String(1024), nullable=False)
    size = db.Column(db.BigInteger, nullable=True)
    created_at = db.Column(db.DateTime, nullable=True)
    storage_name = db.Column(db.String(128), nullable=False)
    storage_type = db.Column(
        db.String(16), nullable=False, default=BACKUP_STORAGE_TYPE.local.value
    )
    discovered_at = db.Column(db.DateTime, default=datetime.utcnow)

    server = db.relationship("Server", back_populates="backups")

    __table_args__ = (
        db.UniqueConstraint("server_id", "backup_path", name="uq_backup_server_path"),
    )

    def __repr__(self):
        return f"<Backup ct={self.container_id} {self.backup_path}>"


class PBSCredential(db.Model):
    """Thông tin đăng nhập Proxmox Backup Server cho 1 storage của 1 server."""
    __tablename__ = "pbs_credential"
    id = db.Column(db.Integer, primary_key=True)
    server_id = db.Column(
        db.Integer, db.ForeignKey("server.id", ondelete="CASCADE"), nullable=False
    )
    storage_name = db.Column(db.String(128), nullable=False)
    pbs_ip = db.Column(db.String(255), nullable=False)
    pbs_datastore = db.Column(db.String(128), nullable=False)
    pbs_password = db.Column(db.String(256), nullable=False)
    pbs_fingerprint = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    server = db.relationship("Server", back_populates="pbs_credentials")

    __table_args__ = (
        db.UniqueConstraint("server_id", "storage_name", name="uq_pbs_server_storage"),
    )

    def __repr__(self):
        return f"<PBSCredential {self.storage_name} -> {self.pbs_ip}:{self.pbs_datastore}>"
