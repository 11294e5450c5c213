from datetime import datetime
from database_init import db
from util.constant import INSTALL_STATUS, EXECUTION_MODE


class InstalledScript(db.Model):
    __tablename__ = "installed_script"
    id = db.Column(db.Integer, primary_key=True)
    script_name = db.Column(db.String(255), nullable=False)
    script_path = db.Column(db.String(512), nullable=False)
    # Container ids are only unique per Proxmox host, always read with server_id
    container_id = db.Column(db.String(16), nullable=True)
    server_id = db.Column(
        db.Integer, db.ForeignKey("server.id", ondelete="SET NULL"), nullable=True
    )
    execution_mode = db.Column(
        db.String(16), nullable=False, default=EXECUTION_MODE.local.value
    )
    installation_date = db.Column(db.DateTime, default=datetime.utcnow)
    status = db.Column(
        db.String(32), nullable=False, default=INSTALL_STATUS.in_progress.value
    )
    output_log = db.Column(db.Text, nullable=True)
    web_ui_ip = db.Column(db.String(64), nullable=True)
    web_ui_port = db.Column(db.Integer, nullable=True)

    server = db.relationship("Server", back_populates="installed_scripts")

    def __repr__(self):
        return f"<InstalledScript {self.script_name} ct={self.container_id or '-'}>"
