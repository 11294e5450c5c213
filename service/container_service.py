"""
Container maintenance for installed-script records: pct start/stop/destroy,
status, web UI IP detection, storages and vzdump backups.
"""

import logging
import re

from sqlalchemy.exc import SQLAlchemyError

from bash_script import remote_exec
from bash_script.remote_exec import SSHTarget
from database_init import db
from models.installed_script import InstalledScript
from models.script_descriptor import ScriptDescriptor
from models.server import Server
from queue_config import queue
from util.constant import EXECUTION_MODE
from util.pve_parser import (
    parse_first_ipv4,
    parse_pct_list,
    parse_pct_status,
    parse_storage_cfg,
    validate_container_id,
)

logger = logging.getLogger("install_logger")

STORAGE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


# ========== HELPERS ==========

def get_record(record_id):
    record = InstalledScript.query.get(record_id)
    if not record:
        raise LookupError(f"Installed script {record_id} not found")
    return record


def get_server(server_id):
    server = Server.query.get(server_id)
    if not server:
        raise LookupError(f"Server {server_id} not found")
    return server


def _target_for(record):
    """None nghĩa là chạy local trên chính host Proxmox."""
    if record.execution_mode == EXECUTION_MODE.local.value:
        return None
    if not record.server_id or not record.server:
        raise ValueError(f"Installed script {record.id} has no server")
    return SSHTarget.from_server(record.server)


def _container_id(record):
    if not record.container_id:
        raise ValueError(f"Installed script {record.id} has no container id")
    return validate_container_id(record.container_id)


def run_command(target, command):
    """Chạy lệnh, lỗi thì raise RuntimeError với stderr nguyên văn."""
    if target is None:
        exit_code, out, err = remote_exec.run_local_command(command)
    else:
        exit_code, out, err = remote_exec.run_remote_command(target, command)
    if exit_code != 0:
        raise RuntimeError((err or out).strip() or f"`{command}` exited with {exit_code}")
    return out


# ========== ACTIONS ==========

def start_container(record_id):
    record = get_record(record_id)
    cid = _container_id(record)
    out = run_command(_target_for(record), f"pct start {cid}")
    logger.info(f"Started CT {cid} ({record.script_name})")
    return out


def stop_container(record_id):
    record = get_record(record_id)
    cid = _container_id(record)
    out = run_command(_target_for(record), f"pct stop {cid}")
    logger.info(f"Stopped CT {cid} ({record.script_name})")
    return out


def destroy_container(record_id):
    """pct destroy rồi xóa luôn record."""
    record = get_record(record_id)
    cid = _container_id(record)
    out = run_command(_target_for(record), f"pct destroy {cid}")
    try:
        db.session.delete(record)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info(f"Destroyed CT {cid} and removed record {record_id}")
    return out


def container_status(record_id):
    record = get_record(record_id)
    cid = _container_id(record)
    return parse_pct_status(run_command(_target_for(record), f"pct status {cid}"))


def bulk_statuses(server_id=None):
    """
    pct list 1 lần cho mỗi server -> {record_id: running|stopped|unknown}.
    Records whose container is not listed are reported as unknown.
    """
    query = InstalledScript.query.filter(InstalledScript.container_id.isnot(None))
    if server_id is not None:
        query = query.filter_by(server_id=server_id)

    by_target = {}
    statuses = {}
    for record in query.all():
        if record.execution_mode == EXECUTION_MODE.ssh.value and not record.server:
            statuses[record.id] = "unknown"
            continue
        key = record.server_id if record.execution_mode == EXECUTION_MODE.ssh.value else None
        by_target.setdefault(key, []).append(record)

    for key, records in by_target.items():
        try:
            target = SSHTarget.from_server(records[0].server) if key else None
            listed = parse_pct_list(run_command(target, "pct list"))
        except RuntimeError as e:
            logger.warning(f"pct list failed for server {key}: {e}")
            listed = {}
        for record in records:
            statuses[record.id] = listed.get(record.container_id, "unknown")
    return statuses


def detect_web_ui_ip(record_id):
    record = get_record(record_id)
    cid = _container_id(record)
    out = run_command(_target_for(record), f"pct exec {cid} -- hostname -I")
    ip = parse_first_ipv4(out)
    if not ip:
        raise RuntimeError(f"No IPv4 address reported by container {cid}")

    record.web_ui_ip = ip
    if not record.web_ui_port:
        descriptor = ScriptDescriptor.query.filter_by(slug=record.script_name).first()
        if descriptor and descriptor.interface_port:
            record.web_ui_port = descriptor.interface_port
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    return {"ip": ip, "port": record.web_ui_port}


def list_storages(server_id=None):
    target = SSHTarget.from_server(get_server(server_id)) if server_id else None
    return parse_storage_cfg(run_command(target, "cat /etc/pve/storage.cfg"))


def enqueue_backup(record_id, storage):
    """Đẩy vzdump vào hàng đợi rq, trả về job id."""
    record = get_record(record_id)
    cid = _container_id(record)
    if not STORAGE_NAME_RE.match(storage or ""):
        raise ValueError(f"Invalid storage name: {storage!r}")
    job = queue.enqueue(
        remote_exec.run_backup_job, _target_for(record), cid, storage, job_timeout=3 * 3600
    )
    logger.info(f"Queued backup of CT {cid} to {storage} (job {job.id})")
    return job.id
