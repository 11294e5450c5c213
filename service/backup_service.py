"""
Backups of tracked containers.

Discovery runs `pvesm list <storage> --content backup` on every
backup-capable storage of a server (plus `local`). PBS storages with stored
credentials are listed with proxmox-backup-client instead. Only backups of
containers that have an installed-script record are kept. A restore is queued
on rq and replaces the container with `pct restore`.
"""

import logging
import re
import shlex

from sqlalchemy.exc import SQLAlchemyError

from bash_script import remote_exec
from bash_script.remote_exec import SSHTarget
from database_init import db
from models.backup import Backup, PBSCredential
from models.installed_script import InstalledScript
from models.server import Server
from queue_config import queue
from service.container_service import STORAGE_NAME_RE, get_server, run_command
from util.constant import BACKUP_STORAGE_TYPE
from util.pve_parser import (
    parse_pbs_snapshots,
    parse_pvesm_backups,
    parse_rootfs_storage,
    parse_storage_cfg,
    validate_container_id,
)

logger = logging.getLogger("install_logger")

VOLID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*:[A-Za-z0-9_./:+-]+$")
DATASTORE_RE = re.compile(r"^[A-Za-z0-9_-]+$")
FINGERPRINT_RE = re.compile(r"^(?:[0-9A-Fa-f]{2}:){31}[0-9A-Fa-f]{2}$")
PBS_TIMEOUT = 30


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


def backup_to_dict(backup):
    return {
        "id": backup.id,
        "server_id": backup.server_id,
        "server_name": backup.server.name if backup.server else None,
        "server_color": backup.server.color if backup.server else None,
        "container_id": backup.container_id,
        "hostname": backup.hostname,
        "backup_name": backup.backup_name,
        "backup_path": backup.backup_path,
        "size": backup.size,
        "created_at": backup.created_at.isoformat() if backup.created_at else None,
        "storage_name": backup.storage_name,
        "storage_type": backup.storage_type,
        "discovered_at": backup.discovered_at.isoformat() if backup.discovered_at else None,
    }


def get_backup(backup_id):
    backup = Backup.query.get(backup_id)
    if not backup:
        raise LookupError(f"Backup {backup_id} not found")
    return backup


def list_backups_grouped():
    """Backup gom theo (server, container), mới nhất trước."""
    rows = Backup.query.order_by(
        Backup.server_id, Backup.container_id, Backup.created_at.desc()
    ).all()
    groups = {}
    for backup in rows:
        group = groups.setdefault((backup.server_id, backup.container_id), {
            "server_id": backup.server_id,
            "server_name": backup.server.name if backup.server else None,
            "container_id": backup.container_id,
            "hostname": backup.hostname,
            "backups": [],
        })
        group["backups"].append(backup_to_dict(backup))
    return list(groups.values())


# ========== DISCOVERY ==========

def _storage_type(storage):
    if storage["type"] == "pbs":
        return BACKUP_STORAGE_TYPE.pbs.value
    if storage["name"] == "local":
        return BACKUP_STORAGE_TYPE.local.value
    return BACKUP_STORAGE_TYPE.storage.value


def _backup_storages(target):
    storages = [
        s for s in parse_storage_cfg(run_command(target, "cat /etc/pve/storage.cfg"))
        if s["supports_backup"] and STORAGE_NAME_RE.match(s["name"])
    ]
    if not any(s["name"] == "local" for s in storages):
        # /var/lib/vz/dump exists on every node
        storages.insert(0, {"name": "local", "type": "dir", "supports_backup": True})
    return storages


def pbs_snapshot_command(credential):
    """proxmox-backup-client snapshots, password và fingerprint qua env."""
    repository = f"root@pam@{credential.pbs_ip}:{credential.pbs_datastore}"
    env = f"PBS_PASSWORD={shlex.quote(credential.pbs_password)}"
    if credential.pbs_fingerprint:
        env += f" PBS_FINGERPRINT={shlex.quote(credential.pbs_fingerprint)}"
    return (
        f"{env} timeout {PBS_TIMEOUT} proxmox-backup-client snapshots "
        f"--repository {shlex.quote(repository)} --output-format json"
    )


def _list_storage_backups(target, server_id, storage):
    name = storage["name"]
    if storage["type"] == "pbs":
        credential = PBSCredential.query.filter_by(server_id=server_id, storage_name=name).first()
        if credential:
            return parse_pbs_snapshots(run_command(target, pbs_snapshot_command(credential)), name)
    return parse_pvesm_backups(run_command(target, f"pvesm list {name} --content backup"))


def discover_server_backups(server):
    """
    Quét lại toàn bộ backup của 1 server, thay thế danh sách cũ.
    An unavailable storage is reported in `errors` and skipped.
    """
    records = InstalledScript.query.filter(
        InstalledScript.server_id == server.id, InstalledScript.container_id.isnot(None)
    ).all()
    hostnames = {r.container_id: r.script_name for r in records}
    target = SSHTarget.from_server(server)

    found, errors = {}, []
    for storage in _backup_storages(target):
        try:
            items = _list_storage_backups(target, server.id, storage)
        except (RuntimeError, ValueError) as e:
            logger.warning(f"{server.name}: backups on {storage['name']} unavailable: {e}")
            errors.append(f"{storage['name']}: {e}")
            continue
        for item in items:
            if item["vmid"] not in hostnames or item["volid"] in found:
                continue
            found[item["volid"]] = Backup(
                server_id=server.id,
                container_id=item["vmid"],
                hostname=hostnames[item["vmid"]],
                backup_name=item["name"],
                backup_path=item["volid"],
                size=item["size"],
                created_at=item["created_at"],
                storage_name=storage["name"],
                storage_type=_storage_type(storage),
            )

    Backup.query.filter_by(server_id=server.id).delete(synchronize_session=False)
    db.session.add_all(found.values())
    _commit()
    logger.info(f"Backup discovery {server.name}: {len(found)} backups, {len(errors)} storage errors")
    return {
        "server_id": server.id,
        "server_name": server.name,
        "success": True,
        "backups": len(found),
        "errors": errors,
    }


def discover_backups():
    """Chạy discovery cho mọi server có container đang được theo dõi."""
    server_ids = [
        row[0] for row in db.session.query(InstalledScript.server_id).filter(
            InstalledScript.server_id.isnot(None), InstalledScript.container_id.isnot(None)
        ).distinct()
    ]
    results = []
    for server in Server.query.filter(Server.id.in_(server_ids)).order_by(Server.name).all():
        name = server.name
        try:
            results.append(discover_server_backups(server))
        except (RuntimeError, SQLAlchemyError) as e:
            db.session.rollback()
            logger.error(f"Backup discovery {name} failed: {e}")
            results.append({
                "server_id": server.id,
                "server_name": name,
                "success": False,
                "error": str(e),
            })
    return results


# ========== RESTORE ==========

def rootfs_storage(target, container_id):
    exit_code, out, _ = remote_exec.run_remote_command(target, f"cat /etc/pve/lxc/{container_id}.conf")
    return parse_rootfs_storage(out) if exit_code == 0 else None


def enqueue_restore(backup_id, storage=None):
    """
    Đẩy pct restore vào hàng đợi rq, trả về job id.
    Without `storage` the container's current rootfs storage is reused.
    """
    backup = get_backup(backup_id)
    cid = validate_container_id(backup.container_id)
    if not VOLID_RE.match(backup.backup_path or ""):
        raise ValueError(f"Invalid backup volume: {backup.backup_path!r}")
    target = SSHTarget.from_server(backup.server)

    if storage:
        if not STORAGE_NAME_RE.match(storage):
            raise ValueError(f"Invalid storage name: {storage!r}")
    else:
        storage = rootfs_storage(target, cid)
        if not storage:
            raise ValueError(
                f"Could not determine rootfs storage for container {cid}, choose a target storage"
            )

    job = queue.enqueue(
        remote_exec.run_restore_job, target, cid, backup.backup_path, storage,
        job_timeout=3 * 3600,
    )
    logger.info(f"Queued restore of CT {cid} from {backup.backup_path} to {storage} (job {job.id})")
    return job.id


# ========== PBS CREDENTIALS ==========

def credential_to_dict(credential):
    return {
        "id": credential.id,
        "server_id": credential.server_id,
        "storage_name": credential.storage_name,
        "pbs_ip": credential.pbs_ip,
        "pbs_datastore": credential.pbs_datastore,
        "pbs_fingerprint": credential.pbs_fingerprint,
        "has_password": bool(credential.pbs_password),
    }


def list_pbs_credentials(server_id):
    get_server(server_id)
    return PBSCredential.query.filter_by(server_id=server_id).order_by(
        PBSCredential.storage_name
    ).all()


def get_pbs_credential(server_id, storage_name):
    credential = PBSCredential.query.filter_by(
        server_id=server_id, storage_name=storage_name
    ).first()
    if not credential:
        raise LookupError(f"PBS credentials for {storage_name} not found")
    return credential


def save_pbs_credential(server_id, storage_name, data):
    """Tạo hoặc cập nhật; bỏ trống password thì giữ password cũ."""
    get_server(server_id)
    if not STORAGE_NAME_RE.match(storage_name or ""):
        raise ValueError(f"Invalid storage name: {storage_name!r}")
    if not DATASTORE_RE.match(data.get("pbs_datastore") or ""):
        raise ValueError("Invalid PBS datastore name")
    fingerprint = (data.get("pbs_fingerprint") or "").strip() or None
    if fingerprint and not FINGERPRINT_RE.match(fingerprint):
        raise ValueError("PBS fingerprint must be 32 colon separated hex bytes")

    credential = PBSCredential.query.filter_by(
        server_id=server_id, storage_name=storage_name
    ).first()
    password = data.get("pbs_password")
    if credential is None:
        if not password:
            raise ValueError("Password is required for new credentials")
        credential = PBSCredential(server_id=server_id, storage_name=storage_name)
        db.session.add(credential)
    credential.pbs_ip = data["pbs_ip"]
    credential.pbs_datastore = data["pbs_datastore"]
    credential.pbs_fingerprint = fingerprint
    if password:
        credential.pbs_password = password
    _commit()
    logger.info(f"Saved PBS credentials for server {server_id} storage {storage_name}")
    return credential


def delete_pbs_credential(server_id, storage_name):
    db.session.delete(get_pbs_credential(server_id, storage_name))
    _commit()
