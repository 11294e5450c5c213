"""
Inventory: servers, installed-script records, stats, auto-detection of
community-script containers and orphan cleanup.
"""

import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from bash_script import remote_exec
from bash_script.remote_exec import SSHTarget
from database_init import db
from models.installed_script import InstalledScript
from models.server import Server
from util.constant import AUTH_TYPE, COMMUNITY_SCRIPT_TAG, EXECUTION_MODE, INSTALL_STATUS
from util.pve_parser import container_id_from_conf_path, parse_lxc_hostname, validate_container_id

logger = logging.getLogger("install_logger")

SERVER_FIELDS = (
    "name", "ip", "user", "password", "auth_type", "ssh_key",
    "ssh_key_passphrase", "ssh_port", "color",
)
RECORD_FIELDS = (
    "script_name", "script_path", "container_id", "server_id", "execution_mode",
    "status", "output_log", "web_ui_ip", "web_ui_port",
)

DETECT_COMMAND = (
    'for file in /etc/pve/lxc/*.conf; do if [ -f "$file" ]; then '
    f'if grep -q "{COMMUNITY_SCRIPT_TAG}" "$file"; then echo "$file"; fi; fi; done'
)


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


# ========== SERVERS ==========

def server_to_dict(server, include_secrets=False):
    data = {
        "id": server.id,
        "name": server.name,
        "ip": server.ip,
        "user": server.user,
        "auth_type": server.auth_type,
        "ssh_port": server.ssh_port,
        "color": server.color,
        "has_password": bool(server.password),
        "has_ssh_key": bool(server.ssh_key),
        "created_at": server.created_at.isoformat() if server.created_at else None,
        "updated_at": server.updated_at.isoformat() if server.updated_at else None,
    }
    if include_secrets:
        data.update(
            password=server.password,
            ssh_key=server.ssh_key,
            ssh_key_passphrase=server.ssh_key_passphrase,
        )
    return data


def list_servers():
    return Server.query.order_by(Server.name.asc(), Server.id.asc()).all()


def get_server(server_id):
    server = Server.query.get(server_id)
    if not server:
        raise LookupError(f"Server {server_id} not found")
    return server


def _check_auth(server):
    if server.auth_type == AUTH_TYPE.key.value and not server.ssh_key:
        raise ValueError("SSH key is required for key authentication")
    if server.auth_type == AUTH_TYPE.password.value and not server.password:
        raise ValueError("Password is required for password authentication")


def create_server(data):
    server = Server(**{k: data[k] for k in SERVER_FIELDS if data.get(k) not in (None, "")})
    server.user = server.user or "root"
    server.ssh_port = server.ssh_port or 22
    server.auth_type = server.auth_type or AUTH_TYPE.password.value
    _check_auth(server)
    db.session.add(server)
    _commit()
    logger.info(f"Server {server.name} ({server.ip}) created")
    return server


def update_server(server_id, data):
    """Secrets are only replaced when a new value is sent."""
    server = get_server(server_id)
    for key in SERVER_FIELDS:
        if key not in data:
            continue
        if key in ("password", "ssh_key", "ssh_key_passphrase") and data[key] in (None, ""):
            continue
        setattr(server, key, data[key])
    _check_auth(server)
    _commit()
    return server


def delete_server(server_id):
    server = get_server(server_id)
    # SQLite does not enforce ON DELETE SET NULL unless foreign keys are on
    InstalledScript.query.filter_by(server_id=server.id).update(
        {InstalledScript.server_id: None}, synchronize_session=False
    )
    db.session.delete(server)
    _commit()
    logger.info(f"Server {server_id} deleted")


def test_server(server_id):
    ok, message = remote_exec.test_connection(SSHTarget.from_server(get_server(server_id)))
    return {"success": ok, "message": message}


def generate_keypair():
    private_key, public_key = remote_exec.generate_key_pair()
    return {"private_key": private_key, "public_key": public_key}


# ========== INSTALLED SCRIPTS ==========

def record_to_dict(record):
    server = record.server
    return {
        "id": record.id,
        "script_name": record.script_name,
        "script_path": record.script_path,
        "container_id": record.container_id,
        "server_id": record.server_id,
        "server_name": server.name if server else None,
        "server_ip": server.ip if server else None,
        "server_color": server.color if server else None,
        "execution_mode": record.execution_mode,
        "installation_date": record.installation_date.isoformat() if record.installation_date else None,
        "status": record.status,
        "output_log": record.output_log,
        "web_ui_ip": record.web_ui_ip,
        "web_ui_port": record.web_ui_port,
    }


def list_records(server_id=None):
    query = InstalledScript.query
    if server_id is not None:
        query = query.filter_by(server_id=server_id)
    return query.order_by(InstalledScript.installation_date.desc(), InstalledScript.id.desc()).all()


def get_record(record_id):
    record = InstalledScript.query.get(record_id)
    if not record:
        raise LookupError(f"Installed script {record_id} not found")
    return record


def _check_record(record):
    if record.container_id not in (None, ""):
        record.container_id = validate_container_id(record.container_id)
        if not record.server_id and record.execution_mode == EXECUTION_MODE.ssh.value:
            raise ValueError("container_id requires a server")
    else:
        record.container_id = None
    if record.server_id is not None:
        get_server(record.server_id)
    if record.status not in {s.value for s in INSTALL_STATUS}:
        raise ValueError(f"Invalid status: {record.status}")


def create_record(data):
    record = InstalledScript(**{k: data[k] for k in RECORD_FIELDS if k in data})
    record.execution_mode = record.execution_mode or EXECUTION_MODE.local.value
    record.status = record.status or INSTALL_STATUS.in_progress.value
    _check_record(record)
    db.session.add(record)
    _commit()
    return record


def update_record(record_id, data):
    record = get_record(record_id)
    for key in RECORD_FIELDS:
        if key in data:
            setattr(record, key, data[key])
    _check_record(record)
    _commit()
    return record


def delete_record(record_id):
    record = get_record(record_id)
    db.session.delete(record)
    _commit()


def installation_stats():
    def _grouped(column):
        rows = db.session.query(column, func.count(InstalledScript.id)).group_by(column).all()
        return {key if key is not None else "none": count for key, count in rows}

    by_server = {}
    rows = (
        db.session.query(Server.name, func.count(InstalledScript.id))
        .select_from(InstalledScript)
        .outerjoin(Server, InstalledScript.server_id == Server.id)
        .group_by(Server.name)
        .all()
    )
    for name, count in rows:
        by_server[name or "local"] = by_server.get(name or "local", 0) + count

    return {
        "total": InstalledScript.query.count(),
        "by_status": _grouped(InstalledScript.status),
        "by_mode": _grouped(InstalledScript.execution_mode),
        "by_server": by_server,
    }


# ========== AUTO-DETECT ==========

def auto_detect(server_id):
    """
    Tìm các container có tag community-script trên 1 server và upsert record.
    Zero tagged containers leaves existing records untouched.
    """
    server = get_server(server_id)
    target = SSHTarget.from_server(server)

    exit_code, out, err = remote_exec.run_remote_command(target, DETECT_COMMAND)
    if exit_code != 0 and not out.strip():
        raise RuntimeError(err.strip() or f"Detection command exited with {exit_code}")

    conf_paths = [line.strip() for line in out.splitlines() if line.strip().endswith(".conf")]
    created, updated, skipped = 0, 0, []
    try:
        for conf_path in conf_paths:
            container_id = container_id_from_conf_path(conf_path)
            if not container_id:
                skipped.append(conf_path)
                continue
            code, conf_text, conf_err = remote_exec.run_remote_command(target, f'cat "{conf_path}"')
            hostname = parse_lxc_hostname(conf_text) if code == 0 else None
            if not hostname:
                logger.warning(f"{server.name}: no hostname in {conf_path} {conf_err.strip()}")
                skipped.append(conf_path)
                continue

            record = InstalledScript.query.filter_by(
                server_id=server.id, container_id=container_id
            ).first()
            if record:
                record.script_name = hostname
                updated += 1
            else:
                db.session.add(InstalledScript(
                    script_name=hostname,
                    script_path=f"detected/{hostname}",
                    container_id=container_id,
                    server_id=server.id,
                    execution_mode=EXECUTION_MODE.ssh.value,
                    status=INSTALL_STATUS.success.value,
                    output_log=f"Auto-detected from LXC config: {conf_path}",
                ))
                created += 1
    except RuntimeError:
        # Server dropped mid-scan: nothing from this server is kept
        db.session.rollback()
        raise
    if created or updated:
        _commit()

    logger.info(f"Auto-detect {server.name}: {created} created, {updated} updated")
    return {
        "server_id": server.id,
        "server_name": server.name,
        "success": True,
        "detected": len(conf_paths) - len(skipped),
        "created": created,
        "updated": updated,
        "skipped": skipped,
    }


def auto_detect_all():
    results = []
    for server in list_servers():
        try:
            results.append(auto_detect(server.id))
        except (RuntimeError, SQLAlchemyError) as e:
            db.session.rollback()
            logger.error(f"Auto-detect {server.name} failed: {e}")
            results.append({
                "server_id": server.id,
                "server_name": server.name,
                "success": False,
                "error": str(e),
            })
    return results


# ========== CLEANUP ==========

def cleanup_orphans():
    """
    Xóa record ssh mà server đã mất hoặc container config không còn.
    Unreachable servers are skipped.
    """
    deleted, skipped_servers = [], []
    records = InstalledScript.query.filter_by(execution_mode=EXECUTION_MODE.ssh.value).all()

    by_server = {}
    for record in records:
        if not record.server_id or not record.server:
            deleted.append(record.script_name)
            db.session.delete(record)
            continue
        by_server.setdefault(record.server_id, []).append(record)

    for server_id, server_records in by_server.items():
        target = SSHTarget.from_server(server_records[0].server)
        for record in server_records:
            if not record.container_id:
                continue
            cid = validate_container_id(record.container_id)
            try:
                _, out, _ = remote_exec.run_remote_command(
                    target,
                    f'test -f "/etc/pve/lxc/{cid}.conf" && echo "exists" || echo "not_found"',
                )
            except RuntimeError as e:
                logger.warning(f"Cleanup: server {target.name} unreachable, skipped: {e}")
                skipped_servers.append(target.name)
                break
            if out.strip() == "not_found":
                deleted.append(record.script_name)
                db.session.delete(record)

    _commit()
    logger.info(f"Cleanup removed {len(deleted)} orphaned record(s)")
    return {"success": True, "deleted_count": len(deleted), "deleted": deleted,
            "skipped_servers": skipped_servers}
