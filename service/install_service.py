"""
Run a downloaded script locally or on a server and turn its output into
{type, data, timestamp} events for the WebSocket.
"""

import logging
import os
import time

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from bash_script import remote_exec
from bash_script.remote_exec import SSHTarget
from database_init import db
from models.installed_script import InstalledScript
from models.script_descriptor import ScriptDescriptor
from models.server import Server
from util.constant import EXECUTION_MODE, INSTALL_STATUS
from util.pve_parser import extract_container_id, parse_web_ui_url

logger = logging.getLogger("install_logger")


def _event(kind, data):
    return {"type": kind, "data": data, "timestamp": int(time.time() * 1000)}


def resolve_script_path(script_path):
    """Đường dẫn tuyệt đối của script, bắt buộc nằm trong SCRIPTS_DIR và tồn tại."""
    if not script_path:
        raise ValueError("scriptPath is required")
    base = os.path.realpath(current_app.config["SCRIPTS_DIR"])
    full = os.path.realpath(os.path.join(base, script_path))
    if os.path.commonpath([base, full]) != base:
        raise ValueError(f"Script path must be inside the scripts directory: {script_path}")
    if not os.path.isfile(full):
        raise ValueError(f"Script not found: {script_path}")
    return full


def validate_execution(script_path, mode, server_id=None):
    """
    Kiểm tra request trước khi chạy.
    Returns (absolute path, relative path, Server or None).
    """
    if mode not in (EXECUTION_MODE.local.value, EXECUTION_MODE.ssh.value):
        raise ValueError(f"Unknown execution mode: {mode}")

    server = None
    if mode == EXECUTION_MODE.ssh.value:
        if Server.query.count() == 0:
            raise ValueError(
                "SSH execution requires a configured server, add one under Settings > Servers"
            )
        if server_id in (None, ""):
            raise ValueError("serverId is required for SSH execution")
        server = Server.query.get(server_id)
        if not server:
            raise LookupError(f"Server {server_id} not found")

    full = resolve_script_path(script_path)
    relpath = os.path.relpath(full, os.path.realpath(current_app.config["SCRIPTS_DIR"]))
    return full, relpath.replace(os.sep, "/"), server


def _default_script_name(relpath):
    name = os.path.basename(relpath)
    return name[:-3] if name.endswith(".sh") else name


def _create_record(script_name, relpath, mode, server):
    descriptor = ScriptDescriptor.query.filter_by(slug=script_name).first()
    record = InstalledScript(
        script_name=script_name,
        script_path=relpath,
        server_id=server.id if server else None,
        execution_mode=mode,
        status=INSTALL_STATUS.in_progress.value,
        output_log="",
        web_ui_port=descriptor.interface_port if descriptor else None,
    )
    db.session.add(record)
    db.session.commit()
    return record


def _finish_record(record, success, log_text):
    try:
        record.status = INSTALL_STATUS.success.value if success else INSTALL_STATUS.failed.value
        record.output_log = log_text
        container_id = extract_container_id(log_text)
        if container_id and record.server_id:
            record.container_id = container_id
        web_ui = parse_web_ui_url(log_text)
        if web_ui and not record.web_ui_ip:
            record.web_ui_ip = web_ui[0]
            record.web_ui_port = record.web_ui_port or web_ui[1]
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Update installed script {record.id} failed: {e}", exc_info=True)


def execute_script(script_path, mode, server_id=None, record=False, script_name=None, handle=None):
    """
    Validate ngay lập tức (raise ValueError / LookupError), sau đó trả về
    generator các event start / output / error / end.
    `handle` (ExecutionHandle) cho phép gửi input hoặc dừng script đang chạy.
    """
    full, relpath, server = validate_execution(script_path, mode, server_id)
    target = SSHTarget.from_server(server) if server else None
    return _run(full, relpath, mode, target, record,
                script_name or _default_script_name(relpath), handle)


def _open_stream(full, relpath, target, handle):
    if target:
        return remote_exec.iter_remote_script(
            target, relpath, current_app.config["SCRIPTS_DIR"], handle=handle
        )
    return remote_exec.iter_local_script(full, cwd=os.path.dirname(full), handle=handle)


def _run(full, relpath, mode, target, record, script_name, handle=None):
    rec = None
    if record:
        server = Server.query.get(target.id) if target else None
        rec = _create_record(script_name, relpath, mode, server)

    where = (target.name or target.host) if target else "localhost"
    chunks = []
    exit_code = None
    try:
        logger.info(f"===> Execute {relpath} ({mode}) on {where}")
        yield _event("start", f"Starting execution of {relpath} on {where}")

        stream = None
        try:
            stream = _open_stream(full, relpath, target, handle)
            for kind, data in stream:
                if kind == "exit":
                    exit_code = data
                    continue
                chunks.append(data)
                yield _event("output", data)
        except (RuntimeError, TimeoutError, OSError) as e:
            logger.error(f"Execute {relpath} failed: {e}")
            chunks.append(f"\n{e}\n")
            yield _event("error", str(e))
        finally:
            if stream is not None:
                stream.close()
    except GeneratorExit:
        # Socket closed mid-run
        if rec is not None:
            _finish_record(rec, False, "".join(chunks) + "\nExecution cancelled\n")
        raise

    stopped = handle is not None and handle.stopped
    if stopped:
        chunks.append("\nExecution stopped by user\n")
    if rec is not None:
        _finish_record(rec, exit_code == 0 and not stopped, "".join(chunks))

    if stopped:
        logger.info(f"Execute {relpath} stopped by user")
        yield _event("end", "Script execution stopped by user")
    else:
        logger.info(f"Execute {relpath} finished with code {exit_code}")
        yield _event("end", f"Script execution finished with code: {exit_code}")
