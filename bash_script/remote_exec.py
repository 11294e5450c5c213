"""
/bash_script/remote_exec.py
remote_exec.py  ―  SSH / local execution primitives for helper scripts
────────────────────────────────────────────────────────────────────────────
✓ One paramiko connection per command, closed when the command ends
✓ Password or private key auth (optional passphrase)
✓ Upload the scripts directory over SFTP and stream `bash <script>` output
✓ Local `bash <script>` with line streaming
✓ ExecutionHandle: forward user input to a running script or stop it
✓ rq jobs: vzdump backup, pct restore
"""

from __future__ import annotations

import codecs
import io
import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Iterator, Optional

import paramiko
from flask import current_app, has_app_context

logger = logging.getLogger("install_logger")

REMOTE_SCRIPTS_DIR = "/tmp/scripts"


def _setting(name: str, default: int) -> int:
    """Timeouts come from the Flask config when available, env otherwise."""
    if has_app_context() and name in current_app.config:
        return int(current_app.config[name])
    return int(os.getenv(name, default))


# ──────────────────────────── Target ───────────────────────────────────── #

@dataclass
class SSHTarget:
    """Connection details copied out of a Server row.

    rq jobs receive this instead of the ORM object so they never touch the DB.
    """

    host: str
    user: str
    port: int = 22
    auth_type: str = "password"
    password: Optional[str] = None
    ssh_key: Optional[str] = None
    ssh_key_passphrase: Optional[str] = None
    name: str = ""
    id: Optional[int] = None

    @classmethod
    def from_server(cls, server) -> "SSHTarget":
        return cls(
            host=server.ip,
            user=server.user or "root",
            port=int(server.ssh_port or 22),
            auth_type=server.auth_type or "password",
            password=server.password,
            ssh_key=server.ssh_key,
            ssh_key_passphrase=server.ssh_key_passphrase,
            name=server.name,
            id=server.id,
        )


# ──────────────────────────── SSH Helper ───────────────────────────────── #

_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


def _load_private_key(pem: str, passphrase: Optional[str] = None) -> paramiko.PKey:
    """Thử lần lượt các loại key cho tới khi parse được."""
    last_error = None
    for key_cls in _KEY_CLASSES:
        try:
            return key_cls.from_private_key(io.StringIO(pem), password=passphrase or None)
        except paramiko.PasswordRequiredException as e:
            raise RuntimeError("SSH key is encrypted, a passphrase is required") from e
        except (paramiko.SSHException, ValueError) as e:
            last_error = e
    raise RuntimeError(f"Unsupported or invalid SSH private key: {last_error}")


def _connect_ssh(target: SSHTarget, timeout: Optional[int] = None) -> paramiko.SSHClient:
    """Khởi tạo client Paramiko đã trust host-key & timeout."""
    timeout = timeout or _setting("SSH_TIMEOUT", 20)
    kwargs = dict(
        hostname=target.host,
        port=target.port,
        username=target.user,
        timeout=timeout,
        banner_timeout=timeout,
        allow_agent=False,
        look_for_keys=False,
    )
    if target.auth_type == "key":
        if not target.ssh_key:
            raise RuntimeError(f"Server {target.name or target.host} has no SSH key configured")
        kwargs["pkey"] = _load_private_key(target.ssh_key, target.ssh_key_passphrase)
    else:
        kwargs["password"] = target.password

    ssh = paramiko.SSHClient()
    ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        ssh.connect(**kwargs)
    except (paramiko.SSHException, OSError) as e:
        ssh.close()
        raise RuntimeError(f"SSH connection to {target.host}:{target.port} failed: {e}") from e
    return ssh


def run_remote_command(
    target: SSHTarget, command: str, timeout: Optional[int] = None
) -> tuple[int, str, str]:
    """Chạy 1 lệnh, trả về (exit_code, stdout, stderr)."""
    ssh = _connect_ssh(target)
    try:
        stdin, stdout, stderr = ssh.exec_command(command, timeout=timeout)
        out = stdout.read().decode(errors="replace")
        err = stderr.read().decode(errors="replace")
        exit_code = stdout.channel.recv_exit_status()
    finally:
        ssh.close()
    return exit_code, out, err


def run_local_command(command: str, timeout: Optional[int] = None) -> tuple[int, str, str]:
    res = subprocess.run(
        command, shell=True, capture_output=True, text=True, timeout=timeout
    )
    return res.returncode, res.stdout, res.stderr


def test_connection(target: SSHTarget) -> tuple[bool, str]:
    try:
        exit_code, out, err = run_remote_command(target, "echo connected", timeout=15)
    except RuntimeError as e:
        return False, str(e)
    if exit_code != 0:
        return False, (err or out).strip() or f"exit {exit_code}"
    return True, f"Connected to {target.host}:{target.port} as {target.user}"


def generate_key_pair(comment: str = "pve-scripts-local") -> tuple[str, str]:
    """Sinh RSA key: (private PEM, public key dạng OpenSSH)."""
    key = paramiko.RSAKey.generate(4096)
    buf = io.StringIO()
    key.write_private_key(buf)
    public_key = f"{key.get_name()} {key.get_base64()} {comment}"
    return buf.getvalue(), public_key


# ─────────────────────────── Script upload ─────────────────────────────── #

def _sftp_mkdirs(sftp: paramiko.SFTPClient, remote_dir: str) -> None:
    path = ""
    for part in remote_dir.strip("/").split("/"):
        path = f"{path}/{part}"
        try:
            sftp.stat(path)
        except IOError:
            sftp.mkdir(path)


def upload_scripts_dir(ssh: paramiko.SSHClient, local_dir: str,
                       remote_dir: str = REMOTE_SCRIPTS_DIR) -> int:
    """Copy toàn bộ thư mục scripts lên server, trả về số file đã copy."""
    count = 0
    with ssh.open_sftp() as sftp:
        _sftp_mkdirs(sftp, remote_dir)
        for root, dirs, files in os.walk(local_dir):
            rel = os.path.relpath(root, local_dir)
            target_dir = remote_dir if rel == "." else f"{remote_dir}/{rel.replace(os.sep, '/')}"
            for d in dirs:
                _sftp_mkdirs(sftp, f"{target_dir}/{d}")
            for f in files:
                sftp.put(os.path.join(root, f), f"{target_dir}/{f}")
                count += 1
    return count


# ─────────────────────────── Streaming ─────────────────────────────────── #

class ExecutionHandle:
    """
    Điều khiển 1 lần chạy script đang stream.
    Stream gắn writer/closer vào handle khi process hoặc channel đã mở;
    WebSocket gọi send_input() / stop() từ thread khác.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._writer = None
        self._closer = None
        self.stopped = False

    def attach(self, writer, closer) -> None:
        with self._lock:
            self._writer, self._closer = writer, closer
            stopped = self.stopped
        if stopped:
            closer()

    def detach(self) -> None:
        with self._lock:
            self._writer = self._closer = None

    def send_input(self, data: str) -> None:
        with self._lock:
            writer = self._writer
        if writer is None:
            raise RuntimeError("No running script to send input to")
        writer(data)

    def stop(self) -> None:
        with self._lock:
            self.stopped = True
            closer = self._closer
        if closer is not None:
            closer()


def iter_remote_script(
    target: SSHTarget,
    script_path: str,
    scripts_dir: str,
    max_runtime: Optional[int] = None,
    idle_timeout: Optional[int] = None,
    handle: Optional[ExecutionHandle] = None,
) -> Iterator[tuple[str, object]]:
    """
    Upload scripts → chạy `bash /tmp/scripts/<script_path>` trong PTY.
    Yields ("output", chunk) while running and a final ("exit", code);
    the code is None when the run was stopped through the handle.
    Raises TimeoutError past max_runtime or idle_timeout.
    """
    max_runtime = max_runtime or _setting("INSTALL_MAX_RUNTIME", 3600)
    idle_timeout = idle_timeout or _setting("INSTALL_IDLE_TIMEOUT", 900)

    ssh = _connect_ssh(target)
    try:
        copied = upload_scripts_dir(ssh, scripts_dir)
        logger.info(f"Uploaded {copied} files to {target.host}:{REMOTE_SCRIPTS_DIR}")

        remote_path = f"{REMOTE_SCRIPTS_DIR}/{script_path.lstrip('/')}"
        chan = ssh.get_transport().open_session()
        chan.get_pty(term="xterm", width=200)
        chan.exec_command(f"cd {REMOTE_SCRIPTS_DIR} && bash {remote_path}")
        if handle is not None:
            handle.attach(lambda data: chan.sendall(data.encode()), chan.close)

        # multi-byte characters may be split across recv() calls
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        start = last_read = time.time()
        while not (handle is not None and handle.stopped):
            got_data = False
            if chan.recv_ready():
                raw = chan.recv(4096)
                if raw:
                    got_data = True
                    last_read = time.time()
                    chunk = decoder.decode(raw)
                    if chunk:
                        yield "output", chunk

            if chan.exit_status_ready() and not chan.recv_ready():
                break

            now = time.time()
            if now - start > max_runtime:
                chan.close()
                raise TimeoutError(f"Script exceeded max runtime of {max_runtime}s")
            if now - last_read > idle_timeout:
                chan.close()
                raise TimeoutError(f"No output for {idle_timeout}s")

            if not got_data:
                time.sleep(0.1)

        tail = decoder.decode(b"", final=True)
        if tail:
            yield "output", tail
        if handle is not None and handle.stopped:
            yield "exit", None
        else:
            yield "exit", chan.recv_exit_status()
    finally:
        if handle is not None:
            handle.detach()
        ssh.close()


def _kill_group(proc: subprocess.Popen) -> None:
    """Kill bash cùng các process con (script chạy trong session riêng)."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def iter_local_script(
    script_path: str,
    cwd: Optional[str] = None,
    handle: Optional[ExecutionHandle] = None,
) -> Iterator[tuple[str, object]]:
    """Run `bash <script_path>` locally, yielding ("output", line) then ("exit", code).

    stdin is a pipe fed through the handle, /dev/null without one.
    """
    proc = subprocess.Popen(
        ["bash", script_path],
        cwd=cwd,
        stdin=subprocess.PIPE if handle is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="replace",
        bufsize=1,
        start_new_session=True,
    )
    if handle is not None:
        def _write(data):
            proc.stdin.write(data)
            proc.stdin.flush()

        handle.attach(_write, lambda: _kill_group(proc))
    try:
        for line in proc.stdout:
            yield "output", line
        yield "exit", proc.wait()
    finally:
        if handle is not None:
            handle.detach()
        if proc.poll() is None:
            _kill_group(proc)
            proc.wait()
        if proc.stdin is not None:
            proc.stdin.close()


# ─────────────────────────── Background jobs ───────────────────────────── #

def run_backup_job(target: Optional[SSHTarget], container_id: str, storage: str) -> dict:
    """rq job: vzdump 1 container vào storage đã chọn."""
    command = f"vzdump {container_id} --storage {storage} --mode snapshot"
    where = target.host if target else "localhost"
    logger.info(f"===> Backup CT {container_id} on {where} to {storage}")
    if target:
        exit_code, out, err = run_remote_command(target, command)
    else:
        exit_code, out, err = run_local_command(command)
    if exit_code != 0:
        logger.error(f"Backup CT {container_id} failed ({exit_code}): {err or out}")
        raise RuntimeError(f"vzdump exit {exit_code}: {(err or out).strip()}")
    logger.info(f"Backup CT {container_id} done")
    return {"container_id": container_id, "storage": storage, "output": out}


def run_restore_job(target: Optional[SSHTarget], container_id: str, volid: str, storage: str) -> dict:
    """
    rq job: thay container hiện tại bằng bản backup.
    pct stop (bỏ qua nếu đã dừng) → pct destroy (bỏ qua nếu không tồn tại)
    → pct restore <id> <volid> --storage <storage>.
    """
    def run(command):
        if target:
            return run_remote_command(target, command)
        return run_local_command(command)

    where = target.host if target else "localhost"
    logger.info(f"===> Restore CT {container_id} on {where} from {volid}")
    steps = []

    exit_code, out, err = run(f"pct stop {container_id}")
    steps.append(("stop", exit_code))

    exit_code, out, err = run(f"pct destroy {container_id}")
    if exit_code != 0 and "does not exist" not in f"{out}{err}":
        logger.error(f"Restore CT {container_id}: destroy failed ({exit_code}): {err or out}")
        raise RuntimeError(f"pct destroy exit {exit_code}: {(err or out).strip()}")
    steps.append(("destroy", exit_code))

    exit_code, out, err = run(
        f"pct restore {container_id} {shlex.quote(volid)} --storage {storage}"
    )
    if exit_code != 0:
        logger.error(f"Restore CT {container_id} failed ({exit_code}): {err or out}")
        raise RuntimeError(f"pct restore exit {exit_code}: {(err or out).strip()}")
    steps.append(("restore", exit_code))
    logger.info(f"Restore CT {container_id} done")
    return {"container_id": container_id, "volid": volid, "storage": storage,
            "steps": steps, "output": out}
