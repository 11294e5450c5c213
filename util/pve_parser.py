"""
Parsers for the text output of Proxmox VE commands (pct, hostname, storage.cfg,
pvesm list, proxmox-backup-client).
"""

import json
import re
from datetime import datetime

CONTAINER_ID_RE = re.compile(r"^\d+$")
IPV4_RE = re.compile(r"^(?:\d{1,3}\.){3}\d{1,3}$")

# Lines the build framework prints once the container exists
_CT_ID_PATTERNS = [
    re.compile(r"Container\s*ID\s*:\s*(\d+)", re.IGNORECASE),
    re.compile(r"Container\s*created\s*with\s*ID\s*(\d+)", re.IGNORECASE),
    re.compile(r"Container\s*#\s*(\d+)", re.IGNORECASE),
    re.compile(r"Container\s*(\d+)", re.IGNORECASE),
]
_WEB_UI_RE = re.compile(r"https?://(\d{1,3}(?:\.\d{1,3}){3})(?::(\d+))?", re.IGNORECASE)
_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")


def validate_container_id(container_id):
    """Trả về container id dạng chuỗi, raise ValueError nếu không phải số."""
    value = "" if container_id is None else str(container_id).strip()
    if not CONTAINER_ID_RE.match(value):
        raise ValueError(f"Invalid container id: {container_id!r}")
    return value


def normalize_status(raw):
    raw = (raw or "").strip().lower()
    if raw in ("running", "stopped"):
        return raw
    return "unknown"


def parse_pct_list(output):
    """
    pct list:
        VMID       Status     Lock         Name
        100        running                 pihole
    -> {"100": "running"}
    """
    statuses = {}
    for line in (output or "").splitlines()[1:]:
        parts = line.split()
        if len(parts) < 2 or not CONTAINER_ID_RE.match(parts[0]):
            continue
        statuses[parts[0]] = normalize_status(parts[1])
    return statuses


def parse_pct_status(output):
    # "status: running"
    match = re.search(r"status:\s*(\S+)", output or "")
    return normalize_status(match.group(1) if match else None)


def parse_first_ipv4(output):
    """First IPv4 of `hostname -I`, skipping loopback."""
    for token in (output or "").split():
        if IPV4_RE.match(token) and not token.startswith("127."):
            return token
    return None


def parse_lxc_hostname(conf_text):
    for line in (conf_text or "").splitlines():
        line = line.strip()
        if line.startswith("hostname:"):
            return line.split(":", 1)[1].strip() or None
    return None


def container_id_from_conf_path(path):
    """/etc/pve/lxc/105.conf -> "105" """
    match = re.search(r"/(\d+)\.conf$", (path or "").strip())
    return match.group(1) if match else None


def parse_storage_cfg(text):
    """
    /etc/pve/storage.cfg chia thành block:
        dir: local
                path /var/lib/vz
                content iso,vztmpl,backup
    """
    storages = []
    current = None
    for raw_line in (text or "").splitlines():
        if not raw_line.strip() or raw_line.lstrip().startswith("#"):
            continue
        if not raw_line[0].isspace():
            match = re.match(r"^(\S+):\s*(\S+)", raw_line)
            if not match:
                current = None
                continue
            current = {
                "name": match.group(2),
                "type": match.group(1),
                "content": [],
                "nodes": [],
                "supports_backup": False,
            }
            storages.append(current)
            continue
        if current is None:
            continue
        key, _, value = raw_line.strip().partition(" ")
        value = value.strip()
        if key == "content":
            current["content"] = [c.strip() for c in value.split(",") if c.strip()]
            current["supports_backup"] = "backup" in current["content"]
        elif key == "nodes":
            current["nodes"] = [n.strip() for n in value.split(",") if n.strip()]
        elif key in ("server", "datastore", "fingerprint"):
            # PBS connection defaults
            current[key] = value
    return storages


def extract_container_id(output):
    """Best effort: container id the install script printed, or None."""
    text = _ANSI_RE.sub("", output or "")
    for pattern in _CT_ID_PATTERNS:
        for match in pattern.finditer(text):
            # Proxmox ids are 100..9999 in practice
            if 3 <= len(match.group(1)) <= 4:
                return match.group(1)
    return None


def parse_web_ui_url(output):
    """First http(s)://<ipv4>[:port] in the output -> (ip, port), or None."""
    match = _WEB_UI_RE.search(_ANSI_RE.sub("", output or ""))
    if not match:
        return None
    port = match.group(2) or ("443" if match.group(0).lower().startswith("https") else "80")
    return match.group(1), int(port)


# ========== BACKUPS ==========

_VZDUMP_NAME_RE = re.compile(
    r"vzdump-lxc-(?P<vmid>\d+)-(?P<stamp>\d{4}_\d{2}_\d{2}-\d{2}_\d{2}_\d{2})"
)
_PBS_VOLID_RE = re.compile(
    r"backup/ct/(?P<vmid>\d+)/(?P<stamp>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z)$"
)
_ROOTFS_RE = re.compile(r"^rootfs:\s*([^:\s]+):", re.MULTILINE)


def backup_time(volid):
    """Thời điểm tạo backup, đọc từ tên file vzdump hoặc snapshot PBS."""
    match = _VZDUMP_NAME_RE.search(volid or "")
    if match:
        return datetime.strptime(match.group("stamp"), "%Y_%m_%d-%H_%M_%S")
    match = _PBS_VOLID_RE.search(volid or "")
    if match:
        return datetime.strptime(match.group("stamp"), "%Y-%m-%dT%H:%M:%SZ")
    return None


def _backup_name(volid):
    path = volid.split(":", 1)[-1]
    if path.startswith("backup/ct/"):
        return path[len("backup/"):]
    return path.rsplit("/", 1)[-1]


def parse_pvesm_backups(output):
    """
    `pvesm list <storage> --content backup`:
        Volid                                                    Format  Type     Size VMID
        local:backup/vzdump-lxc-100-2024_05_01-02_00_03.tar.zst  tar.zst backup   52428800 100
        pbs1:backup/ct/100/2024-05-01T02:00:03Z                  pbs-ct  backup   73400320 100
    Only container backups are returned, VM backups are skipped.
    """
    backups = []
    for line in (output or "").splitlines():
        parts = line.split()
        if len(parts) < 5 or parts[0] == "Volid":
            continue
        volid, fmt, size, vmid = parts[0], parts[1], parts[-2], parts[-1]
        if "vzdump-lxc-" not in volid and fmt != "pbs-ct":
            continue
        if not CONTAINER_ID_RE.match(vmid):
            continue
        backups.append({
            "volid": volid,
            "name": _backup_name(volid),
            "vmid": vmid,
            "size": int(size) if size.isdigit() else None,
            "created_at": backup_time(volid),
        })
    return backups


def parse_pbs_snapshots(output, storage_name):
    """
    `proxmox-backup-client snapshots --output-format json` -> same shape as
    parse_pvesm_backups, volid built the way PVE names PBS volumes.
    Raises ValueError on output that is not a JSON list.
    """
    data = json.loads(output or "")
    if not isinstance(data, list):
        raise ValueError("Unexpected proxmox-backup-client output")
    backups = []
    for item in data:
        if item.get("backup-type") != "ct":
            continue
        vmid = str(item.get("backup-id", ""))
        if not CONTAINER_ID_RE.match(vmid) or not item.get("backup-time"):
            continue
        created = datetime.utcfromtimestamp(int(item["backup-time"]))
        volid = f"{storage_name}:backup/ct/{vmid}/{created.strftime('%Y-%m-%dT%H:%M:%SZ')}"
        backups.append({
            "volid": volid,
            "name": _backup_name(volid),
            "vmid": vmid,
            "size": item.get("size"),
            "created_at": created,
        })
    return backups


def parse_rootfs_storage(conf_text):
    """`rootfs: local-lvm:vm-100-disk-0,size=8G` -> "local-lvm"."""
    match = _ROOTFS_RE.search(conf_text or "")
    return match.group(1) if match else None
