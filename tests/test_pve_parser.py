import json
from datetime import datetime

import pytest

from util.pve_parser import (
    backup_time,
    container_id_from_conf_path,
    extract_container_id,
    parse_first_ipv4,
    parse_lxc_hostname,
    parse_pbs_snapshots,
    parse_pct_list,
    parse_pct_status,
    parse_pvesm_backups,
    parse_rootfs_storage,
    parse_storage_cfg,
    parse_web_ui_url,
    validate_container_id,
)

PCT_LIST = """VMID       Status     Lock         Name
100        running                 pihole
101        stopped                 adguard
102        mounted     backup      weird
"""

STORAGE_CFG = """dir: local
\tpath /var/lib/vz
\tcontent iso,vztmpl,backup

lvmthin: local-lvm
\tthinpool data
\tvgname pve
\tcontent rootdir,images

nfs: nas
\texport /volume1/pve
\tserver 10.0.0.5
\tcontent backup
\tnodes pve1,pve2
"""


def test_parse_pct_list_maps_statuses():
    assert parse_pct_list(PCT_LIST) == {
        "100": "running",
        "101": "stopped",
        "102": "unknown",
    }


def test_parse_pct_list_ignores_garbage():
    assert parse_pct_list("") == {}
    assert parse_pct_list("VMID Status\nnot-a-row\n") == {}


@pytest.mark.parametrize("output, expected", [
    ("status: running\n", "running"),
    ("status: stopped", "stopped"),
    ("something else", "unknown"),
])
def test_parse_pct_status(output, expected):
    assert parse_pct_status(output) == expected


def test_parse_first_ipv4_skips_loopback_and_ipv6():
    assert parse_first_ipv4("127.0.0.1 fe80::1 192.168.1.50 10.0.0.2\n") == "192.168.1.50"
    assert parse_first_ipv4("fe80::1\n") is None


def test_parse_storage_cfg():
    storages = parse_storage_cfg(STORAGE_CFG)
    assert [s["name"] for s in storages] == ["local", "local-lvm", "nas"]

    local, lvm, nas = storages
    assert local["type"] == "dir"
    assert local["supports_backup"] is True
    assert lvm["supports_backup"] is False
    assert lvm["content"] == ["rootdir", "images"]
    assert nas["nodes"] == ["pve1", "pve2"]


def test_lxc_hostname_and_conf_path():
    conf = "arch: amd64\nhostname: homeassistant\ntags: community-script;smarthome\n"
    assert parse_lxc_hostname(conf) == "homeassistant"
    assert parse_lxc_hostname("arch: amd64\n") is None
    assert container_id_from_conf_path("/etc/pve/lxc/105.conf") == "105"
    assert container_id_from_conf_path("/etc/pve/lxc/abc.conf") is None


@pytest.mark.parametrize("value", ["100", 100, " 2001 "])
def test_validate_container_id_accepts_digits(value):
    assert validate_container_id(value) == str(value).strip()


@pytest.mark.parametrize("value", ["", None, "10a", "100; rm -rf /", "-1"])
def test_validate_container_id_rejects_non_digits(value):
    with pytest.raises(ValueError):
        validate_container_id(value)


def test_extract_container_id_from_install_output():
    output = "\x1b[32m✔\x1b[0m Created LXC Container\n🆔  Container ID: 123\n"
    assert extract_container_id(output) == "123"
    assert extract_container_id("nothing useful here") is None


def test_parse_web_ui_url():
    assert parse_web_ui_url("Access it using http://192.168.1.20:8080/admin") == ("192.168.1.20", 8080)
    assert parse_web_ui_url("https://10.0.0.9/") == ("10.0.0.9", 443)
    assert parse_web_ui_url("no url") is None


PVESM_BACKUPS = """Volid                                                      Format  Type          Size VMID
local:backup/vzdump-lxc-100-2024_05_01-02_00_03.tar.zst    tar.zst backup    52428800 100
local:backup/vzdump-qemu-200-2024_05_01-02_10_00.vma.zst   vma.zst backup   104857600 200
pbs1:backup/ct/101/2024-05-02T03:04:05Z                    pbs-ct  backup    73400320 101
pbs1:backup/vm/200/2024-05-02T03:04:05Z                    pbs-vm  backup    73400320 200
"""


def test_parse_pvesm_backups_keeps_container_backups():
    backups = parse_pvesm_backups(PVESM_BACKUPS)

    assert [(b["vmid"], b["name"]) for b in backups] == [
        ("100", "vzdump-lxc-100-2024_05_01-02_00_03.tar.zst"),
        ("101", "ct/101/2024-05-02T03:04:05Z"),
    ]
    assert backups[0]["size"] == 52428800
    assert backups[0]["created_at"] == datetime(2024, 5, 1, 2, 0, 3)
    assert backups[1]["volid"] == "pbs1:backup/ct/101/2024-05-02T03:04:05Z"


def test_parse_pvesm_backups_empty_storage():
    assert parse_pvesm_backups("Volid Format  Type      Size VMID\n") == []
    assert parse_pvesm_backups("") == []


def test_backup_time_unknown_name():
    assert backup_time("nfs:backup/manual-copy.tar") is None


def test_parse_pbs_snapshots_builds_pve_volids():
    output = json.dumps([
        {"backup-type": "ct", "backup-id": "105", "backup-time": 1714618800, "size": 1234},
        {"backup-type": "vm", "backup-id": "200", "backup-time": 1714618800},
        {"backup-type": "host", "backup-id": "pve1", "backup-time": 1714618800},
    ])

    backups = parse_pbs_snapshots(output, "pbs1")

    assert backups == [{
        "volid": "pbs1:backup/ct/105/2024-05-02T03:00:00Z",
        "name": "ct/105/2024-05-02T03:00:00Z",
        "vmid": "105",
        "size": 1234,
        "created_at": datetime(2024, 5, 2, 3, 0, 0),
    }]


def test_parse_pbs_snapshots_rejects_error_text():
    with pytest.raises(ValueError):
        parse_pbs_snapshots("Error: permission check failed", "pbs1")


def test_parse_rootfs_storage():
    conf = "arch: amd64\nhostname: pihole\nrootfs: local-lvm:vm-105-disk-0,size=8G\n"
    assert parse_rootfs_storage(conf) == "local-lvm"
    assert parse_rootfs_storage("arch: amd64\n") is None


def test_parse_storage_cfg_keeps_pbs_connection():
    cfg = "pbs: pbs1\n\tdatastore backups\n\tserver 192.168.1.60\n\tcontent backup\n"
    storage = parse_storage_cfg(cfg)[0]
    assert (storage["type"], storage["server"], storage["datastore"]) == ("pbs", "192.168.1.60", "backups")
