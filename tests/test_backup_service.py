import json

import pytest

from models.backup import Backup, PBSCredential
from service import backup_service

STORAGE_CFG = """dir: local
\tpath /var/lib/vz
\tcontent iso,vztmpl,backup

lvmthin: local-lvm
\tcontent rootdir,images

nfs: nas
\tpath /mnt/pve/nas
\tcontent backup

pbs: pbs1
\tdatastore backups
\tserver 192.168.1.60
\tcontent backup
"""

LOCAL_BACKUPS = """Volid                                                      Format  Type          Size VMID
local:backup/vzdump-lxc-100-2024_05_01-02_00_03.tar.zst    tar.zst backup    52428800 100
local:backup/vzdump-lxc-999-2024_05_01-02_00_03.tar.zst    tar.zst backup    52428800 999
"""

NAS_BACKUPS = """Volid                                                      Format  Type          Size VMID
nas:backup/vzdump-lxc-100-2024_04_01-02_00_03.tar.zst      tar.zst backup    41943040 100
"""

PBS_BACKUPS = """Volid                                    Format  Type          Size VMID
pbs1:backup/ct/101/2024-05-02T03:04:05Z  pbs-ct  backup    73400320 101
"""

FINGERPRINT = ":".join(["ab"] * 32)


@pytest.fixture
def tracked(make_server, make_record):
    server = make_server()
    make_record("pihole", server_id=server.id, container_id="100")
    make_record("adguard", server_id=server.id, container_id="101")
    return server


def _storages(fake_ssh):
    fake_ssh.on("cat /etc/pve/storage.cfg", STORAGE_CFG)
    fake_ssh.on("pvesm list local --content backup", LOCAL_BACKUPS)
    fake_ssh.on("pvesm list nas --content backup", NAS_BACKUPS)
    fake_ssh.on("pvesm list pbs1 --content backup", PBS_BACKUPS)


def test_discovery_keeps_backups_of_tracked_containers(app, tracked, fake_ssh):
    _storages(fake_ssh)

    results = backup_service.discover_backups()

    assert results == [{
        "server_id": tracked.id, "server_name": "pve1", "success": True, "backups": 3, "errors": [],
    }]
    rows = {b.backup_path: b for b in Backup.query.all()}
    assert set(rows) == {
        "local:backup/vzdump-lxc-100-2024_05_01-02_00_03.tar.zst",
        "nas:backup/vzdump-lxc-100-2024_04_01-02_00_03.tar.zst",
        "pbs1:backup/ct/101/2024-05-02T03:04:05Z",
    }
    local = rows["local:backup/vzdump-lxc-100-2024_05_01-02_00_03.tar.zst"]
    assert (local.storage_type, local.hostname, local.size) == ("local", "pihole", 52428800)
    assert rows["nas:backup/vzdump-lxc-100-2024_04_01-02_00_03.tar.zst"].storage_type == "storage"
    assert rows["pbs1:backup/ct/101/2024-05-02T03:04:05Z"].storage_type == "pbs"
    # lvm storage without backup content is never listed
    assert ("10.0.0.10", "pvesm list local-lvm --content backup") not in fake_ssh.commands


def test_discovery_replaces_previous_results(app, tracked, fake_ssh):
    _storages(fake_ssh)
    backup_service.discover_backups()
    fake_ssh.on("pvesm list nas --content backup", "")

    backup_service.discover_backups()

    assert Backup.query.count() == 2


def test_unavailable_storage_is_reported_not_fatal(app, tracked, fake_ssh):
    _storages(fake_ssh)
    fake_ssh.on("pvesm list nas --content backup", exit_code=255, stderr="storage 'nas' is not online")

    result = backup_service.discover_backups()[0]

    assert result["success"] is True
    assert result["errors"] == ["nas: storage 'nas' is not online"]
    assert result["backups"] == 2


def test_unreachable_server_keeps_old_backups(app, db, tracked, fake_ssh):
    _storages(fake_ssh)
    backup_service.discover_backups()
    fake_ssh.unreachable.add(tracked.ip)

    result = backup_service.discover_backups()[0]

    assert result["success"] is False
    assert Backup.query.count() == 3


def test_local_storage_is_always_scanned(app, tracked, fake_ssh):
    fake_ssh.on("cat /etc/pve/storage.cfg", "lvmthin: local-lvm\n\tcontent rootdir\n")
    fake_ssh.on("pvesm list local --content backup", LOCAL_BACKUPS)

    assert backup_service.discover_backups()[0]["backups"] == 1


def test_pbs_credentials_switch_to_backup_client(app, tracked, fake_ssh):
    _storages(fake_ssh)
    credential = backup_service.save_pbs_credential(tracked.id, "pbs1", {
        "pbs_ip": "192.168.1.60", "pbs_datastore": "backups",
        "pbs_password": "it's secret", "pbs_fingerprint": FINGERPRINT,
    })
    command = backup_service.pbs_snapshot_command(credential)
    fake_ssh.on(command, json.dumps([
        {"backup-type": "ct", "backup-id": "101", "backup-time": 1714618800, "size": 10},
    ]))

    backup_service.discover_backups()

    assert "PBS_PASSWORD='it'\"'\"'s secret'" in command
    assert f"PBS_FINGERPRINT={FINGERPRINT}" in command
    assert "--repository root@pam@192.168.1.60:backups" in command
    assert ("10.0.0.10", "pvesm list pbs1 --content backup") not in fake_ssh.commands
    pbs = Backup.query.filter_by(storage_type="pbs").one()
    assert pbs.backup_path == "pbs1:backup/ct/101/2024-05-02T03:00:00Z"


def test_grouped_listing(app, tracked, fake_ssh):
    _storages(fake_ssh)
    backup_service.discover_backups()

    groups = backup_service.list_backups_grouped()

    assert [(g["container_id"], g["hostname"], len(g["backups"])) for g in groups] == [
        ("100", "pihole", 2),
        ("101", "adguard", 1),
    ]
    # newest first
    assert groups[0]["backups"][0]["storage_name"] == "local"


# ---------- Restore ----------

@pytest.fixture
def fake_queue(monkeypatch):
    calls = []

    class FakeJob:
        id = "job-restore"

    def fake_enqueue(func, *args, **kwargs):
        calls.append((func, args, kwargs))
        return FakeJob()

    monkeypatch.setattr(backup_service.queue, "enqueue", fake_enqueue)
    return calls


def _one_backup(db, server, volid="local:backup/vzdump-lxc-100-2024_05_01-02_00_03.tar.zst"):
    backup = Backup(
        server_id=server.id, container_id="100", hostname="pihole",
        backup_name=volid.rsplit("/", 1)[-1], backup_path=volid,
        storage_name=volid.split(":", 1)[0], storage_type="local",
    )
    db.session.add(backup)
    db.session.commit()
    return backup


def test_restore_reuses_rootfs_storage(app, db, tracked, fake_ssh, fake_queue):
    backup = _one_backup(db, tracked)
    fake_ssh.on("cat /etc/pve/lxc/100.conf", "hostname: pihole\nrootfs: local-zfs:subvol-100-disk-0,size=8G\n")

    assert backup_service.enqueue_restore(backup.id) == "job-restore"

    func, args, kwargs = fake_queue[0]
    assert func.__name__ == "run_restore_job"
    assert args[0].host == "10.0.0.10"
    assert args[1:] == ("100", backup.backup_path, "local-zfs")
    assert kwargs["job_timeout"] == 3 * 3600


def test_restore_without_known_storage_asks_for_one(app, db, tracked, fake_ssh, fake_queue):
    backup = _one_backup(db, tracked)
    fake_ssh.on("cat /etc/pve/lxc/100.conf", exit_code=2, stderr="No such file or directory")

    with pytest.raises(ValueError, match="rootfs storage"):
        backup_service.enqueue_restore(backup.id)

    backup_service.enqueue_restore(backup.id, "local-lvm")
    assert fake_queue[0][1][3] == "local-lvm"


def test_restore_rejects_unsafe_input(app, db, tracked, fake_queue):
    backup = _one_backup(db, tracked, volid="local:backup/x.tar; reboot")

    with pytest.raises(ValueError, match="Invalid backup volume"):
        backup_service.enqueue_restore(backup.id, "local")
    with pytest.raises(LookupError):
        backup_service.enqueue_restore(9999)
    assert fake_queue == []


def test_restore_job_replaces_the_container(fake_ssh):
    from bash_script import remote_exec
    from bash_script.remote_exec import SSHTarget

    target = SSHTarget(host="10.0.0.10", user="root", password="secret")
    fake_ssh.on("pct destroy 100", exit_code=2, stderr="CT 100 does not exist\n")

    result = remote_exec.run_restore_job(
        target, "100", "local:backup/vzdump-lxc-100-2024_05_01-02_00_03.tar.zst", "local-lvm"
    )

    assert [c for _, c in fake_ssh.commands] == [
        "pct stop 100",
        "pct destroy 100",
        "pct restore 100 local:backup/vzdump-lxc-100-2024_05_01-02_00_03.tar.zst --storage local-lvm",
    ]
    assert [s[0] for s in result["steps"]] == ["stop", "destroy", "restore"]


def test_restore_job_failure_raises(fake_ssh):
    from bash_script import remote_exec
    from bash_script.remote_exec import SSHTarget

    target = SSHTarget(host="10.0.0.10", user="root", password="secret")
    fake_ssh.on(
        "pct restore 100 local:backup/a.tar --storage local-lvm",
        exit_code=255, stderr="storage 'local-lvm' does not exist",
    )

    with pytest.raises(RuntimeError, match="pct restore exit 255"):
        remote_exec.run_restore_job(target, "100", "local:backup/a.tar", "local-lvm")


# ---------- PBS credentials ----------

def test_pbs_credentials_keep_password_when_omitted(app, make_server):
    server = make_server()
    with pytest.raises(ValueError, match="Password is required"):
        backup_service.save_pbs_credential(server.id, "pbs1", {"pbs_ip": "10.0.0.60", "pbs_datastore": "ds"})

    backup_service.save_pbs_credential(server.id, "pbs1", {
        "pbs_ip": "10.0.0.60", "pbs_datastore": "ds", "pbs_password": "first",
    })
    backup_service.save_pbs_credential(server.id, "pbs1", {
        "pbs_ip": "10.0.0.61", "pbs_datastore": "ds", "pbs_password": "",
    })

    credential = PBSCredential.query.one()
    assert (credential.pbs_ip, credential.pbs_password) == ("10.0.0.61", "first")


@pytest.mark.parametrize("storage, data, message", [
    ("pbs1; rm", {"pbs_ip": "h", "pbs_datastore": "ds", "pbs_password": "x"}, "storage name"),
    ("pbs1", {"pbs_ip": "h", "pbs_datastore": "ds/..", "pbs_password": "x"}, "datastore"),
    ("pbs1", {"pbs_ip": "h", "pbs_datastore": "ds", "pbs_password": "x", "pbs_fingerprint": "zz"}, "fingerprint"),
])
def test_pbs_credentials_validation(app, make_server, storage, data, message):
    server = make_server()
    with pytest.raises(ValueError, match=message):
        backup_service.save_pbs_credential(server.id, storage, data)


def test_deleting_server_removes_backups_and_credentials(app, db, make_server):
    from service import inventory_service

    server = make_server()
    _one_backup(db, server)
    backup_service.save_pbs_credential(server.id, "pbs1", {
        "pbs_ip": "10.0.0.60", "pbs_datastore": "ds", "pbs_password": "pw",
    })

    inventory_service.delete_server(server.id)

    assert Backup.query.count() == 0
    assert PBSCredential.query.count() == 0
