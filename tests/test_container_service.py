import pytest

from models.installed_script import InstalledScript
from service import container_service
from util.constant import DEFAULT_REPO_URL

PCT_LIST = """VMID       Status     Lock         Name
100        running                 pihole
101        stopped                 adguard
"""


def test_actions_run_pct_on_the_record_server(app, make_server, make_record, fake_ssh):
    server = make_server()
    record = make_record(server_id=server.id, container_id="100")

    container_service.start_container(record.id)
    container_service.stop_container(record.id)

    assert fake_ssh.commands == [("10.0.0.10", "pct start 100"), ("10.0.0.10", "pct stop 100")]


def test_local_records_run_on_this_host(app, make_record, fake_ssh):
    record = make_record(execution_mode="local", container_id="100")
    container_service.start_container(record.id)
    assert fake_ssh.commands == [("localhost", "pct start 100")]


def test_non_numeric_container_id_never_reaches_the_shell(app, db, make_server, make_record, fake_ssh):
    server = make_server()
    record = make_record(server_id=server.id, container_id="100")
    # bypass the service validation to simulate a tampered row
    record.container_id = "100; reboot"
    db.session.commit()

    with pytest.raises(ValueError):
        container_service.stop_container(record.id)
    assert fake_ssh.commands == []


def test_command_failure_surfaces_stderr(app, make_server, make_record, fake_ssh):
    server = make_server()
    record = make_record(server_id=server.id, container_id="100")
    fake_ssh.on("pct start 100", exit_code=255, stderr="CT 100 already running\n")

    with pytest.raises(RuntimeError, match="CT 100 already running"):
        container_service.start_container(record.id)


def test_destroy_removes_the_record(app, make_server, make_record, fake_ssh):
    server = make_server()
    record = make_record(server_id=server.id, container_id="100")
    record_id = record.id

    container_service.destroy_container(record_id)

    assert ("10.0.0.10", "pct destroy 100") in fake_ssh.commands
    assert InstalledScript.query.get(record_id) is None


def test_missing_record_and_missing_container(app, make_record):
    with pytest.raises(LookupError):
        container_service.container_status(12345)
    record = make_record(execution_mode="local")
    with pytest.raises(ValueError, match="no container id"):
        container_service.container_status(record.id)


def test_container_status(app, make_server, make_record, fake_ssh):
    server = make_server()
    record = make_record(server_id=server.id, container_id="100")
    fake_ssh.on("pct status 100", "status: running\n")
    assert container_service.container_status(record.id) == "running"


def test_bulk_statuses_one_pct_list_per_server(app, make_server, make_record, fake_ssh):
    server = make_server()
    running = make_record(server_id=server.id, container_id="100")
    stopped = make_record("adguard", server_id=server.id, container_id="101")
    missing = make_record("gone", server_id=server.id, container_id="199")
    orphan = make_record("orphan", container_id="102")
    fake_ssh.on("pct list", PCT_LIST)

    statuses = container_service.bulk_statuses()

    assert statuses == {
        running.id: "running",
        stopped.id: "stopped",
        missing.id: "unknown",
        orphan.id: "unknown",
    }
    assert [c for c in fake_ssh.commands if c[1] == "pct list"] == [("10.0.0.10", "pct list")]


def test_bulk_statuses_unreachable_server_is_unknown(app, make_server, make_record, fake_ssh):
    server = make_server()
    record = make_record(server_id=server.id, container_id="100")
    fake_ssh.unreachable.add(server.ip)

    assert container_service.bulk_statuses() == {record.id: "unknown"}


def test_detect_web_ui_ip_uses_descriptor_port(app, db, make_server, make_record, fake_ssh):
    from models.script_descriptor import ScriptDescriptor

    db.session.add(ScriptDescriptor(
        slug="pihole", name="Pi-hole", interface_port=80,
        repository_url=DEFAULT_REPO_URL, raw={"slug": "pihole"},
    ))
    server = make_server()
    record = make_record(server_id=server.id, container_id="100")
    fake_ssh.on("pct exec 100 -- hostname -I", "127.0.0.1 192.168.1.77 fd00::5\n")

    assert container_service.detect_web_ui_ip(record.id) == {"ip": "192.168.1.77", "port": 80}
    assert record.web_ui_ip == "192.168.1.77"


def test_list_storages(app, make_server, fake_ssh):
    server = make_server()
    fake_ssh.on(
        "cat /etc/pve/storage.cfg",
        "dir: local\n\tcontent backup,iso\n\nlvmthin: local-lvm\n\tcontent rootdir\n",
    )

    storages = container_service.list_storages(server.id)

    assert [(s["name"], s["supports_backup"]) for s in storages] == [("local", True), ("local-lvm", False)]


def test_enqueue_backup(app, make_server, make_record, monkeypatch):
    calls = []

    class FakeJob:
        id = "job-1"

    def fake_enqueue(func, *args, **kwargs):
        calls.append((func, args, kwargs))
        return FakeJob()

    monkeypatch.setattr(container_service.queue, "enqueue", fake_enqueue)
    server = make_server()
    record = make_record(server_id=server.id, container_id="100")

    assert container_service.enqueue_backup(record.id, "local") == "job-1"
    func, args, kwargs = calls[0]
    assert func.__name__ == "run_backup_job"
    assert args[0].host == "10.0.0.10"
    assert args[1:] == ("100", "local")
    assert kwargs["job_timeout"] == 3 * 3600

    with pytest.raises(ValueError, match="Invalid storage name"):
        container_service.enqueue_backup(record.id, "local; rm -rf /")
