# tests/conftest.py
import json

import pytest

from app_factory import create_app
from database_init import db as _db
from util import github
from util.constant import DEFAULT_REPO_URL as DEFAULT_REPO
from util.github import RateLimitError

JSON_FOLDER = "frontend/public/json"


@pytest.fixture(scope="session")
def log_dir(tmp_path_factory):
    return str(tmp_path_factory.mktemp("logs"))


@pytest.fixture
def app(tmp_path, log_dir):
    """App mới cho mỗi test: SQLite in-memory, .env và thư mục scripts tạm."""
    env_file = tmp_path / ".env"
    env_file.write_text("")
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret-key",
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "WTF_CSRF_ENABLED": False,
        "ENV_FILE": str(env_file),
        "SCRIPTS_DIR": str(tmp_path / "scripts"),
        "LOG_DIR": log_dir,
        "APP_ROOT": str(tmp_path),
        "JSON_FOLDER": JSON_FOLDER,
        "ENABLE_AUTO_SYNC_THREAD": False,
    })

    ctx = app.app_context()
    ctx.push()
    yield app
    _db.session.remove()
    _db.drop_all()
    ctx.pop()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


# ---------- Fake GitHub ----------

class FakeGitHub:
    """In-memory replacement for util.github list/download calls."""

    def __init__(self):
        self.files = {}
        self.rate_limited = False
        self.downloads = []

    def add_file(self, path, content, repo=DEFAULT_REPO):
        if not isinstance(content, str):
            content = json.dumps(content)
        self.files[(repo, path)] = content

    def add_script(self, slug, repo=DEFAULT_REPO, **fields):
        doc = {
            "name": fields.pop("name", slug.title()),
            "slug": slug,
            "categories": fields.pop("categories", [1]),
            "type": fields.pop("type", "ct"),
            "updateable": True,
            "description": fields.pop("description", f"{slug} description"),
            "install_methods": fields.pop(
                "install_methods",
                [{"type": "default", "script": f"ct/{slug}.sh", "resources": {"cpu": 1}}],
            ),
            "interface_port": fields.pop("interface_port", None),
        }
        doc.update(fields)
        self.add_file(f"{JSON_FOLDER}/{slug}.json", doc, repo)
        return doc

    def list_json_files(self, repo_url, folder, branch="main"):
        if self.rate_limited:
            raise RateLimitError("GitHub rate limit exceeded. Status: 403")
        prefix = folder.rstrip("/") + "/"
        return [
            {"name": path[len(prefix):], "path": path}
            for (repo, path) in sorted(self.files)
            if repo == repo_url and path.startswith(prefix) and path.endswith(".json")
        ]

    def download_raw(self, repo_url, file_path, branch="main"):
        if self.rate_limited:
            raise RateLimitError("GitHub rate limit exceeded. Status: 403")
        self.downloads.append((repo_url, file_path))
        return self.files.get((repo_url, file_path))


@pytest.fixture
def fake_github(monkeypatch):
    fake = FakeGitHub()
    monkeypatch.setattr(github, "list_json_files", fake.list_json_files)
    monkeypatch.setattr(github, "download_raw", fake.download_raw)
    return fake


# ---------- Fake SSH ----------

class FakeSSH:
    """Maps exact commands (or a callable) to (exit_code, stdout, stderr)."""

    def __init__(self):
        self.responses = {}
        self.commands = []
        self.unreachable = set()
        self.failures = {}

    def on(self, command, stdout="", exit_code=0, stderr=""):
        self.responses[command] = (exit_code, stdout, stderr)

    def drop_on(self, host, command, message="Connection reset by peer"):
        """Connection lost while running `command` on `host`."""
        self.failures[(host, command)] = message

    def run_remote_command(self, target, command, timeout=None):
        self.commands.append((target.host, command))
        if target.host in self.unreachable:
            raise RuntimeError(f"SSH connection to {target.host}:{target.port} failed: timed out")
        if (target.host, command) in self.failures:
            raise RuntimeError(self.failures[(target.host, command)])
        return self.responses.get(command, (0, "", ""))


@pytest.fixture
def fake_ssh(monkeypatch):
    from bash_script import remote_exec

    fake = FakeSSH()
    monkeypatch.setattr(remote_exec, "run_remote_command", fake.run_remote_command)
    monkeypatch.setattr(
        remote_exec, "run_local_command",
        lambda command, timeout=None: fake.run_remote_command(_LocalTarget, command),
    )
    return fake


class _LocalTarget:
    host = "localhost"
    port = 0


# ---------- Factories ----------

@pytest.fixture
def make_server(db):
    from models.server import Server

    def _make(name="pve1", ip="10.0.0.10", **kwargs):
        server = Server(name=name, ip=ip, user="root", password="secret", **kwargs)
        db.session.add(server)
        db.session.commit()
        return server

    return _make


@pytest.fixture
def make_record(db):
    from models.installed_script import InstalledScript

    def _make(script_name="pihole", **kwargs):
        kwargs.setdefault("script_path", f"ct/{script_name}.sh")
        kwargs.setdefault("execution_mode", "ssh")
        kwargs.setdefault("status", "success")
        record = InstalledScript(script_name=script_name, **kwargs)
        db.session.add(record)
        db.session.commit()
        return record

    return _make
