import pytest

from util import github
from util.env_store import set_setting


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text="", reason="OK"):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.reason = reason

    def json(self):
        return self._json


@pytest.fixture
def fake_get(monkeypatch):
    calls = []
    responses = []

    def _get(url, params=None, headers=None, timeout=None):
        calls.append({"url": url, "params": params, "headers": headers})
        return responses.pop(0)

    monkeypatch.setattr(github.requests, "get", _get)
    return calls, responses


@pytest.mark.parametrize("url, expected", [
    ("https://github.com/community-scripts/ProxmoxVE", ("community-scripts", "ProxmoxVE")),
    ("https://github.com/acme/extras.git", ("acme", "extras")),
    ("https://github.com/acme/extras/", ("acme", "extras")),
])
def test_parse_repo_url(url, expected):
    assert github.parse_repo_url(url) == expected


@pytest.mark.parametrize("url", ["", "https://gitlab.com/a/b", "github.com/a/b", "https://github.com/a"])
def test_parse_repo_url_rejects(url):
    assert github.is_valid_repo_url(url) is False


def test_list_json_files_uses_token(app, fake_get):
    calls, responses = fake_get
    set_setting("GITHUB_TOKEN", "ghp_test")
    responses.append(FakeResponse(json_data=[
        {"name": "pihole.json", "path": "frontend/public/json/pihole.json", "type": "file"},
        {"name": "README.md", "path": "frontend/public/json/README.md", "type": "file"},
        {"name": "nested", "path": "frontend/public/json/nested", "type": "dir"},
    ]))

    files = github.list_json_files(
        "https://github.com/community-scripts/ProxmoxVE", "frontend/public/json"
    )

    assert files == [{"name": "pihole.json", "path": "frontend/public/json/pihole.json"}]
    assert calls[0]["headers"]["Authorization"] == "token ghp_test"
    assert calls[0]["params"] == {"ref": "main"}


def test_rate_limit_raises(app, fake_get):
    _, responses = fake_get
    responses.append(FakeResponse(status_code=403, reason="Forbidden"))

    with pytest.raises(github.RateLimitError, match="GITHUB_TOKEN"):
        github.list_json_files("https://github.com/acme/extras", "json")


def test_download_raw_404_is_none(app, fake_get):
    calls, responses = fake_get
    responses.append(FakeResponse(status_code=404, reason="Not Found"))

    assert github.download_raw("https://github.com/acme/extras", "ct/x.sh") is None
    assert calls[0]["url"] == "https://raw.githubusercontent.com/acme/extras/main/ct/x.sh"
    assert "Authorization" not in calls[0]["headers"]


def test_server_error_raises_runtime_error(app, fake_get):
    _, responses = fake_get
    responses.append(FakeResponse(status_code=500, reason="Server Error"))

    with pytest.raises(RuntimeError, match="500"):
        github.download_raw("https://github.com/acme/extras", "ct/x.sh")
