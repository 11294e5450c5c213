"""
Script repositories on GitHub, GitLab, Bitbucket or a self-hosted Gitea.
Every provider exposes the same two calls used by sync and download:

    list_json_files(repo_url, folder, branch) -> [{"name", "path"}]
    download_raw(repo_url, file_path, branch)  -> str | None (404)
"""

import base64
import re
from urllib.parse import quote

import requests

from util import github
from util.env_store import get_setting

USER_AGENT = github.USER_AGENT
TIMEOUT = github.TIMEOUT
PER_PAGE = 100

REPO_URL_RE = re.compile(
    r"^(?P<scheme>https?)://(?P<host>[A-Za-z0-9.-]+(?::\d+)?)"
    r"/(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?/?$"
)
REPO_URL_ERROR = (
    "Invalid repository URL. Supported: GitHub, GitLab, Bitbucket and "
    "self-hosted Gitea servers (https://<host>/<owner>/<repo>)"
)


# ========== URL HELPERS ==========

def parse_repo_url(url):
    """(origin, owner, repo) của URL repo, raise ValueError nếu sai format."""
    match = REPO_URL_RE.match((url or "").strip())
    if not match:
        raise ValueError(REPO_URL_ERROR)
    origin = f"{match.group('scheme')}://{match.group('host').lower()}"
    return origin, match.group("owner"), match.group("repo")


def is_valid_repo_url(url):
    try:
        parse_repo_url(url)
        return True
    except ValueError:
        return False


def normalize_repo_url(url):
    origin, owner, repo = parse_repo_url(url)
    return f"{origin}/{owner}/{repo}"


def get_provider(url):
    origin, _, _ = parse_repo_url(url)
    host = origin.split("://", 1)[1].split(":", 1)[0]
    if host == "github.com":
        return "github"
    if host == "gitlab.com" or host.startswith("gitlab."):
        return "gitlab"
    if host == "bitbucket.org":
        return "bitbucket"
    return "custom"


def _json_names(entries):
    return [e for e in entries if e["name"].endswith(".json")]


def _check(resp, provider, what):
    if resp.status_code != 200:
        raise RuntimeError(f"{provider} error for {what}: {resp.status_code} {resp.reason}")


# ========== GITLAB ==========

def _gitlab_headers():
    headers = {"User-Agent": USER_AGENT}
    token = get_setting("GITLAB_TOKEN")
    if token:
        headers["PRIVATE-TOKEN"] = token
    return headers


def _gitlab_project(repo_url):
    origin, owner, repo = parse_repo_url(repo_url)
    return f"{origin}/api/v4/projects/{quote(f'{owner}/{repo}', safe='')}"


def _gitlab_list(repo_url, folder, branch):
    entries, page = [], 1
    while page:
        resp = requests.get(
            f"{_gitlab_project(repo_url)}/repository/tree",
            params={"path": folder, "ref": branch, "per_page": PER_PAGE, "page": page},
            headers=_gitlab_headers(),
            timeout=TIMEOUT,
        )
        _check(resp, "GitLab", folder)
        entries.extend(
            {"name": item["name"], "path": item["path"]}
            for item in resp.json()
            if item.get("type") == "blob"
        )
        page = int(resp.headers.get("X-Next-Page") or 0)
    return entries


def _gitlab_raw(repo_url, file_path, branch):
    resp = requests.get(
        f"{_gitlab_project(repo_url)}/repository/files/{quote(file_path, safe='')}/raw",
        params={"ref": branch},
        headers=_gitlab_headers(),
        timeout=TIMEOUT,
    )
    if resp.status_code == 404:
        return None
    _check(resp, "GitLab", file_path)
    return resp.text


# ========== BITBUCKET ==========

def _bitbucket_headers():
    headers = {"User-Agent": USER_AGENT}
    token = get_setting("BITBUCKET_TOKEN")
    if token:
        # app password, empty username
        headers["Authorization"] = "Basic " + base64.b64encode(f":{token}".encode()).decode()
    return headers


def _bitbucket_src(repo_url, path, branch):
    _, owner, repo = parse_repo_url(repo_url)
    return (
        f"https://api.bitbucket.org/2.0/repositories/{owner}/{repo}"
        f"/src/{quote(branch, safe='')}/{path}"
    )


def _bitbucket_list(repo_url, folder, branch):
    entries = []
    url = _bitbucket_src(repo_url, folder.strip("/") + "/", branch)
    params = {"pagelen": PER_PAGE}
    while url:
        resp = requests.get(url, params=params, headers=_bitbucket_headers(), timeout=TIMEOUT)
        _check(resp, "Bitbucket", folder)
        body = resp.json()
        entries.extend(
            {"name": item["path"].rsplit("/", 1)[-1], "path": item["path"]}
            for item in body.get("values", [])
            if item.get("type") == "commit_file"
        )
        # "next" already carries the query string
        url, params = body.get("next"), None
    return entries


def _bitbucket_raw(repo_url, file_path, branch):
    resp = requests.get(
        _bitbucket_src(repo_url, file_path, branch),
        headers=_bitbucket_headers(),
        timeout=TIMEOUT,
    )
    if resp.status_code == 404:
        return None
    _check(resp, "Bitbucket", file_path)
    return resp.text


# ========== CUSTOM (Gitea / Forgejo) ==========

def _custom_headers():
    headers = {"User-Agent": USER_AGENT}
    token = get_setting("GITEA_TOKEN")
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def _custom_list(repo_url, folder, branch):
    origin, owner, repo = parse_repo_url(repo_url)
    resp = requests.get(
        f"{origin}/api/v1/repos/{owner}/{repo}/contents/{folder}",
        params={"ref": branch},
        headers=_custom_headers(),
        timeout=TIMEOUT,
    )
    _check(resp, "Git server", folder)
    data = resp.json()
    if not isinstance(data, list):
        raise RuntimeError(f"{folder} is not a directory in {owner}/{repo}")
    return [
        {"name": item["name"], "path": item["path"]}
        for item in data
        if item.get("type", "file") == "file"
    ]


def _custom_raw(repo_url, file_path, branch):
    origin, owner, repo = parse_repo_url(repo_url)
    resp = requests.get(
        f"{origin}/{owner}/{repo}/raw/{quote(branch, safe='')}/{file_path}",
        headers=_custom_headers(),
        timeout=TIMEOUT,
    )
    if resp.status_code == 404:
        return None
    _check(resp, "Git server", file_path)
    return resp.text


_LISTERS = {"gitlab": _gitlab_list, "bitbucket": _bitbucket_list, "custom": _custom_list}
_DOWNLOADERS = {"gitlab": _gitlab_raw, "bitbucket": _bitbucket_raw, "custom": _custom_raw}


# ========== DISPATCH ==========

def list_json_files(repo_url, folder, branch="main"):
    provider = get_provider(repo_url)
    if provider == "github":
        return github.list_json_files(repo_url, folder, branch)
    return _json_names(_LISTERS[provider](repo_url, folder, branch))


def download_raw(repo_url, file_path, branch="main"):
    """Nội dung file hoặc None nếu không tồn tại."""
    provider = get_provider(repo_url)
    if provider == "github":
        return github.download_raw(repo_url, file_path, branch)
    return _DOWNLOADERS[provider](repo_url, file_path, branch)
