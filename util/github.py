import re
import requests
from util.env_store import get_setting

API_URL = "https://api.github.com"
RAW_URL = "https://raw.githubusercontent.com"
USER_AGENT = "PVEScripts-Local/1.0"
TIMEOUT = 20

# Only GitHub hosted repositories are supported as script sources
REPO_URL_RE = re.compile(
    r"^https?://github\.com/(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?/?$"
)


class RateLimitError(RuntimeError):
    """GitHub refused the request because of the (anonymous) rate limit."""


# ========== URL HELPERS ==========

def parse_repo_url(url):
    """Trả về (owner, repo) của một URL GitHub, raise ValueError nếu sai."""
    match = REPO_URL_RE.match((url or "").strip())
    if not match:
        raise ValueError(f"Invalid GitHub repository URL: {url}")
    return match.group("owner"), match.group("repo")


def is_valid_repo_url(url):
    try:
        parse_repo_url(url)
        return True
    except ValueError:
        return False


def build_gh_headers(accept_json=True):
    """Headers cho GitHub API, dùng GITHUB_TOKEN nếu đã cấu hình."""
    headers = {"User-Agent": USER_AGENT}
    if accept_json:
        headers["Accept"] = "application/vnd.github.v3+json"
    token = get_setting("GITHUB_TOKEN")
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def _raise_for_status(resp, what):
    if resp.status_code in (403, 429):
        raise RateLimitError(
            f"GitHub rate limit exceeded while fetching {what}. "
            f"Consider setting GITHUB_TOKEN for higher limits. "
            f"Status: {resp.status_code}"
        )
    if resp.status_code != 200:
        raise RuntimeError(f"GitHub error for {what}: {resp.status_code} {resp.reason}")


# ========== CONTENTS ==========

def list_json_files(repo_url, folder, branch="main"):
    """Danh sách file *.json trong 1 thư mục (1 API call)."""
    owner, repo = parse_repo_url(repo_url)
    resp = requests.get(
        f"{API_URL}/repos/{owner}/{repo}/contents/{folder}",
        params={"ref": branch},
        headers=build_gh_headers(),
        timeout=TIMEOUT,
    )
    _raise_for_status(resp, f"{owner}/{repo}/{folder}")
    files = resp.json()
    if not isinstance(files, list):
        raise RuntimeError(f"{folder} is not a directory in {owner}/{repo}")
    return [
        {"name": f["name"], "path": f["path"]}
        for f in files
        if f.get("type", "file") == "file" and f.get("name", "").endswith(".json")
    ]


def download_raw(repo_url, file_path, branch="main"):
    """Tải nội dung 1 file qua raw.githubusercontent.com.

    Returns None when the file does not exist (404); other failures raise.
    """
    owner, repo = parse_repo_url(repo_url)
    resp = requests.get(
        f"{RAW_URL}/{owner}/{repo}/{branch}/{file_path}",
        headers=build_gh_headers(accept_json=False),
        timeout=TIMEOUT,
    )
    if resp.status_code == 404:
        return None
    _raise_for_status(resp, file_path)
    return resp.text


# ========== RELEASES ==========

def get_latest_release(repo_url):
    owner, repo = parse_repo_url(repo_url)
    resp = requests.get(
        f"{API_URL}/repos/{owner}/{repo}/releases/latest",
        headers=build_gh_headers(),
        timeout=TIMEOUT,
    )
    _raise_for_status(resp, f"latest release of {owner}/{repo}")
    data = resp.json()
    return {
        "tag_name": data.get("tag_name"),
        "name": data.get("name"),
        "published_at": data.get("published_at"),
        "html_url": data.get("html_url"),
    }
