"""
Script files on disk: download from the descriptor's repository, check,
delete and diff against the remote copy.

A descriptor counts as downloaded when every file its install methods
reference exists under SCRIPTS_DIR. Nothing about downloads is stored in
the database.
"""

import difflib
import logging
import os
import re

from flask import current_app

from util import git_provider
from util.constant import DEFAULT_REPO_URL

logger = logging.getLogger("sync_logger")

KEEP_SUBDIR_PREFIXES = ("tools/", "vm/", "vw/")

BUILD_FUNC_RE = re.compile(
    r"source <\(curl -fsSL https://raw\.githubusercontent\.com/community-scripts/ProxmoxVE/main/misc/build\.func\)"
)
LOCAL_BUILD_FUNC = 'SCRIPT_DIR="$(dirname "$0")" \nsource "$SCRIPT_DIR/../core/build.func"'


def scripts_dir():
    return current_app.config["SCRIPTS_DIR"]


def _branch():
    return current_app.config.get("REPO_BRANCH") or "main"


def _repo_url(descriptor):
    return descriptor.repository_url or DEFAULT_REPO_URL


def rewrite_build_func(content):
    """Point the upstream build.func source line at the local core/ copy."""
    return BUILD_FUNC_RE.sub(lambda _: LOCAL_BUILD_FUNC, content)


def local_relpath(script_path):
    """
    ct/x.sh -> ct/x.sh, tools/addon/x.sh -> tools/addon/x.sh,
    anything else -> ct/<file name>.
    """
    file_name = script_path.rsplit("/", 1)[-1]
    if script_path.startswith(KEEP_SUBDIR_PREFIXES):
        return script_path
    return f"ct/{file_name}"


def _needs_rewrite(script_path):
    return not script_path.startswith(KEEP_SUBDIR_PREFIXES)


def _method_scripts(descriptor):
    return [
        m["script"]
        for m in (descriptor.install_methods or [])
        if isinstance(m, dict) and m.get("script") and m["script"].rsplit("/", 1)[-1]
    ]


def _has_ct_script(descriptor):
    return any(p.startswith("ct/") for p in _method_scripts(descriptor))


def _install_relpath(descriptor):
    return f"install/{descriptor.slug}-install.sh"


def _safe_join(relpath):
    base = os.path.realpath(scripts_dir())
    full = os.path.realpath(os.path.join(base, relpath))
    if os.path.commonpath([base, full]) != base:
        raise ValueError(f"Path escapes the scripts directory: {relpath}")
    return full


def _write(relpath, content):
    full = _safe_join(relpath)
    os.makedirs(os.path.dirname(full), exist_ok=True)
    with open(full, "w", encoding="utf-8") as f:
        f.write(content)


def _read(relpath):
    with open(_safe_join(relpath), encoding="utf-8") as f:
        return f.read()


# ========== DOWNLOAD ==========

def load_script(descriptor):
    """
    Tải toàn bộ file của 1 script về SCRIPTS_DIR.
    Returns {success, message, files}; never raises for remote problems.
    """
    repo_url = _repo_url(descriptor)
    branch = _branch()
    files = []
    try:
        for script_path in _method_scripts(descriptor):
            content = git_provider.download_raw(repo_url, script_path, branch)
            if content is None:
                raise RuntimeError(
                    f"Script file {script_path} for {descriptor.slug} not found (404)"
                )
            if _needs_rewrite(script_path):
                content = rewrite_build_func(content)
            relpath = local_relpath(script_path)
            _write(relpath, content)
            files.append(relpath)

        if _has_ct_script(descriptor):
            relpath = _install_relpath(descriptor)
            content = git_provider.download_raw(repo_url, relpath, branch)
            if content is None:
                logger.info(f"No install script for {descriptor.slug}, skipped")
            else:
                _write(relpath, content)
                files.append(relpath)
    except (RuntimeError, ValueError, OSError) as e:
        logger.error(f"Load script {descriptor.slug} failed: {e}")
        return {"success": False, "message": f"{descriptor.slug}: {e}", "files": files}

    logger.info(f"Loaded {len(files)} file(s) for {descriptor.slug}")
    return {
        "success": True,
        "message": f"Successfully loaded {len(files)} script(s) for {descriptor.name}",
        "files": files,
    }


# ========== LOCAL STATE ==========

def check_exists(descriptor):
    """Danh sách file local đang có của 1 script."""
    found = []
    for script_path in _method_scripts(descriptor):
        relpath = local_relpath(script_path)
        if os.path.isfile(_safe_join(relpath)):
            found.append(relpath)
    if _has_ct_script(descriptor):
        relpath = _install_relpath(descriptor)
        if os.path.isfile(_safe_join(relpath)):
            found.append(relpath)
    return found


def is_downloaded(descriptor):
    scripts = _method_scripts(descriptor)
    if not scripts:
        return False
    return all(os.path.isfile(_safe_join(local_relpath(p))) for p in scripts)


def delete_script(descriptor):
    deleted = []
    for relpath in check_exists(descriptor):
        os.remove(_safe_join(relpath))
        deleted.append(relpath)
    logger.info(f"Deleted {len(deleted)} file(s) for {descriptor.slug}")
    return deleted


# ========== COMPARE ==========

def _file_pairs(descriptor):
    """(local relpath, remote path, rewrite?) for every file of the script."""
    pairs = [
        (local_relpath(p), p, _needs_rewrite(p)) for p in _method_scripts(descriptor)
    ]
    if _has_ct_script(descriptor):
        relpath = _install_relpath(descriptor)
        pairs.append((relpath, relpath, False))
    return pairs


def _remote_content(descriptor, remote_path, rewrite):
    content = git_provider.download_raw(_repo_url(descriptor), remote_path, _branch())
    if content is not None and rewrite:
        content = rewrite_build_func(content)
    return content


def compare_content(descriptor):
    """
    So sánh file local với bản trên GitHub.
    Returns {has_differences, differences: [local relpath, ...]}.
    """
    differences = []
    for relpath, remote_path, rewrite in _file_pairs(descriptor):
        full = _safe_join(relpath)
        if not os.path.isfile(full):
            continue
        remote = _remote_content(descriptor, remote_path, rewrite)
        if remote is None or _read(relpath) != remote:
            differences.append(relpath)
    return {"has_differences": bool(differences), "differences": differences}


def get_diff(descriptor, file_path):
    """Unified diff local vs remote cho 1 file của script."""
    for relpath, remote_path, rewrite in _file_pairs(descriptor):
        if relpath != file_path:
            continue
        full = _safe_join(relpath)
        local = _read(relpath) if os.path.isfile(full) else ""
        remote = _remote_content(descriptor, remote_path, rewrite) or ""
        diff = difflib.unified_diff(
            local.splitlines(keepends=True),
            remote.splitlines(keepends=True),
            fromfile=f"local/{relpath}",
            tofile=f"remote/{remote_path}",
        )
        return "".join(diff)
    raise LookupError(f"{file_path} is not a file of {descriptor.slug}")
