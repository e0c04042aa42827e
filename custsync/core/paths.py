"""
custsync/core/paths.py — Centralized Path Configuration

Single source of truth for every file location the server touches.
Components receive the resolved dict at construction instead of computing
their own paths, so tests can point a whole app at a temp directory.

LAYOUT:
  <data_dir>/storage/customers.db              relational store
  <data_dir>/storage/customers.json            legacy flat-file store (read-only here)
  <data_dir>/storage/customers_auto_<ts>.db    timed snapshots
  <data_dir>/storage/customers_server_<ts>.db  on-demand snapshots
  <data_dir>/storage/server.log                append-only text log
  <data_dir>/backups/customerManager/customers_<ts>.json   file backups
"""

import os
import logging

log = logging.getLogger("custsync.paths")

APP_DIR_NAME = "custsync"


# ── Resolve DATA_DIR ─────────────────────────────────────────────────────────
# Priority: CUSTSYNC_DATA_DIR env → %APPDATA% (Windows) → XDG data home
def _default_data_dir(env) -> str:
    appdata = env.get("APPDATA", "")
    if appdata:
        return os.path.join(appdata, APP_DIR_NAME)
    xdg = env.get("XDG_DATA_HOME", "")
    if xdg:
        return os.path.join(xdg, APP_DIR_NAME)
    home = env.get("HOME") or os.path.expanduser("~")
    return os.path.join(home, ".local", "share", APP_DIR_NAME)


def resolve_paths(env=None) -> dict:
    """Resolve every path from the environment.

    Returns a plain dict so it can be logged, serialized into /health
    diagnostics, or overridden key-by-key in tests.
    """
    if env is None:
        env = os.environ
    data_dir = env.get("CUSTSYNC_DATA_DIR", "") or _default_data_dir(env)
    data_dir = os.path.abspath(data_dir)
    storage_dir = os.path.join(data_dir, "storage")
    return {
        "data_dir": data_dir,
        "storage_dir": storage_dir,
        "db_path": os.path.join(storage_dir, "customers.db"),
        "legacy_path": os.path.join(storage_dir, "customers.json"),
        "log_path": os.path.join(storage_dir, "server.log"),
        "file_backup_dir": os.path.join(data_dir, "backups", "customerManager"),
        "backup_hook": env.get("CUSTSYNC_BACKUP_HOOK", "").strip(),
    }


def ensure_dirs(paths: dict) -> None:
    for key in ("storage_dir", "file_backup_dir"):
        os.makedirs(paths[key], exist_ok=True)


def validate_paths(paths: dict) -> dict:
    """Runtime validation for diagnostics.

    Returns:
        {"ok": bool, "errors": [str], "warnings": [str], "resolved": {name: path}}
    """
    result = {"ok": True, "errors": [], "warnings": [], "resolved": {}}

    for name in ("storage_dir", "file_backup_dir"):
        path = paths[name]
        result["resolved"][name] = path
        if not os.path.isdir(path):
            result["errors"].append(f"{name} not found: {path}")
            result["ok"] = False

    result["resolved"]["db_path"] = paths["db_path"]
    result["resolved"]["legacy_path"] = paths["legacy_path"]
    if not os.path.exists(paths["legacy_path"]):
        result["warnings"].append(f"legacy store not present: {paths['legacy_path']}")

    # Verify the storage dir is writable
    test_file = os.path.join(paths["storage_dir"], ".write_test")
    try:
        with open(test_file, "w") as f:
            f.write("ok")
        os.remove(test_file)
    except OSError as e:
        result["errors"].append(f"storage_dir not writable: {e}")
        result["ok"] = False

    if not paths.get("backup_hook"):
        result["warnings"].append("CUSTSYNC_BACKUP_HOOK not set, post-backup hook disabled")

    return result
