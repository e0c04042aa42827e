#!/usr/bin/env python3
"""
custsync — Application Entry Point
Creates the Flask app, opens the store, migrates legacy data, and starts
the two backup schedulers.

Startup order matters:
  1. logging + crash guard
  2. open customers.db (fatal if it can't be opened)
  3. schema + one-shot legacy migration, before any request is served
  4. blueprint + schedulers
"""

import os
import sys
import logging

from flask import Flask

from logging_config import setup_logging, install_crash_guard
from custsync.core.paths import resolve_paths, ensure_dirs, validate_paths
from custsync.core.db import RecordStore
from custsync.core.errors import StoreOpenError
from custsync.core.migration import migrate_legacy_json
from custsync.core.snapshots import SnapshotBackupScheduler
from custsync.core.customer_file import CustomerFileStore
from custsync.core.file_backup import BackupHook, FileBackupScheduler
from custsync.core.gateway import SyncGateway

log = logging.getLogger("custsync")

DEFAULT_PORT = 3055


def _env_num(name, default, cast=float):
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        log.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def _env_flag(name, default=True):
    raw = os.environ.get(name, "")
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def create_app(paths=None, start_schedulers=None):
    """Application factory."""
    if paths is None:
        paths = resolve_paths()
    if start_schedulers is None:
        start_schedulers = _env_flag("ENABLE_BACKUP_SCHEDULERS", True)

    ensure_dirs(paths)
    setup_logging(paths["log_path"])
    install_crash_guard()
    log.info("Database: %s", paths["db_path"])
    checks = validate_paths(paths)
    for err in checks["errors"]:
        log.error("STARTUP CHECK FAILED: %s", err)
    for warn in checks["warnings"]:
        log.warning(warn)

    # ── Persistent store ──────────────────────────────────────────────────
    store = RecordStore(paths["db_path"])
    try:
        store.open()
    except StoreOpenError as e:
        log.error("Failed to open database: %s", e)
        sys.exit(1)
    store.ensure_schema()
    migrate_legacy_json(store, paths["legacy_path"])

    # ── Backups ───────────────────────────────────────────────────────────
    snapshots = SnapshotBackupScheduler(
        store, paths["storage_dir"],
        interval=_env_num("SNAPSHOT_INTERVAL_HOURS", 12) * 3600,
        max_snapshots=_env_num("MAX_SNAPSHOTS", 10, int),
        startup_delay=_env_num("SNAPSHOT_STARTUP_DELAY", 10),
    )
    customer_file = CustomerFileStore(paths["legacy_path"])
    hook = None
    if paths["backup_hook"]:
        hook = BackupHook(paths["backup_hook"])
        try:
            hook.argv
        except ValueError as e:
            log.error("Backup hook command is malformed (%s): %s", e, paths["backup_hook"])
    file_backups = FileBackupScheduler(
        customer_file.read_customers, paths["file_backup_dir"], hook=hook,
        max_backups=_env_num("MAX_BACKUPS", 30, int),
        max_retries=_env_num("BACKUP_RETRIES", 3, int),
        retry_delay=_env_num("BACKUP_RETRY_DELAY", 5),
        interval=_env_num("FILE_BACKUP_INTERVAL_HOURS", 24) * 3600,
    )

    app = Flask(__name__)
    app.extensions["custsync"] = {
        "paths": paths,
        "store": store,
        "gateway": SyncGateway(store, snapshots),
        "snapshots": snapshots,
        "file_backups": file_backups,
        "customer_file": customer_file,
    }

    from custsync.api.routes_sync import bp
    app.register_blueprint(bp)

    if start_schedulers:
        snapshots.start()
        file_backups.start()

    return app


def main():
    app = create_app()
    host = os.environ.get("CUSTSYNC_HOST", "127.0.0.1")
    port = _env_num("PORT", DEFAULT_PORT, int)
    log.info("Listening on http://%s:%d", host, port)
    try:
        # single process: the store has exactly one writer
        app.run(host=host, port=port, debug=False, threaded=True, use_reloader=False)
    except Exception as e:
        log.exception("Server loop crashed: %s", e)
        raise
    finally:
        ext = app.extensions["custsync"]
        ext["snapshots"].stop()
        ext["file_backups"].stop()


if __name__ == "__main__":
    main()
