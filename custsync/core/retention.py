"""
custsync/core/retention.py — Backup artifact naming and retention sweeps

Both backup paths (SQLite snapshots and JSON file backups) name their
artifacts with the same millisecond UTC stamp and prune with the same
oldest-first sweep. Each caller passes its own matcher and keep count,
so one kind never deletes the other's files.
"""

import os
import threading
from datetime import datetime, timezone

_sweep_locks = {}
_registry_lock = threading.Lock()


def artifact_timestamp(now: datetime = None) -> str:
    """ISO-8601 UTC with ':' and '.' made filename-safe: 2026-01-24T14-00-03-123Z"""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


def artifact_paths(directory: str, prefix: str, stamp: str, ext: str, limit: int = 1000):
    """Candidate paths for one artifact: <prefix><stamp><ext>, then -1, -2, ...

    Names that already exist are skipped. Callers still open the chosen
    path exclusively.
    """
    for n in range(limit):
        suffix = f"-{n}" if n else ""
        path = os.path.join(directory, f"{prefix}{stamp}{suffix}{ext}")
        if not os.path.exists(path):
            yield path


def _lock_for(directory: str) -> threading.Lock:
    key = os.path.abspath(directory)
    with _registry_lock:
        return _sweep_locks.setdefault(key, threading.Lock())


def _stamp_of(name: str) -> str:
    # customers_auto_<ts>[-n].db / customers_<ts>[-n].json → <ts>[-n]
    return os.path.splitext(name.rsplit("_", 1)[-1])[0]


def list_artifacts(directory: str, match) -> list:
    """[(name, mtime)] newest first. Ties on mtime fall back to the name stamp."""
    files = []
    for name in os.listdir(directory):
        if not match(name):
            continue
        path = os.path.join(directory, name)
        if not os.path.isfile(path):
            continue
        files.append((name, os.path.getmtime(path)))
    files.sort(key=lambda f: (f[1], _stamp_of(f[0])), reverse=True)
    return files


def prune_artifacts(directory: str, match, keep: int, log) -> list:
    """Delete every matching artifact beyond the `keep` most recent.

    Deletion failures are logged one by one and the sweep moves on.
    Returns the names actually deleted.
    """
    deleted = []
    with _lock_for(directory):
        try:
            files = list_artifacts(directory, match)
        except OSError as e:
            log.error("Cleanup failed: %s", e)
            return deleted

        for name, _mtime in files[max(keep, 0):]:
            try:
                os.remove(os.path.join(directory, name))
            except OSError as e:
                log.error("Failed to delete old backup %s: %s", name, e)
                continue
            deleted.append(name)
            log.info("Deleted old backup: %s", name)
    return deleted
