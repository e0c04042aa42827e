"""
custsync/core/snapshots.py — Point-in-time SQLite snapshots

Background thread that copies the live customers.db into the storage dir
every BACKUP_INTERVAL seconds and keeps only the MAX_SNAPSHOTS newest.

  customers_auto_<ts>.db    — timed snapshot, followed by a retention sweep
  customers_server_<ts>.db  — on-demand snapshot (POST /backup), no sweep

Two snapshots stamped in the same millisecond get a -1, -2, ... suffix.

Copies go through RecordStore.snapshot_to() (sqlite3 backup API), never a
plain file copy, so a snapshot never contains half a batch.
"""

import os
import logging
import threading
from datetime import datetime, timezone

from .errors import SnapshotError
from .retention import artifact_paths, artifact_timestamp, prune_artifacts

log = logging.getLogger("custsync.snapshots")

# ─── Configuration ───────────────────────────────────────────────────────────

BACKUP_INTERVAL = 12 * 60 * 60   # Seconds between timed snapshots
STARTUP_DELAY = 10               # First snapshot after boot, clear of migration work
MAX_SNAPSHOTS = 10

SNAPSHOT_PREFIXES = ("customers_auto_", "customers_server_")


def is_snapshot(name: str) -> bool:
    return name.startswith(SNAPSHOT_PREFIXES) and name.endswith(".db")


class SnapshotBackupScheduler:
    """Timed + on-demand whole-store snapshots with count-based retention."""

    def __init__(self, store, storage_dir: str, interval: float = BACKUP_INTERVAL,
                 max_snapshots: int = MAX_SNAPSHOTS, startup_delay: float = STARTUP_DELAY,
                 clock=None):
        self.store = store
        self.storage_dir = storage_dir
        self.interval = interval
        self.max_snapshots = max_snapshots
        self.startup_delay = startup_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._thread = None
        self._stop_event = threading.Event()
        self._running = False
        self._last_backup = None
        self._last_error = None
        self._backup_count = 0
        self._create_lock = threading.Lock()

    # ── Snapshot creation ─────────────────────────────────────────────────
    def create_snapshot(self, kind: str = "server") -> str:
        """Write customers_<kind>_<ts>.db and return its path. Raises on failure."""
        os.makedirs(self.storage_dir, exist_ok=True)
        stamp = artifact_timestamp(self._clock())
        with self._create_lock:
            target = next(artifact_paths(self.storage_dir, f"customers_{kind}_", stamp, ".db"), None)
            if target is None:
                raise SnapshotError(f"no free snapshot name for {stamp}")
            path = self.store.snapshot_to(target)
        self._backup_count += 1
        self._last_backup = path
        return path

    def trigger(self) -> dict:
        """On-demand snapshot for POST /backup. Synchronous; never prunes."""
        try:
            path = self.create_snapshot("server")
        except Exception as e:
            log.error("Backup error: %s", e)
            self._last_error = str(e)
            return {"success": False, "error": str(e)}
        log.info("DB Backup created: %s", path)
        return {"success": True, "backup": path}

    def run_once(self):
        """One timed cycle: snapshot then sweep. Logs failures, never raises."""
        try:
            path = self.create_snapshot("auto")
        except Exception as e:
            log.error("Automatic backup failed: %s", e)
            self._last_error = str(e)
            return None
        log.info("Automatic DB Backup created: %s", path)
        self.cleanup_old_snapshots()
        return path

    def cleanup_old_snapshots(self) -> list:
        return prune_artifacts(self.storage_dir, is_snapshot, self.max_snapshots, log)

    # ── Background thread ─────────────────────────────────────────────────
    def start(self):
        """Start the background snapshot thread."""
        if self._running:
            log.warning("Snapshot scheduler already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True,
                                        name="snapshot-backup")
        self._thread.start()
        self._running = True
        log.info("Snapshot scheduler started (first in %ss, then every %ss, keep %d)",
                 self.startup_delay, self.interval, self.max_snapshots)

    def stop(self):
        if not self._running:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=10)
        self._running = False
        log.info("Snapshot scheduler stopped (snapshots=%d)", self._backup_count)

    def _run_loop(self):
        if self._stop_event.wait(self.startup_delay):
            return
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                log.error("Snapshot loop error: %s", e)
            self._stop_event.wait(self.interval)

    @property
    def status(self) -> dict:
        return {
            "running": self._running,
            "interval": self.interval,
            "max_snapshots": self.max_snapshots,
            "backup_count": self._backup_count,
            "last_backup": self._last_backup,
            "last_error": self._last_error,
        }
