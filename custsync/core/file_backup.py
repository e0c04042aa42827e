"""
custsync/core/file_backup.py — JSON file backups of the customer map

Second, independent backup path. It predates the SQLite store and protects
against a different failure: the server (and its database) being gone
entirely. Each cycle:

  1. read the customer map through the injected reader
  2. skip if it is missing or empty (never write an empty backup)
  3. write backups/customerManager/customers_<ts>.json
  4. fire the external hook (if configured) in the background
  5. on failure retry MAX_RETRIES times, RETRY_DELAY seconds apart
  6. sweep: keep the MAX_BACKUPS newest .json files

Hook failures are logged and nothing else. The backup already succeeded.
"""

import os
import json
import shlex
import logging
import subprocess
import threading
from datetime import datetime, timezone

from .retention import artifact_paths, artifact_timestamp, prune_artifacts

log = logging.getLogger("custsync.file_backup")

# ─── Configuration ───────────────────────────────────────────────────────────

MAX_BACKUPS = 30
MAX_RETRIES = 3
RETRY_DELAY = 5                  # Seconds between attempts
BACKUP_INTERVAL = 24 * 60 * 60   # Seconds between cycles
HOOK_TIMEOUT = 300


def is_file_backup(name: str) -> bool:
    return name.endswith(".json")


# ─── External hook ───────────────────────────────────────────────────────────

class BackupHook:
    """Runs the configured external program with the new backup's path appended.

    The command string is split shell-style with backslashes kept literal, so
    a Windows script can be configured as:
        powershell -ExecutionPolicy Bypass -File d:\\scripts\\backup.ps1
    It is parsed on each run; a malformed command is logged, never raised.
    """

    def __init__(self, command: str, timeout: float = HOOK_TIMEOUT):
        self.command = command
        self.timeout = timeout

    @property
    def argv(self) -> list:
        """Split the command. Raises ValueError on an unbalanced quote."""
        lex = shlex.shlex(self.command, posix=True)
        lex.whitespace_split = True
        lex.commenters = ""
        lex.escape = ""
        return list(lex)

    def fire(self, artifact_path: str) -> threading.Thread:
        """Start the hook in a daemon thread and return immediately."""
        t = threading.Thread(target=self.run, args=(artifact_path,), daemon=True,
                             name="backup-hook")
        t.start()
        return t

    def run(self, artifact_path: str) -> bool:
        try:
            proc = subprocess.run(self.argv + [artifact_path], capture_output=True,
                                  text=True, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            log.error("External script error: %s", e)
            return False
        if proc.returncode != 0:
            log.error("External script exited with %d: %s",
                      proc.returncode, (proc.stderr or proc.stdout).strip())
            return False
        if proc.stderr:
            log.error("External script stderr: %s", proc.stderr.strip())
        log.info("External script executed: %s", proc.stdout.strip())
        return True


# ─── Scheduler ───────────────────────────────────────────────────────────────

class FileBackupScheduler:
    """Periodic JSON backup of the customer map with bounded retry."""

    def __init__(self, read_customers, backup_dir: str, hook: BackupHook = None,
                 max_backups: int = MAX_BACKUPS, max_retries: int = MAX_RETRIES,
                 retry_delay: float = RETRY_DELAY, interval: float = BACKUP_INTERVAL,
                 clock=None):
        self.read_customers = read_customers
        self.backup_dir = backup_dir
        self.hook = hook
        self.max_backups = max_backups
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.interval = interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._thread = None
        self._stop_event = threading.Event()
        self._running = False
        self._last_backup = None
        self._cycles = 0
        self._failures = 0

    def _write_new(self, payload: str) -> str:
        stamp = artifact_timestamp(self._clock())
        for path in artifact_paths(self.backup_dir, "customers_", stamp, ".json"):
            try:
                with open(path, "x", encoding="utf-8") as f:
                    f.write(payload)
            except FileExistsError:
                continue
            return path
        raise FileExistsError(f"no free backup name for {stamp}")

    def save_backup(self, data):
        """Write one backup file. Returns its path, or None if the write failed."""
        try:
            payload = json.dumps(data, indent=2)
            os.makedirs(self.backup_dir, exist_ok=True)
            path = self._write_new(payload)
            filename = os.path.basename(path)
        except (OSError, TypeError, ValueError) as e:
            log.error("Failed to save backup: %s", e)
            return None
        log.info("Backup saved: %s", filename)
        self._last_backup = path

        if self.hook is not None:
            try:
                self.hook.fire(path)
            except RuntimeError as e:
                log.error("Could not start external script: %s", e)
        return path

    def perform_backup(self):
        """One backup cycle with retries. Returns the artifact path or None. Never raises."""
        self._cycles += 1
        retries = self.max_retries
        path = None
        while True:
            try:
                data = self.read_customers()
                if not data:
                    log.info("Skipping backup: No customer data found or data is empty.")
                    return None
                path = self.save_backup(data)
            except Exception as e:
                log.error("Auto-backup algorithm error: %s", e)
                path = None
            if path:
                break
            if retries <= 0:
                self._failures += 1
                log.error("Backup failed after %d retries, giving up until next cycle",
                          self.max_retries)
                break
            log.warning("Backup failed, retrying in %ss... (%d left)", self.retry_delay, retries)
            retries -= 1
            if self._stop_event.wait(self.retry_delay):
                log.warning("Backup retry abandoned, scheduler stopping")
                break

        self.cleanup_old_backups()
        return path

    def cleanup_old_backups(self) -> list:
        return prune_artifacts(self.backup_dir, is_file_backup, self.max_backups, log)

    # ── Background thread ─────────────────────────────────────────────────
    def start(self):
        """Back up once right away, then every `interval` seconds."""
        if self._running:
            log.warning("File backup scheduler already running")
            return
        os.makedirs(self.backup_dir, exist_ok=True)
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True,
                                        name="file-backup")
        self._thread.start()
        self._running = True
        log.info("File backup scheduler started (every %ss, keep %d)",
                 self.interval, self.max_backups)

    def stop(self):
        if not self._running:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=10)
        self._running = False
        log.info("File backup scheduler stopped (cycles=%d, failures=%d)",
                 self._cycles, self._failures)

    def _run_loop(self):
        while not self._stop_event.is_set():
            try:
                self.perform_backup()
            except Exception as e:
                log.error("File backup loop error: %s", e)
            self._stop_event.wait(self.interval)

    @property
    def status(self) -> dict:
        return {
            "running": self._running,
            "interval": self.interval,
            "max_backups": self.max_backups,
            "cycles": self._cycles,
            "failures": self._failures,
            "last_backup": self._last_backup,
            "hook": self.hook.command if self.hook else None,
        }
