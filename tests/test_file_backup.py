"""Tests for FileBackupScheduler, BackupHook and CustomerFileStore."""

import json
import logging
import os
import shlex
import sys
import time
from datetime import datetime, timedelta, timezone

import pytest

from custsync.core.customer_file import CustomerFileStore
from custsync.core.file_backup import BackupHook, FileBackupScheduler


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 24, 14, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(milliseconds=250)
        return self.now


def _backups(directory):
    if not os.path.isdir(directory):
        return []
    return sorted(n for n in os.listdir(directory) if n.endswith(".json"))


def _messages(caplog, needle):
    return [r for r in caplog.records if needle in r.getMessage()]


@pytest.fixture
def backup_dir(paths):
    return paths["file_backup_dir"]


@pytest.fixture
def no_wait(monkeypatch):
    """Record retry delays instead of sleeping through them."""
    waits = []

    def install(scheduler):
        monkeypatch.setattr(scheduler._stop_event, "wait",
                            lambda timeout=None: waits.append(timeout) or False)
        return waits
    return install


# ═══════════════════════════════════════════════════════════════════════════════
# Flat-file store
# ═══════════════════════════════════════════════════════════════════════════════

class TestCustomerFileStore:

    def test_absent_returns_none(self, paths):
        assert CustomerFileStore(paths["legacy_path"]).read_customers() is None

    def test_write_then_read(self, paths, sample_customers):
        fs = CustomerFileStore(paths["legacy_path"])
        assert fs.write_customers(sample_customers) is True
        assert fs.read_customers() == sample_customers

    def test_written_file_is_pretty(self, paths):
        fs = CustomerFileStore(paths["legacy_path"])
        fs.write_customers({"u1": {"name": "A"}})
        with open(paths["legacy_path"]) as f:
            assert f.read().startswith("{\n  ")

    def test_corrupt_returns_none(self, paths, caplog):
        with open(paths["legacy_path"], "w") as f:
            f.write("{oops")
        caplog.set_level(logging.INFO, logger="custsync")
        assert CustomerFileStore(paths["legacy_path"]).read_customers() is None
        assert _messages(caplog, "Failed to read customers")


# ═══════════════════════════════════════════════════════════════════════════════
# Backup cycle
# ═══════════════════════════════════════════════════════════════════════════════

class TestPerformBackup:

    def test_defaults(self, backup_dir):
        s = FileBackupScheduler(dict, backup_dir)
        assert (s.max_retries, s.retry_delay, s.max_backups) == (3, 5, 30)

    def test_writes_timestamped_file(self, backup_dir, sample_customers):
        s = FileBackupScheduler(lambda: sample_customers, backup_dir, clock=FakeClock())
        path = s.perform_backup()
        assert os.path.basename(path) == "customers_2026-01-24T14-00-00-250Z.json"
        with open(path) as f:
            assert json.load(f) == sample_customers

    def test_same_millisecond_backups_both_kept(self, backup_dir):
        fixed = datetime(2026, 1, 24, 14, 0, 0, tzinfo=timezone.utc)
        s = FileBackupScheduler(dict, backup_dir, clock=lambda: fixed)
        first = s.save_backup({"u1": {"name": "A"}})
        second = s.save_backup({"u1": {"name": "B"}})
        assert first != second
        assert os.path.basename(first) == "customers_2026-01-24T14-00-00-000Z.json"
        assert os.path.basename(second) == "customers_2026-01-24T14-00-00-000Z-1.json"
        with open(first) as f:
            assert json.load(f) == {"u1": {"name": "A"}}
        with open(second) as f:
            assert json.load(f) == {"u1": {"name": "B"}}

    @pytest.mark.parametrize("data", [None, {}])
    def test_skip_on_empty(self, backup_dir, caplog, data):
        caplog.set_level(logging.INFO, logger="custsync")
        s = FileBackupScheduler(lambda: data, backup_dir)
        assert s.perform_backup() is None
        assert _backups(backup_dir) == []
        assert len(_messages(caplog, "Skipping backup")) == 1

    def test_retry_then_succeed(self, backup_dir, caplog, no_wait, sample_customers):
        caplog.set_level(logging.INFO, logger="custsync")
        s = FileBackupScheduler(lambda: sample_customers, backup_dir)
        waits = no_wait(s)
        real_save = s.save_backup
        calls = {"n": 0}

        def flaky_save(data):
            calls["n"] += 1
            if calls["n"] < 3:
                return None
            return real_save(data)

        s.save_backup = flaky_save
        path = s.perform_backup()
        assert calls["n"] == 3
        assert _backups(backup_dir) == [os.path.basename(path)]
        assert len(_messages(caplog, "retrying")) == 2
        assert waits == [5, 5]

    def test_read_errors_are_retried(self, backup_dir, no_wait, sample_customers):
        attempts = {"n": 0}

        def reader():
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise OSError("share offline")
            return sample_customers

        s = FileBackupScheduler(reader, backup_dir)
        no_wait(s)
        assert s.perform_backup() is not None
        assert attempts["n"] == 2

    def test_exhausted_retries(self, backup_dir, caplog, no_wait):
        caplog.set_level(logging.INFO, logger="custsync")
        s = FileBackupScheduler(lambda: {"u1": {"bad": object()}}, backup_dir)
        waits = no_wait(s)
        assert s.perform_backup() is None
        assert len(waits) == 3
        assert _backups(backup_dir) == []
        assert s.status["failures"] == 1
        assert _messages(caplog, "giving up until next cycle")

    def test_next_cycle_unaffected_by_exhaustion(self, backup_dir, no_wait):
        state = {"broken": True}
        s = FileBackupScheduler(
            lambda: {"u1": {"bad": object()}} if state["broken"] else {"u1": {"ok": 1}},
            backup_dir)
        no_wait(s)
        assert s.perform_backup() is None
        state["broken"] = False
        assert s.perform_backup() is not None
        assert len(_backups(backup_dir)) == 1

    def test_stop_abandons_retries(self, backup_dir):
        s = FileBackupScheduler(lambda: {"u1": {"bad": object()}}, backup_dir,
                                retry_delay=30)
        s._stop_event.set()
        started = time.time()
        assert s.perform_backup() is None
        assert time.time() - started < 5


# ═══════════════════════════════════════════════════════════════════════════════
# Retention
# ═══════════════════════════════════════════════════════════════════════════════

class TestRetention:

    def test_keeps_most_recent_by_mtime(self, backup_dir):
        base = time.time() - 10_000
        names = []
        for i in range(35):
            name = f"customers_2026-01-{i + 1:02d}T00-00-00-000Z.json"
            p = os.path.join(backup_dir, name)
            with open(p, "w") as f:
                f.write("{}")
            os.utime(p, (base + i, base + i))
            names.append(name)
        s = FileBackupScheduler(dict, backup_dir)
        deleted = s.cleanup_old_backups()
        assert sorted(deleted) == names[:5]
        assert _backups(backup_dir) == names[5:]

    def test_never_touches_other_files(self, backup_dir):
        keep = os.path.join(backup_dir, "customers_auto_2026-01-01T00-00-00-000Z.db")
        with open(keep, "w") as f:
            f.write("")
        s = FileBackupScheduler(dict, backup_dir, max_backups=0)
        s.cleanup_old_backups()
        assert os.path.exists(keep)

    def test_sweep_after_successful_backup(self, backup_dir, sample_customers):
        s = FileBackupScheduler(lambda: sample_customers, backup_dir, max_backups=3,
                                clock=FakeClock())
        for _ in range(5):
            s.perform_backup()
        assert len(_backups(backup_dir)) == 3


# ═══════════════════════════════════════════════════════════════════════════════
# External hook
# ═══════════════════════════════════════════════════════════════════════════════

def _python_command(code):
    return shlex.join([sys.executable, "-c", code])


class TestBackupHook:

    def test_hook_receives_artifact_path(self, backup_dir, tmp_path, sample_customers):
        marker = tmp_path / "hook.txt"
        hook = BackupHook(_python_command(
            f"import sys, pathlib; pathlib.Path({str(marker)!r}).write_text(sys.argv[1])"))
        s = FileBackupScheduler(lambda: sample_customers, backup_dir, hook=hook)
        fired = []
        real_fire = hook.fire
        hook.fire = lambda p: fired.append(real_fire(p)) or fired[-1]
        path = s.perform_backup()
        fired[0].join(30)
        assert marker.read_text() == path

    def test_hook_failure_does_not_fail_backup(self, backup_dir, caplog, sample_customers):
        caplog.set_level(logging.INFO, logger="custsync")
        hook = BackupHook(_python_command("import sys; sys.exit(3)"))
        assert hook.run("/tmp/x.json") is False
        assert _messages(caplog, "External script exited with 3")

        s = FileBackupScheduler(lambda: sample_customers, backup_dir,
                                hook=BackupHook("/nonexistent/hook-program"))
        path = s.perform_backup()
        assert path is not None
        assert os.path.exists(path)

    def test_missing_program_logged(self, caplog):
        caplog.set_level(logging.INFO, logger="custsync")
        assert BackupHook("/nonexistent/hook-program").run("/tmp/x.json") is False
        assert _messages(caplog, "External script error")

    def test_successful_hook_logged(self, caplog):
        caplog.set_level(logging.INFO, logger="custsync")
        assert BackupHook(_python_command("print('uploaded')")).run("/tmp/x.json") is True
        assert _messages(caplog, "External script executed: uploaded")

    def test_windows_path_kept_intact(self):
        hook = BackupHook(r"powershell -ExecutionPolicy Bypass -File "
                          r"d:\Skrypty\Equibop\scripts\external_backup.ps1")
        assert hook.argv == ["powershell", "-ExecutionPolicy", "Bypass", "-File",
                             r"d:\Skrypty\Equibop\scripts\external_backup.ps1"]

    def test_quoted_path_with_spaces(self):
        hook = BackupHook(r'powershell -File "C:\Program Files\hooks\up load.ps1" -Quiet')
        assert hook.argv == ["powershell", "-File", r"C:\Program Files\hooks\up load.ps1",
                             "-Quiet"]

    def test_malformed_command_logged_not_raised(self, backup_dir, caplog, sample_customers):
        caplog.set_level(logging.INFO, logger="custsync")
        hook = BackupHook('powershell -File "d:/scripts/backup.ps1')
        assert hook.run("/tmp/x.json") is False
        assert _messages(caplog, "External script error")

        s = FileBackupScheduler(lambda: sample_customers, backup_dir, hook=hook)
        path = s.perform_backup()
        assert path is not None
        assert os.path.exists(path)


class TestThread:

    def test_start_backs_up_immediately(self, backup_dir, sample_customers):
        s = FileBackupScheduler(lambda: sample_customers, backup_dir, interval=3600)
        s.start()
        try:
            deadline = time.time() + 5
            while not _backups(backup_dir) and time.time() < deadline:
                time.sleep(0.01)
        finally:
            s.stop()
        assert len(_backups(backup_dir)) == 1
        assert s.status["cycles"] == 1
