"""
Logging configuration for the custsync server.
Import and call setup_logging() once at app startup.

File log lines look like:
    [2026-01-24T14:00:03.123Z] [INFO] Database connection established
"""
import logging
import logging.handlers
import os
import sys
import json
import threading
from datetime import datetime, timezone


def _utc_stamp(record) -> str:
    ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}Z"


class LineFormatter(logging.Formatter):
    """[timestamp] [LEVEL] message, the server.log line format."""
    def format(self, record):
        line = f"[{_utc_stamp(record)}] [{record.levelname}] {record.getMessage()}"
        if record.exc_info and record.exc_info[0]:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JSONFormatter(logging.Formatter):
    """Structured JSON log lines for machine parsing."""
    def format(self, record):
        entry = {
            "ts": _utc_stamp(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Readable console format with color."""
    COLORS = {
        "DEBUG": "\033[36m", "INFO": "\033[32m",
        "WARNING": "\033[33m", "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now(timezone.utc).strftime("%H:%M:%S")
        line = f"{color}{ts} [{record.levelname[0]}] {record.name}: {record.getMessage()}{self.RESET}"
        if record.exc_info and record.exc_info[0]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(log_path=None, level=None, json_logs=None):
    """
    Configure logging for the full application.

    Args:
        log_path: server.log location (skipped when None or not writable)
        level: Override log level (default: from LOG_LEVEL env or INFO)
        json_logs: JSON console lines (default: CUSTSYNC_JSON_LOGS env)
    """
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO").upper()
    if json_logs is None:
        json_logs = os.environ.get("CUSTSYNC_JSON_LOGS", "").lower() == "true"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    # Only replace handlers we installed; leave test/capture handlers alone
    for h in [h for h in root.handlers if getattr(h, "_custsync", False)]:
        root.removeHandler(h)
        h.close()

    # Console handler
    console = logging.StreamHandler()
    console.setFormatter(JSONFormatter() if json_logs else HumanFormatter())
    console._custsync = True
    root.addHandler(console)

    # File handler — rotates at 5MB, keeps 5 backups
    if log_path:
        try:
            os.makedirs(os.path.dirname(log_path), exist_ok=True)
            fh = logging.handlers.RotatingFileHandler(
                log_path, maxBytes=5_000_000, backupCount=5, encoding="utf-8",
            )
            fh.setFormatter(LineFormatter())
            fh._custsync = True
            root.addHandler(fh)
        except OSError as e:
            print(f"[CRITICAL] Failed to open log file {log_path}: {e}", file=sys.stderr)

    # Quiet noisy libs
    for name in ("urllib3", "werkzeug"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("custsync").info("Logging initialized (level=%s)", level)


def install_crash_guard():
    """Log anything that escapes a thread or the main loop instead of dying silently."""
    log = logging.getLogger("custsync.crash")

    def _excepthook(exc_type, exc, tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        log.error("UNCAUGHT EXCEPTION: %s", exc, exc_info=(exc_type, exc, tb))

    def _thread_excepthook(args):
        if args.exc_type is SystemExit:
            return
        name = args.thread.name if args.thread else "?"
        log.error("UNCAUGHT EXCEPTION in thread %s: %s", name, args.exc_value,
                  exc_info=(args.exc_type, args.exc_value, args.exc_traceback))

    sys.excepthook = _excepthook
    threading.excepthook = _thread_excepthook
