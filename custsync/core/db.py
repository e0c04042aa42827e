"""
custsync/core/db.py — Persistent SQLite Record Store

WHY THIS EXISTS:
  The client collector pushes customer cards and chat messages in batches.
  They used to live in one whole-file customers.json that was rewritten on
  every save. One crash mid-write lost the lot.

SOLUTION:
  1. SQLite database at <storage>/customers.db, WAL mode
  2. Every batch is one transaction: either every row lands or none does
  3. INSERT OR REPLACE keyed on the externally assigned id, so re-syncing
     the same record replaces it instead of appending

TABLES:
  customers  — id → opaque JSON payload, refreshed updated_at on every write
  messages   — id → denormalized channel/author/content/timestamp + raw JSON

One RecordStore owns the file. Nothing else opens it for writing.
"""

import os
import json
import sqlite3
import logging
import threading
from contextlib import contextmanager

from .errors import BatchError, SnapshotError, StoreOpenError

log = logging.getLogger("custsync.db")

TABLES = ("customers", "messages")

# ── Schema ────────────────────────────────────────────────────────────────────
SCHEMA = """
CREATE TABLE IF NOT EXISTS customers (
    id              TEXT PRIMARY KEY,   -- user id assigned by the client
    data            TEXT,               -- JSON payload, opaque to the store
    updated_at      DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS messages (
    id              TEXT PRIMARY KEY,   -- platform message id
    channel_id      TEXT,
    author_id       TEXT,
    content         TEXT,
    timestamp       TEXT,               -- origin event time, as sent
    raw             TEXT,               -- full original payload, JSON
    synced_at       DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""

UPSERT_CUSTOMER = """
    INSERT OR REPLACE INTO customers (id, data, updated_at)
    VALUES (?, ?, CURRENT_TIMESTAMP)
"""

UPSERT_MESSAGE = """
    INSERT OR REPLACE INTO messages
      (id, channel_id, author_id, content, timestamp, raw, synced_at)
    VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
"""


def _record_id(value, table: str, index):
    """Validate an externally assigned primary key."""
    if isinstance(value, bool) or value is None:
        raise BatchError(f"{table}: entry {index!r} has no id", table, index)
    if isinstance(value, int):
        return str(value)
    if not isinstance(value, str) or not value.strip():
        raise BatchError(f"{table}: entry {index!r} has an invalid id", table, index)
    return value


def _jd(val, table: str, index) -> str:
    """JSON-dump a payload for storage. Unserializable payloads reject the batch."""
    try:
        return json.dumps(val)
    except (TypeError, ValueError) as e:
        raise BatchError(f"{table}: entry {index!r} is not JSON-serializable: {e}",
                         table, index) from e


def _jl(val):
    """JSON-load a stored column value."""
    if val is None:
        return None
    try:
        return json.loads(val)
    except ValueError:
        log.warning("Stored value is not valid JSON, returning raw text")
        return val


def _message_row(m, index) -> tuple:
    """Pull the denormalized columns out of a message payload."""
    if not isinstance(m, dict):
        raise BatchError(f"messages: entry {index} is not an object", "messages", index)
    msg_id = _record_id(m.get("id"), "messages", index)
    author = m.get("author")
    author_id = author.get("id") if isinstance(author, dict) else None
    if author_id is None:
        author_id = m.get("authorId")
    ts = m.get("timestamp")
    if ts is not None and not isinstance(ts, str):
        ts = str(ts)
    content = m.get("content")
    if content is not None and not isinstance(content, str):
        content = json.dumps(content)
    channel_id = m.get("channel_id") or m.get("channelId")
    return (
        msg_id,
        str(channel_id) if channel_id is not None else None,
        str(author_id) if author_id is not None else None,
        content,
        ts,
        _jd(m, "messages", index),
    )


class RecordStore:
    """Owns customers.db: schema, batched upserts, reads and snapshots."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()

    def __repr__(self):
        return f"RecordStore({self.db_path!r})"

    # ── Connection factory ────────────────────────────────────────────────
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @contextmanager
    def get_db(self):
        """Serialized write connection. Commits on success, rolls back on any error."""
        with self._lock:
            conn = self._connect()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    @contextmanager
    def _read_db(self):
        # Readers don't take the write lock; WAL gives them the last commit.
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def open(self) -> "RecordStore":
        """Make sure the store file can be opened. Raises StoreOpenError if not."""
        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
            with self._read_db() as conn:
                conn.execute("SELECT 1").fetchone()
        except (OSError, sqlite3.Error) as e:
            raise StoreOpenError(f"cannot open database {self.db_path}: {e}") from e
        log.info("Database connection established: %s", self.db_path)
        return self

    def ensure_schema(self) -> bool:
        """Create both tables if they don't exist. Safe to call on every startup."""
        with self.get_db() as conn:
            conn.executescript(SCHEMA)
        log.info("DB schema ready at %s", self.db_path)
        return True

    # ── Writes ────────────────────────────────────────────────────────────
    def _write_customers(self, conn, entries) -> int:
        if not isinstance(entries, dict):
            raise BatchError("customers must be an object of id → payload", "customers")
        rows = [(_record_id(cid, "customers", cid), _jd(val, "customers", cid))
                for cid, val in entries.items()]
        conn.executemany(UPSERT_CUSTOMER, rows)
        return len(rows)

    def _write_messages(self, conn, entries) -> int:
        if not isinstance(entries, (list, tuple)):
            raise BatchError("messages must be an array", "messages")
        rows = [_message_row(m, i) for i, m in enumerate(entries)]
        conn.executemany(UPSERT_MESSAGE, rows)
        return len(rows)

    def upsert_customers(self, entries: dict) -> int:
        """INSERT OR REPLACE every entry in one transaction. Returns rows applied."""
        with self.get_db() as conn:
            return self._write_customers(conn, entries)

    def upsert_messages(self, entries: list) -> int:
        """Same all-or-nothing contract as upsert_customers, for message payloads."""
        with self.get_db() as conn:
            return self._write_messages(conn, entries)

    def batch_upsert(self, customers=None, messages=None) -> dict:
        """Customers then messages, in ONE transaction. Either part may be None."""
        counts = {"customers": 0, "messages": 0}
        with self.get_db() as conn:
            if customers:
                counts["customers"] = self._write_customers(conn, customers)
            if messages:
                counts["messages"] = self._write_messages(conn, messages)
        return counts

    # ── Reads ─────────────────────────────────────────────────────────────
    def read_all_customers(self) -> dict:
        with self._read_db() as conn:
            rows = conn.execute("SELECT id, data FROM customers").fetchall()
        return {row["id"]: _jl(row["data"]) for row in rows}

    def read_messages(self, channel_id: str = None, limit: int = 500) -> list:
        """Message rows newest-synced first, `raw` decoded back to the original payload."""
        with self._read_db() as conn:
            if channel_id:
                rows = conn.execute(
                    "SELECT * FROM messages WHERE channel_id=? "
                    "ORDER BY synced_at DESC, id DESC LIMIT ?",
                    (channel_id, limit)).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM messages ORDER BY synced_at DESC, id DESC LIMIT ?",
                    (limit,)).fetchall()
        result = []
        for row in rows:
            d = dict(row)
            d["raw"] = _jl(d["raw"])
            result.append(d)
        return result

    def count(self, table: str) -> int:
        if table not in TABLES:
            raise ValueError(f"unknown table: {table}")
        with self._read_db() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def get_db_stats(self) -> dict:
        """Row counts + file size, used by /stats and scripts/check_data.py."""
        stats = {"db_path": self.db_path, "db_size_kb": 0}
        try:
            stats["db_size_kb"] = round(os.path.getsize(self.db_path) / 1024, 1)
        except FileNotFoundError:
            pass
        for table in TABLES:
            try:
                stats[table] = self.count(table)
            except sqlite3.Error as e:
                log.warning("count(%s) failed: %s", table, e)
                stats[table] = 0
        return stats

    # ── Snapshot ──────────────────────────────────────────────────────────
    def snapshot_to(self, target_path: str) -> str:
        """Consistent copy of the whole store via the sqlite3 online backup API.

        Taken under the write lock, so no batch is half-applied in the copy.
        """
        if "'" in target_path or '"' in target_path:
            raise SnapshotError(f"refusing snapshot path with quote characters: {target_path}")
        with self._lock:
            if os.path.exists(target_path):
                raise SnapshotError(f"snapshot target already exists: {target_path}")
            src = self._connect()
            try:
                dst = sqlite3.connect(target_path)
                try:
                    src.backup(dst)
                finally:
                    dst.close()
            except sqlite3.Error as e:
                try:
                    os.remove(target_path)
                except OSError as rm_err:
                    log.warning("Could not remove partial snapshot %s: %s", target_path, rm_err)
                raise SnapshotError(f"snapshot to {target_path} failed: {e}") from e
            finally:
                src.close()
        return target_path
