"""
custsync/core/migration.py — Legacy JSON → SQLite import

The collector used to keep every customer in one customers.json object
({user_id: card}). On startup that file is lifted into the customers table
in a single transaction. The file itself is left exactly where it is, as a
safety net; re-running the import just replaces rows with identical data.
"""

import os
import json
import logging

log = logging.getLogger("custsync.migration")


def _load_json_object(path: str) -> dict:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object at top level, got {type(data).__name__}")
    return data


def migrate_legacy_json(store, legacy_path: str) -> dict:
    """One-shot, idempotent import of the legacy flat file. Never raises.

    Returns {"migrated": int, "skipped": bool, "error": str | None}.
    """
    result = {"migrated": 0, "skipped": False, "error": None}
    if not os.path.exists(legacy_path):
        log.info("No legacy store at %s, nothing to migrate", legacy_path)
        result["skipped"] = True
        return result

    log.info("Migrating legacy JSON data to SQLite from %s...", legacy_path)
    try:
        data = _load_json_object(legacy_path)
        result["migrated"] = store.upsert_customers(data)
    except Exception as e:
        # startup carries on with whatever is already in the store
        log.error("Migration failed: %s", e)
        result["error"] = str(e)
        return result

    log.info("Migration complete (%d entries)", result["migrated"])
    return result


def import_backup_file(store, path: str) -> int:
    """Import a file backup (or any {id: payload} dump) into the store.

    Accepts both the bare mapping written by FileBackupScheduler and the
    wrapped {"customers": {...}} form. One transaction; raises on failure.
    """
    data = _load_json_object(path)
    customers = data.get("customers", data)
    if not isinstance(customers, dict):
        raise ValueError("'customers' must be an object of id → payload")
    count = store.upsert_customers(customers)
    log.info("Imported %d customers from %s", count, path)
    return count
