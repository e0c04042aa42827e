#!/usr/bin/env python3
"""
scripts/import_backup.py — Load a customers_<ts>.json file backup into the store

Manual recovery path for when customers.db was lost but a file backup
survived. Rows are upserted in one transaction; existing ids are replaced.

Usage:
    python3 scripts/import_backup.py backups/customers_2026-01-24T14-00-03-123Z.json
    python3 scripts/import_backup.py backup.json path/to/customers.db
"""

import os
import sys

from custsync.core.db import RecordStore
from custsync.core.migration import import_backup_file
from custsync.core.paths import resolve_paths


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print(__doc__.strip(), file=sys.stderr)
        return 2
    backup_path = argv[0]
    db_path = argv[1] if len(argv) > 1 else resolve_paths()["db_path"]

    print(f"Starting import from: {backup_path}")
    print(f"Targeting database: {db_path}")
    if not os.path.exists(backup_path):
        print("Backup file not found!", file=sys.stderr)
        return 1

    store = RecordStore(db_path)
    try:
        store.open()
        store.ensure_schema()
        count = import_backup_file(store, backup_path)
    except Exception as e:
        print(f"Import failed: {e}", file=sys.stderr)
        return 1

    print(f"Successfully imported {count} customers.")
    print(f"Total customers in DB now: {store.count('customers')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
