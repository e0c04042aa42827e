#!/usr/bin/env python3
"""
scripts/check_data.py — Print row counts for the customer store

Usage:
    python3 scripts/check_data.py              # store resolved from CUSTSYNC_DATA_DIR
    python3 scripts/check_data.py path/to.db   # explicit store file

Exit codes:
    0 = counts printed
    1 = store missing or unreadable
"""

import json
import os
import sys

from custsync.core.db import RecordStore
from custsync.core.paths import resolve_paths


def check(db_path: str) -> dict:
    stats = RecordStore(db_path).get_db_stats()
    return {
        "dbPath": db_path,
        "customerCount": stats.get("customers", 0),
        "messageCount": stats.get("messages", 0),
    }


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    db_path = argv[0] if argv else resolve_paths()["db_path"]
    if not os.path.exists(db_path):
        print(f"Error checking database: {db_path} not found", file=sys.stderr)
        return 1
    print(json.dumps(check(db_path), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
