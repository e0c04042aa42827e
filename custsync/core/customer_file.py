"""
custsync/core/customer_file.py — Flat-file customer map

The pre-SQLite storage: one pretty-printed customers.json holding
{user_id: card}. Still read by the file backup path and by the one-shot
migration; no transactional protection, last writer wins.
"""

import os
import json
import logging

log = logging.getLogger("custsync.customer_file")


class CustomerFileStore:

    def __init__(self, storage_path: str):
        self.storage_path = storage_path

    def read_customers(self):
        """Return the stored mapping, or None when the file is absent or unreadable."""
        if not os.path.exists(self.storage_path):
            return None
        try:
            with open(self.storage_path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            log.error("Failed to read customers from %s: %s", self.storage_path, e)
            return None

    def write_customers(self, data) -> bool:
        try:
            os.makedirs(os.path.dirname(self.storage_path), exist_ok=True)
            with open(self.storage_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            return True
        except (OSError, TypeError, ValueError) as e:
            log.error("Failed to write customers to %s: %s", self.storage_path, e)
            return False
