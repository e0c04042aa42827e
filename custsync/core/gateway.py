"""
custsync/core/gateway.py — Ingest/query contract for the client collector

Everything the HTTP shim can do goes through here. Writes are serialized
by RecordStore's lock; reads run alongside them.
"""

import logging

from .errors import BatchError

log = logging.getLogger("custsync.gateway")


class SyncGateway:

    def __init__(self, store, snapshots):
        self.store = store
        self.snapshots = snapshots

    def batch_upsert(self, customers=None, messages=None) -> dict:
        """Primary sync path: customers then messages, one transaction.

        Either part may be omitted. Raises BatchError (store unchanged) if
        any entry is rejected.
        """
        if customers is not None and not isinstance(customers, dict):
            raise BatchError("'customers' must be an object of id → payload", "customers")
        if messages is not None and not isinstance(messages, list):
            raise BatchError("'messages' must be an array", "messages")

        counts = self.store.batch_upsert(customers=customers, messages=messages)
        log.info("Batch Synced: %d customers, %d messages",
                 counts["customers"], counts["messages"])
        return counts

    def replace_all_customers(self, entries) -> int:
        """Older clients POST the whole customer map to /customers."""
        if not isinstance(entries, dict):
            raise BatchError("body must be an object of id → payload", "customers")
        count = self.store.upsert_customers(entries)
        log.info("Customers saved (legacy path): %d", count)
        return count

    def list_customers(self) -> dict:
        return self.store.read_all_customers()

    def health_check(self) -> dict:
        return {"status": "ok", "storageLocation": self.store.db_path}

    def stats(self) -> dict:
        s = self.store.get_db_stats()
        return {
            "dbPath": s["db_path"],
            "customerCount": s.get("customers", 0),
            "messageCount": s.get("messages", 0),
        }

    def trigger_snapshot_backup(self) -> dict:
        return self.snapshots.trigger()
