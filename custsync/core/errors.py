"""
custsync/core/errors.py — Exception taxonomy for the sync server.

  StoreOpenError  — fatal, the store file cannot be opened
  BatchError      — one upsert batch rejected, store left unchanged
  SnapshotError   — snapshot target invalid or copy failed
"""


class SyncError(Exception):
    """Base class for all custsync errors."""


class StoreOpenError(SyncError):
    pass


class BatchError(SyncError):
    """An upsert batch was rejected as a whole.

    `table` names the table being written, `index` the offending entry
    (position in a message list, or the customer id) when known.
    """

    def __init__(self, message: str, table: str = "", index=None):
        super().__init__(message)
        self.table = table
        self.index = index


class SnapshotError(SyncError):
    pass
