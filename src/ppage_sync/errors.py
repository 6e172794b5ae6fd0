"""Typed exception hierarchy for ppage-sync.

All exceptions inherit from ``PPageSyncError`` so callers can catch any
application-level failure with a single clause.  The orchestrator treats
the classes differently:

* ``RemoteUnavailable`` and ``VersionMismatch`` abort the whole run.
* ``LocalStoreUnready`` degrades gracefully (tombstone stages are skipped).
* ``SyncInProgress`` is raised straight out of ``run()``; it is never
  folded into a ``SyncResult``.
"""

from __future__ import annotations


class PPageSyncError(Exception):
    """Base exception for all ppage-sync errors."""


class SyncInProgress(PPageSyncError):
    """Raised when a sync is requested while another one is running."""

    def __init__(self, message: str = "Sync already in progress"):
        super().__init__(message)


class RemoteUnavailable(PPageSyncError):
    """Raised when the remote blob store cannot be reached.

    Covers network failures, authentication/authorisation errors and
    quota rejections.  Adapters never retry; the caller decides.
    """

    def __init__(self, operation: str, detail: str = ""):
        message = f"Remote store unavailable during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation
        self.detail = detail


class SerializationError(PPageSyncError):
    """Raised when a wire document cannot be decoded."""


class VersionMismatch(SerializationError):
    """Raised when an index file carries an unrecognised format version."""

    def __init__(self, file_name: str, found: object):
        super().__init__(
            f"Unsupported {file_name} version: {found!r}"
        )
        self.file_name = file_name
        self.found = found


class LocalStoreError(PPageSyncError):
    """Raised for local store failures that are not schema related."""


class LocalStoreUnready(LocalStoreError):
    """Raised when a local tombstone collection does not exist yet.

    This happens on a local store whose schema was never upgraded to
    track deletions.
    """

    def __init__(self, collection: str):
        super().__init__(
            f"Local collection '{collection}' is not available "
            "(store schema not upgraded)"
        )
        self.collection = collection
