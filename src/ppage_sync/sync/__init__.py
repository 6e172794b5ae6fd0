"""Replica reconciliation engine.

Synchronises a local folder/page store with a remote blob namespace
shared by several replicas.

Architecture
------------
Each run is a fixed sequence of five stages (folders, folder
tombstones, page metadata, page tombstones, page content).  Metadata
merges are last-writer-wins on ``updated_at``; deletions are durable
tombstones that always beat edits.  Concurrent content edits are told
apart from one-sided edits with a per-replica archive of the content
hash last agreed on, and are resolved by keeping the local version as a
conflict copy.

Modules:

- ``engine``     -- ``SyncOrchestrator``: runs a sync or a bulk operation.
- ``state``      -- ``SyncState``: the per-replica content hash archive.
- ``models``     -- ``Folder``, ``Page``, ``PageMetadata``, ``Tombstone``,
  ``SyncResult``, ``BulkResult``, ``SyncStatus``.
- ``serializer`` -- version "2.0" index files and page content files.
- ``hasher``     -- SHA-256 content digests with an untrusted fallback.
- ``merger``     -- timestamp diffs and tombstone unions.
- ``tree``       -- folder tree walks and recursive deletes.

Usage example
-------------
::

    from ppage_sync.store import MemoryLocalStore, MemoryRemoteStore
    from ppage_sync.sync import SyncOrchestrator

    orchestrator = SyncOrchestrator(MemoryLocalStore(), MemoryRemoteStore())
    result = orchestrator.run()
    print(result.summary())
"""

from .engine import SyncOrchestrator
from .models import (
    BulkResult,
    Folder,
    Page,
    PageMetadata,
    SyncResult,
    SyncStatus,
    Tombstone,
)
from .state import SyncState

__all__ = [
    "BulkResult",
    "Folder",
    "Page",
    "PageMetadata",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "Tombstone",
]
