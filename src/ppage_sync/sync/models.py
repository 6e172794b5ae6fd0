"""Pydantic models for the reconciliation engine.

Defines the core data contracts used across all sync modules:

- ``Folder`` / ``Page``: rows owned by the local store.
- ``PageMetadata``: remote-side projection of a page (no content).
- ``Tombstone``: durable deletion marker for a folder or page.
- ``SyncStatus``: orchestrator lifecycle states.
- ``SyncResult``: counters and errors for one sync run.
- ``BulkResult``: outcome of a force-push / force-pull.

Entity models are frozen.  Python attributes are snake_case; the wire
format is camelCase, so every field carries an alias and models accept
either spelling on input.  All timestamps are integer milliseconds since
the Unix epoch.
"""

from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel, Field, NonNegativeInt


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Folder(BaseModel):
    """A folder row.  ``parent_id=None`` marks a root."""

    id: str
    name: str
    parent_id: str | None = Field(default=None, alias="parentId")
    order: int = 0
    created_at: int = Field(alias="createdAt")
    updated_at: int = Field(alias="updatedAt")

    model_config = {"frozen": True, "populate_by_name": True}


class Page(BaseModel):
    """A page row; ``content`` is the sync-relevant payload."""

    id: str
    folder_id: str = Field(alias="folderId")
    name: str
    content: str = ""
    created_at: int = Field(alias="createdAt")
    updated_at: int = Field(alias="updatedAt")

    model_config = {"frozen": True, "populate_by_name": True}


class PageMetadata(BaseModel):
    """Index entry for a page stored remotely.

    Attributes:
        content_hash: Digest of the page content at upload time.
        content_size: Size of the UTF-8 encoded content in bytes.
    """

    id: str
    name: str
    folder_id: str = Field(alias="folderId")
    created_at: int = Field(alias="createdAt")
    updated_at: int = Field(alias="updatedAt")
    content_hash: str = Field(alias="contentHash")
    content_size: NonNegativeInt = Field(default=0, alias="contentSize")

    model_config = {"frozen": True, "populate_by_name": True}


class Tombstone(BaseModel):
    """Deletion marker.  One per entity id; later deletes overwrite."""

    entity_id: str
    deleted_at: int

    model_config = {"frozen": True}


class SyncStatus(str, Enum):
    """Lifecycle of a sync orchestrator."""

    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncResult(BaseModel):
    """Counters and errors collected during one sync run.

    The orchestrator mutates the counters as stages progress, so unlike
    the entity models this one is not frozen.  ``errors`` is empty if and
    only if ``success`` is true.
    """

    success: bool = False
    folders_uploaded: NonNegativeInt = 0
    folders_downloaded: NonNegativeInt = 0
    folders_deleted: NonNegativeInt = 0
    pages_uploaded: NonNegativeInt = 0
    pages_downloaded: NonNegativeInt = 0
    pages_deleted: NonNegativeInt = 0
    conflicts: NonNegativeInt = 0
    errors: list[str] = []

    model_config = {"validate_assignment": True}

    @property
    def changed(self) -> bool:
        """True when the run moved anything in either direction."""
        return any(
            (
                self.folders_uploaded,
                self.folders_downloaded,
                self.folders_deleted,
                self.pages_uploaded,
                self.pages_downloaded,
                self.pages_deleted,
                self.conflicts,
            )
        )

    def to_wire(self) -> dict:
        """Return the camelCase dict handed to application callers."""
        return {
            "success": self.success,
            "foldersUploaded": self.folders_uploaded,
            "foldersDownloaded": self.folders_downloaded,
            "foldersDeleted": self.folders_deleted,
            "pagesUploaded": self.pages_uploaded,
            "pagesDownloaded": self.pages_downloaded,
            "pagesDeleted": self.pages_deleted,
            "conflicts": self.conflicts,
            "errors": list(self.errors),
        }

    def summary(self) -> str:
        """Format a human-readable summary of the sync run.

        Returns:
            Multi-line summary string with counts by direction.
        """
        lines = [
            "Sync " + ("succeeded" if self.success else "failed"),
            f"  Folders uploaded:   {self.folders_uploaded}",
            f"  Folders downloaded: {self.folders_downloaded}",
            f"  Folders deleted:    {self.folders_deleted}",
            f"  Pages uploaded:     {self.pages_uploaded}",
            f"  Pages downloaded:   {self.pages_downloaded}",
            f"  Pages deleted:      {self.pages_deleted}",
            f"  Conflicts:          {self.conflicts}",
            f"  Errors:             {len(self.errors)}",
        ]
        lines.extend(f"    - {err}" for err in self.errors)
        return "\n".join(lines)


class BulkResult(BaseModel):
    """Outcome of a force-push or force-pull."""

    success: bool
    errors: list[str] = []

    model_config = {"frozen": True}
