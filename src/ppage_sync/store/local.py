"""Local store: the replica owned by this client.

``LocalStore`` is the seam between the orchestrator and whatever embedded
database the application uses.  Implementations supply simple CRUD over
four collections -- folders, pages, deleted folders and deleted pages --
and inherit the derived operations (user deletes that emit tombstones,
lookups by parent/folder).

Two implementations are provided:

* ``MemoryLocalStore`` -- dicts; ``tombstones_enabled=False`` simulates a
  store whose schema predates deletion tracking.
* ``JsonFileLocalStore`` -- the whole store in one JSON document,
  rewritten atomically after every mutation.

"Silent" deletes remove a row without recording a tombstone; the
orchestrator uses them when applying a deletion that already exists
remotely.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from ppage_sync.errors import LocalStoreError, LocalStoreUnready
from ppage_sync.sync.models import Folder, Page, Tombstone, now_ms

logger = logging.getLogger(__name__)

DELETED_FOLDERS = "deletedFolders"
DELETED_PAGES = "deletedPages"


class LocalStore(ABC):
    """Abstract local replica."""

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    @abstractmethod
    def get_folder(self, folder_id: str) -> Folder | None: ...

    @abstractmethod
    def list_folders(self) -> list[Folder]: ...

    @abstractmethod
    def put_folder(self, folder: Folder) -> None:
        """Create or replace *folder*."""

    @abstractmethod
    def silent_delete_folder(self, folder_id: str) -> None:
        """Remove the row without recording a tombstone."""

    def list_folders_by_parent(self, parent_id: str | None) -> list[Folder]:
        return [f for f in self.list_folders() if f.parent_id == parent_id]

    def delete_folder(
        self, folder_id: str, deleted_at: int | None = None
    ) -> None:
        """User delete: record a tombstone, then remove the row.

        Raises:
            LocalStoreUnready: If deletions cannot be tracked; the row is
                left in place so it is not resurrected by the next sync.
        """
        self.add_deleted_folder(folder_id, deleted_at or now_ms())
        self.silent_delete_folder(folder_id)

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    @abstractmethod
    def get_page(self, page_id: str) -> Page | None: ...

    @abstractmethod
    def list_pages(self) -> list[Page]: ...

    @abstractmethod
    def put_page(self, page: Page) -> None:
        """Create or replace *page*."""

    @abstractmethod
    def silent_delete_page(self, page_id: str) -> None:
        """Remove the row without recording a tombstone."""

    def list_pages_by_folder(self, folder_id: str) -> list[Page]:
        return [p for p in self.list_pages() if p.folder_id == folder_id]

    def delete_page(
        self, page_id: str, deleted_at: int | None = None
    ) -> None:
        """User delete: record a tombstone, then remove the row."""
        self.add_deleted_page(page_id, deleted_at or now_ms())
        self.silent_delete_page(page_id)

    def delete_pages_by_folder(
        self, folder_id: str, deleted_at: int | None = None
    ) -> int:
        """User delete of every page in *folder_id*.  Returns the count."""
        pages = self.list_pages_by_folder(folder_id)
        for page in pages:
            self.delete_page(page.id, deleted_at)
        return len(pages)

    # ------------------------------------------------------------------
    # Tombstones
    # ------------------------------------------------------------------

    @abstractmethod
    def list_deleted_folders(self) -> list[Tombstone]:
        """Raises ``LocalStoreUnready`` if the collection is absent."""

    @abstractmethod
    def list_deleted_pages(self) -> list[Tombstone]:
        """Raises ``LocalStoreUnready`` if the collection is absent."""

    @abstractmethod
    def add_deleted_folder(self, folder_id: str, deleted_at: int) -> None:
        """Record (or overwrite) the tombstone for *folder_id*."""

    @abstractmethod
    def add_deleted_page(self, page_id: str, deleted_at: int) -> None:
        """Record (or overwrite) the tombstone for *page_id*."""

    @abstractmethod
    def clear_deleted_folders(self) -> None: ...

    @abstractmethod
    def clear_deleted_pages(self) -> None: ...


class MemoryLocalStore(LocalStore):
    """Dict-backed local store.

    Args:
        tombstones_enabled: ``False`` makes every tombstone operation
            raise ``LocalStoreUnready``, like an un-upgraded schema.
    """

    def __init__(self, tombstones_enabled: bool = True) -> None:
        self._folders: dict[str, Folder] = {}
        self._pages: dict[str, Page] = {}
        self._deleted_folders: dict[str, int] | None = (
            {} if tombstones_enabled else None
        )
        self._deleted_pages: dict[str, int] | None = (
            {} if tombstones_enabled else None
        )

    def get_folder(self, folder_id: str) -> Folder | None:
        return self._folders.get(folder_id)

    def list_folders(self) -> list[Folder]:
        return list(self._folders.values())

    def put_folder(self, folder: Folder) -> None:
        self._folders[folder.id] = folder
        self._changed()

    def silent_delete_folder(self, folder_id: str) -> None:
        if self._folders.pop(folder_id, None) is not None:
            self._changed()

    def get_page(self, page_id: str) -> Page | None:
        return self._pages.get(page_id)

    def list_pages(self) -> list[Page]:
        return list(self._pages.values())

    def put_page(self, page: Page) -> None:
        self._pages[page.id] = page
        self._changed()

    def silent_delete_page(self, page_id: str) -> None:
        if self._pages.pop(page_id, None) is not None:
            self._changed()

    def list_deleted_folders(self) -> list[Tombstone]:
        return self._as_tombstones(
            self._collection(self._deleted_folders, DELETED_FOLDERS)
        )

    def list_deleted_pages(self) -> list[Tombstone]:
        return self._as_tombstones(
            self._collection(self._deleted_pages, DELETED_PAGES)
        )

    def add_deleted_folder(self, folder_id: str, deleted_at: int) -> None:
        self._collection(self._deleted_folders, DELETED_FOLDERS)[
            folder_id
        ] = deleted_at
        self._changed()

    def add_deleted_page(self, page_id: str, deleted_at: int) -> None:
        self._collection(self._deleted_pages, DELETED_PAGES)[
            page_id
        ] = deleted_at
        self._changed()

    def clear_deleted_folders(self) -> None:
        self._collection(self._deleted_folders, DELETED_FOLDERS).clear()
        self._changed()

    def clear_deleted_pages(self) -> None:
        self._collection(self._deleted_pages, DELETED_PAGES).clear()
        self._changed()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _collection(
        collection: dict[str, int] | None, name: str
    ) -> dict[str, int]:
        if collection is None:
            raise LocalStoreUnready(name)
        return collection

    @staticmethod
    def _as_tombstones(collection: dict[str, int]) -> list[Tombstone]:
        return [
            Tombstone(entity_id=entity_id, deleted_at=deleted_at)
            for entity_id, deleted_at in collection.items()
        ]

    def _changed(self) -> None:
        """Hook called after every mutation."""


class JsonFileLocalStore(MemoryLocalStore):
    """Local store persisted as a single JSON document.

    Schema version 1 documents have no tombstone collections; tombstone
    operations raise ``LocalStoreUnready`` until ``upgrade()`` is called.

    Args:
        path: Location of the JSON document.  Created on first write.
    """

    SCHEMA_VERSION = 2

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._load()

    def upgrade(self) -> None:
        """Add missing tombstone collections and bump the schema."""
        if self._deleted_folders is None:
            self._deleted_folders = {}
        if self._deleted_pages is None:
            self._deleted_pages = {}
        self._changed()
        logger.info(
            "Local store %s upgraded to schema %d",
            self.path,
            self.SCHEMA_VERSION,
        )

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as fh:
                document = json.load(fh)
            self._folders = {
                item["id"]: Folder.model_validate(item)
                for item in document.get("folders", [])
            }
            self._pages = {
                item["id"]: Page.model_validate(item)
                for item in document.get("pages", [])
            }
            self._deleted_folders = self._load_tombstones(
                document, DELETED_FOLDERS, "folderId"
            )
            self._deleted_pages = self._load_tombstones(
                document, DELETED_PAGES, "pageId"
            )
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise LocalStoreError(
                f"Cannot read local store {self.path}: {exc}"
            ) from exc

    @staticmethod
    def _load_tombstones(
        document: dict, key: str, id_key: str
    ) -> dict[str, int] | None:
        if key not in document:
            return None
        return {item[id_key]: item["deletedAt"] for item in document[key]}

    def _changed(self) -> None:
        document: dict = {
            "version": (
                self.SCHEMA_VERSION
                if self._deleted_folders is not None
                and self._deleted_pages is not None
                else 1
            ),
            "folders": [
                f.model_dump(by_alias=True) for f in self._folders.values()
            ],
            "pages": [
                p.model_dump(by_alias=True) for p in self._pages.values()
            ],
        }
        if self._deleted_folders is not None:
            document[DELETED_FOLDERS] = [
                {"folderId": k, "deletedAt": v}
                for k, v in self._deleted_folders.items()
            ]
        if self._deleted_pages is not None:
            document[DELETED_PAGES] = [
                {"pageId": k, "deletedAt": v}
                for k, v in self._deleted_pages.items()
            ]
        self._write(document)

    def _write(self, document: dict) -> None:
        """Write *document* atomically via temp file + ``os.replace``."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
