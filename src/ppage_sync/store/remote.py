"""Remote store adapters.

The remote store is a shared, durable relay of named blobs inside one
application namespace.  Index files sit at the namespace root and page
content files sit in the ``pages/`` sub-namespace.

``RemoteStore`` implements the adapter contract used by the orchestrator
on top of four transport primitives (``_get_blob``, ``_put_blob``,
``_delete_blob``, ``_list_blobs``) that concrete transports provide.

Rules every adapter follows:

* Side effects stay inside the namespace.
* Transport failures surface as ``RemoteUnavailable``; nothing is
  retried here.
* Writes are create-or-replace and therefore idempotent; deleting an
  absent blob is not an error.
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from ppage_sync.errors import RemoteUnavailable
from ppage_sync.sync.serializer import (
    INDEX_FILES,
    decode_page_content,
    encode_page_content,
    page_file_name,
    parse_page_file_name,
)

logger = logging.getLogger(__name__)

PAGES_PREFIX = "pages/"
INDEX_CONTENT_TYPE = "application/json"
PAGE_CONTENT_TYPE = "text/markdown"


def validate_blob_name(name: str) -> tuple[bool, str]:
    """Validate an index name or page id used to build a blob path.

    Returns:
        Tuple of ``(is_valid, error_message)``.
    """
    if not name or not name.strip():
        return False, "Blob name cannot be empty"
    if ".." in name:
        return False, "Blob name cannot contain '..'"
    if "/" in name or "\\" in name:
        return False, "Blob name cannot contain path separators"
    return True, ""


def _checked(name: str) -> str:
    is_valid, message = validate_blob_name(name)
    if not is_valid:
        raise ValueError(f"{message}: {name!r}")
    return name


class RemoteStore(ABC):
    """Adapter contract over a named-blob transport."""

    def initialize(self) -> None:
        """Make sure the namespace exists.  Safe to call repeatedly."""

    # ------------------------------------------------------------------
    # Transport primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def _get_blob(self, path: str) -> bytes | None:
        """Return blob bytes or ``None`` if absent."""

    @abstractmethod
    def _put_blob(self, path: str, data: bytes, content_type: str) -> None:
        """Create or replace a blob."""

    @abstractmethod
    def _delete_blob(self, path: str) -> None:
        """Delete a blob; absent is not an error."""

    @abstractmethod
    def _list_blobs(self, prefix: str) -> list[str]:
        """Return blob names directly under *prefix* (prefix stripped)."""

    # ------------------------------------------------------------------
    # Index files
    # ------------------------------------------------------------------

    def get_index(self, name: str) -> bytes | None:
        return self._get_blob(_checked(name))

    def put_index(self, name: str, data: bytes) -> None:
        self._put_blob(_checked(name), data, INDEX_CONTENT_TYPE)

    # ------------------------------------------------------------------
    # Page content files
    # ------------------------------------------------------------------

    def get_page_content(self, page_id: str) -> str | None:
        data = self._get_blob(self._page_path(page_id))
        if data is None:
            return None
        return decode_page_content(data)

    def put_page_content(self, page_id: str, content: str) -> None:
        self._put_blob(
            self._page_path(page_id),
            encode_page_content(content),
            PAGE_CONTENT_TYPE,
        )

    def delete_page_content(self, page_id: str) -> None:
        self._delete_blob(self._page_path(page_id))

    def list_page_content_ids(self) -> set[str]:
        ids = set()
        for name in self._list_blobs(PAGES_PREFIX):
            page_id = parse_page_file_name(name)
            if page_id:
                ids.add(page_id)
            else:
                logger.debug("Ignoring foreign blob %s%s", PAGES_PREFIX, name)
        return ids

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def clear_namespace(self) -> None:
        """Delete every index and page content file.  Destructive."""
        for name in INDEX_FILES:
            self._delete_blob(name)
        for name in self._list_blobs(PAGES_PREFIX):
            self._delete_blob(PAGES_PREFIX + name)
        logger.info("Cleared remote namespace")

    @staticmethod
    def _page_path(page_id: str) -> str:
        return PAGES_PREFIX + page_file_name(_checked(page_id))


class MemoryRemoteStore(RemoteStore):
    """In-process remote store.

    Two ``SyncOrchestrator`` instances sharing one ``MemoryRemoteStore``
    behave like two devices sharing a remote namespace.

    Attributes:
        blobs: Path -> bytes.
        writes: Log of ``("put"|"delete", path)`` for every mutation.
        available: When ``False`` every operation raises
            ``RemoteUnavailable``.
    """

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.writes: list[tuple[str, str]] = []
        self.available = True

    def _check(self, operation: str) -> None:
        if not self.available:
            raise RemoteUnavailable(operation, "store offline")

    def _get_blob(self, path: str) -> bytes | None:
        self._check(f"get {path}")
        return self.blobs.get(path)

    def _put_blob(self, path: str, data: bytes, content_type: str) -> None:
        self._check(f"put {path}")
        self.blobs[path] = data
        self.writes.append(("put", path))

    def _delete_blob(self, path: str) -> None:
        self._check(f"delete {path}")
        if self.blobs.pop(path, None) is not None:
            self.writes.append(("delete", path))

    def _list_blobs(self, prefix: str) -> list[str]:
        self._check(f"list {prefix or '/'}")
        names = []
        for path in self.blobs:
            if not path.startswith(prefix):
                continue
            rest = path[len(prefix):]
            if rest and "/" not in rest:
                names.append(rest)
        return sorted(names)


class DirectoryRemoteStore(RemoteStore):
    """Remote store backed by a directory (e.g. a mounted share).

    Layout: ``<root>/<namespace>/*.json`` and
    ``<root>/<namespace>/pages/page-<id>.md``.  Writes go through a temp
    file and ``os.replace`` so other clients never read partial blobs.
    """

    def __init__(self, root: Path, namespace: str = "ppage-app") -> None:
        self.root = Path(root)
        self.namespace = namespace
        self.base = self.root / namespace

    def initialize(self) -> None:
        try:
            (self.base / PAGES_PREFIX).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RemoteUnavailable("initialize", str(exc)) from exc

    def _get_blob(self, path: str) -> bytes | None:
        target = self.base / path
        try:
            return target.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise RemoteUnavailable(f"get {path}", str(exc)) from exc

    def _put_blob(self, path: str, data: bytes, content_type: str) -> None:
        target = self.base / path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(target.parent), suffix=".tmp"
            )
        except OSError as exc:
            raise RemoteUnavailable(f"put {path}", str(exc)) from exc
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, target)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise RemoteUnavailable(f"put {path}", str(exc)) from exc

    def _delete_blob(self, path: str) -> None:
        try:
            (self.base / path).unlink(missing_ok=True)
        except OSError as exc:
            raise RemoteUnavailable(f"delete {path}", str(exc)) from exc

    def _list_blobs(self, prefix: str) -> list[str]:
        directory = self.base / prefix
        try:
            if not directory.is_dir():
                return []
            return sorted(
                entry.name
                for entry in directory.iterdir()
                if entry.is_file() and not entry.name.endswith(".tmp")
            )
        except OSError as exc:
            raise RemoteUnavailable(
                f"list {prefix or '/'}", str(exc)
            ) from exc
