"""Wire formats for the remote store.

Four JSON index files live at the namespace root, and one raw-text
content file per page lives under ``pages/``:

- ``folders.json``        ``{version, lastModified, folders: Folder[]}``
- ``deletedFolders.json`` ``{version, deleted: [{folderId, deletedAt}]}``
- ``pages.json``          ``{version, lastModified, pages: PageMetadata[]}``
- ``deletedPages.json``   ``{version, deleted: [{pageId, deletedAt}]}``
- ``pages/page-<id>.md``  raw UTF-8 page content, no envelope

Key design choices:

* **Strict versioning** -- every deserializer checks ``version`` and
  raises ``VersionMismatch`` for anything it does not recognise.  No
  forward-compatible guessing.
* **Whole snapshots** -- collections are written in full; merging lives
  in the orchestrator and ``merger`` module, not here.
* **Bytes in, bytes out** -- serializers return UTF-8 encoded JSON ready
  for ``RemoteStore.put_index()``; deserializers accept ``bytes`` or
  ``str``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Iterable

from charset_normalizer import from_bytes
from pydantic import ValidationError

from ppage_sync.errors import SerializationError, VersionMismatch

from .hasher import hash_many
from .models import Folder, Page, PageMetadata, Tombstone, now_ms

logger = logging.getLogger(__name__)

FORMAT_VERSION = "2.0"

FOLDERS_FILE = "folders.json"
DELETED_FOLDERS_FILE = "deletedFolders.json"
PAGES_FILE = "pages.json"
DELETED_PAGES_FILE = "deletedPages.json"

INDEX_FILES = (
    FOLDERS_FILE,
    DELETED_FOLDERS_FILE,
    PAGES_FILE,
    DELETED_PAGES_FILE,
)

_PAGE_FILE_PATTERN = re.compile(r"^page-(.+)\.md$")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _dump(document: dict) -> bytes:
    return json.dumps(document, indent=2, ensure_ascii=False).encode(
        "utf-8"
    )


def _load(data: bytes | str, file_name: str) -> dict:
    """Parse *data* and check the version tag."""
    try:
        document = json.loads(data)
    except (ValueError, UnicodeDecodeError) as exc:
        raise SerializationError(
            f"{file_name} is not valid JSON: {exc}"
        ) from exc
    if not isinstance(document, dict):
        raise SerializationError(
            f"{file_name} root must be an object, got "
            f"{type(document).__name__}"
        )
    version = document.get("version")
    if version != FORMAT_VERSION:
        raise VersionMismatch(file_name, version)
    return document


def _items(document: dict, key: str, file_name: str) -> list:
    items = document.get(key, [])
    if not isinstance(items, list):
        raise SerializationError(f"{file_name} '{key}' must be a list")
    return items


# ---------------------------------------------------------------------------
# folders.json
# ---------------------------------------------------------------------------


def serialize_folders(
    folders: Iterable[Folder], last_modified: int | None = None
) -> bytes:
    """Serialize a complete folder snapshot."""
    return _dump(
        {
            "version": FORMAT_VERSION,
            "lastModified": last_modified or now_ms(),
            "folders": [f.model_dump(by_alias=True) for f in folders],
        }
    )


def deserialize_folders(data: bytes | str) -> list[Folder]:
    """Parse ``folders.json``.

    Raises:
        VersionMismatch: If the version tag is not recognised.
        SerializationError: If the document is malformed.
    """
    document = _load(data, FOLDERS_FILE)
    try:
        return [
            Folder.model_validate(item)
            for item in _items(document, "folders", FOLDERS_FILE)
        ]
    except ValidationError as exc:
        raise SerializationError(
            f"{FOLDERS_FILE} has an invalid folder entry: {exc}"
        ) from exc


# ---------------------------------------------------------------------------
# pages.json
# ---------------------------------------------------------------------------


def page_metadata(page: Page, digest: str) -> PageMetadata:
    """Project *page* onto its remote index entry."""
    return PageMetadata(
        id=page.id,
        name=page.name,
        folder_id=page.folder_id,
        created_at=page.created_at,
        updated_at=page.updated_at,
        content_hash=digest,
        content_size=len(page.content.encode("utf-8")),
    )


def build_page_metadata(
    pages: Iterable[Page], max_workers: int = 8
) -> list[PageMetadata]:
    """Hash every page and return the metadata list in input order."""
    pages = list(pages)
    digests = hash_many(
        ((p.id, p.content) for p in pages), max_workers=max_workers
    )
    return [page_metadata(p, digests[p.id]) for p in pages]


def serialize_pages(
    metadata: Iterable[PageMetadata], last_modified: int | None = None
) -> bytes:
    """Serialize a complete page metadata snapshot."""
    return _dump(
        {
            "version": FORMAT_VERSION,
            "lastModified": last_modified or now_ms(),
            "pages": [m.model_dump(by_alias=True) for m in metadata],
        }
    )


def deserialize_pages(data: bytes | str) -> list[PageMetadata]:
    """Parse ``pages.json``.

    Raises:
        VersionMismatch: If the version tag is not recognised.
        SerializationError: If the document is malformed.
    """
    document = _load(data, PAGES_FILE)
    try:
        return [
            PageMetadata.model_validate(item)
            for item in _items(document, "pages", PAGES_FILE)
        ]
    except ValidationError as exc:
        raise SerializationError(
            f"{PAGES_FILE} has an invalid page entry: {exc}"
        ) from exc


# ---------------------------------------------------------------------------
# deletedFolders.json / deletedPages.json
# ---------------------------------------------------------------------------


def _serialize_tombstones(
    tombstones: Iterable[Tombstone], id_key: str
) -> bytes:
    return _dump(
        {
            "version": FORMAT_VERSION,
            "deleted": [
                {id_key: t.entity_id, "deletedAt": t.deleted_at}
                for t in tombstones
            ],
        }
    )


def _deserialize_tombstones(
    data: bytes | str, id_key: str, file_name: str
) -> list[Tombstone]:
    document = _load(data, file_name)
    tombstones: list[Tombstone] = []
    for item in _items(document, "deleted", file_name):
        try:
            tombstones.append(
                Tombstone(
                    entity_id=item[id_key], deleted_at=item["deletedAt"]
                )
            )
        except (KeyError, TypeError, ValidationError) as exc:
            raise SerializationError(
                f"{file_name} has an invalid entry {item!r}"
            ) from exc
    return tombstones


def serialize_deleted_folders(tombstones: Iterable[Tombstone]) -> bytes:
    return _serialize_tombstones(tombstones, "folderId")


def deserialize_deleted_folders(data: bytes | str) -> list[Tombstone]:
    return _deserialize_tombstones(data, "folderId", DELETED_FOLDERS_FILE)


def serialize_deleted_pages(tombstones: Iterable[Tombstone]) -> bytes:
    return _serialize_tombstones(tombstones, "pageId")


def deserialize_deleted_pages(data: bytes | str) -> list[Tombstone]:
    return _deserialize_tombstones(data, "pageId", DELETED_PAGES_FILE)


# ---------------------------------------------------------------------------
# Page content files
# ---------------------------------------------------------------------------


def encode_page_content(content: str) -> bytes:
    """Page content is stored verbatim as UTF-8."""
    return content.encode("utf-8")


def decode_page_content(data: bytes) -> str:
    """Decode a content file.

    Files written by this package are UTF-8.  Anything else was placed by
    hand; decode it with the best detected encoding and log a warning.
    """
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        best = from_bytes(data).best()
        if best is None:
            raise SerializationError(
                "page content is neither UTF-8 nor a detectable encoding"
            ) from None
        logger.warning(
            "Page content is not UTF-8, decoded as %s", best.encoding
        )
        return str(best)


def page_file_name(page_id: str) -> str:
    """Return the content file name for *page_id*."""
    return f"page-{page_id}.md"


def parse_page_file_name(file_name: str) -> str | None:
    """Return the page id encoded in *file_name*, or ``None``."""
    match = _PAGE_FILE_PATTERN.match(file_name)
    return match.group(1) if match else None
