"""Folder tree helpers.

Folders form a forest via ``parent_id``.  Rather than filtering the flat
folder list on every recursive call, callers build a parent -> children
index once with ``build_children_index()`` and walk that.  Every walk is
iterative and tracks visited ids, so a corrupt (cyclic) relation coming
from a remote replica cannot hang a sync.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Iterable

from .models import Folder, Page

if TYPE_CHECKING:
    from ppage_sync.store.local import LocalStore

logger = logging.getLogger(__name__)

_MAX_NAME_LENGTH = 50


def build_children_index(
    folders: Iterable[Folder],
) -> dict[str | None, list[Folder]]:
    """Map each parent id (``None`` for roots) to its sorted children."""
    index: dict[str | None, list[Folder]] = defaultdict(list)
    for folder in folders:
        index[folder.parent_id].append(folder)
    for children in index.values():
        children.sort(key=lambda f: (f.order, f.name))
    return dict(index)


def collect_subfolder_ids(
    folder_id: str, index: dict[str | None, list[Folder]]
) -> list[str]:
    """Return *folder_id* and every descendant id, parents first."""
    result: list[str] = []
    seen: set[str] = set()
    stack = [folder_id]
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        result.append(current)
        children = index.get(current, [])
        stack.extend(reversed([c.id for c in children]))
    return result


def find_root_folder(
    folder_id: str, folders_by_id: dict[str, Folder]
) -> Folder | None:
    """Walk up from *folder_id* to its root.

    If a parent is missing the last folder found is returned.  ``None``
    if *folder_id* itself is unknown.
    """
    current = folders_by_id.get(folder_id)
    if current is None:
        return None
    seen = {current.id}
    while current.parent_id is not None:
        parent = folders_by_id.get(current.parent_id)
        if parent is None or parent.id in seen:
            break
        seen.add(parent.id)
        current = parent
    return current


def find_orphan_pages(
    folders: Iterable[Folder], pages: Iterable[Page]
) -> list[Page]:
    """Return pages whose ``folder_id`` names no existing folder."""
    folder_ids = {f.id for f in folders}
    return [p for p in pages if p.folder_id not in folder_ids]


def default_folder_id(folders: Iterable[Folder]) -> str | None:
    """First root folder, else first folder, else ``None``."""
    folders = list(folders)
    for folder in folders:
        if folder.parent_id is None:
            return folder.id
    return folders[0].id if folders else None


def guess_page_name(content: str) -> str:
    """Derive a display name from page content.

    Uses the first ``# `` heading, else the first non-empty line that is
    not a heading (truncated), else ``"Untitled"``.
    """
    for line in content.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("# "):
            return stripped[2:].strip() or "Untitled"
        if not stripped.startswith("#"):
            return stripped[:_MAX_NAME_LENGTH]
    return "Untitled"


def delete_folder_recursive(
    store: LocalStore, folder_id: str, deleted_at: int | None = None
) -> list[str]:
    """Delete a folder, its subfolders and their pages (user delete).

    Every removed folder and page gets a tombstone so the deletion
    propagates on the next sync.

    Returns:
        Ids of the deleted folders, parents first.
    """
    index = build_children_index(store.list_folders())
    folder_ids = collect_subfolder_ids(folder_id, index)
    for current in reversed(folder_ids):
        for page in store.list_pages_by_folder(current):
            store.delete_page(page.id, deleted_at)
        store.delete_folder(current, deleted_at)
    logger.info(
        "Deleted folder %s with %d subfolder(s)",
        folder_id,
        len(folder_ids) - 1,
    )
    return folder_ids
