"""Sync orchestrator: one full reconciliation pass between two stores.

The ``SyncOrchestrator`` runs five stages in a fixed order:

A. Folders -- timestamp-based two-way merge of ``folders.json``.
B. Deleted folders -- apply remote folder tombstones, then publish the
   union of both logs.
C. Pages -- timestamp-based two-way merge of page metadata.
D. Deleted pages -- apply remote page tombstones, publish the union and
   purge tombstoned content files.
E. Page contents -- move content, detect concurrent edits and emit
   conflict copies.

Deletions always win: an id named by a tombstone on either side is
never re-created by stages A, C or E.

Error handling is two-level.  ``RemoteUnavailable`` and undecodable
index files (``SerializationError``, which covers ``VersionMismatch``)
abort the run.  Any other exception is recorded against the stage and
the remaining stages still run; inside stage E a single page failure
does not stop the other pages.

Content is written before the metadata that describes it, so a crash
between the two leaves an unreferenced file (adopted or purged by the
next run) rather than an entry pointing at nothing.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Iterator

from ppage_sync.config_schema import SyncSettings
from ppage_sync.core.async_utils import run_sync
from ppage_sync.errors import (
    LocalStoreUnready,
    PPageSyncError,
    RemoteUnavailable,
    SerializationError,
    SyncInProgress,
)
from ppage_sync.sync.hasher import content_hash, hash_many, hashes_match
from ppage_sync.sync.merger import (
    diff_by_timestamp,
    merge_tombstones,
    tombstone_ids,
)
from ppage_sync.sync.models import (
    BulkResult,
    Page,
    PageMetadata,
    SyncResult,
    SyncStatus,
    Tombstone,
    now_ms,
)
from ppage_sync.sync.serializer import (
    DELETED_FOLDERS_FILE,
    DELETED_PAGES_FILE,
    FOLDERS_FILE,
    PAGES_FILE,
    build_page_metadata,
    deserialize_deleted_folders,
    deserialize_deleted_pages,
    deserialize_folders,
    deserialize_pages,
    page_metadata,
    serialize_deleted_folders,
    serialize_deleted_pages,
    serialize_folders,
    serialize_pages,
)
from ppage_sync.sync.state import SyncState
from ppage_sync.sync.tree import (
    default_folder_id,
    find_orphan_pages,
    guess_page_name,
)

if TYPE_CHECKING:
    from ppage_sync.store.local import LocalStore
    from ppage_sync.store.remote import RemoteStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

_FATAL_ERRORS = (RemoteUnavailable, SerializationError)


def _no_progress(current: int, total: int, message: str) -> None:
    pass


class SyncOrchestrator:
    """Reconcile a local store with a shared remote store.

    Args:
        local: This replica's local store.
        remote: Remote store adapter for the application namespace.
        settings: Tuning knobs; defaults when omitted.
        state: Sync archive; an in-memory one when omitted.
        namespace: Archive key, normally the remote namespace.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        settings: SyncSettings | None = None,
        state: SyncState | None = None,
        namespace: str = "ppage-app",
    ) -> None:
        self.local = local
        self.remote = remote
        self.settings = settings or SyncSettings()
        self.state_store = state or SyncState()
        self.namespace = namespace
        self._lock = threading.Lock()
        self._status = SyncStatus.IDLE

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def is_syncing(self) -> bool:
        return self._status is SyncStatus.SYNCING

    # ------------------------------------------------------------------
    # Main entry points
    # ------------------------------------------------------------------

    def run(self) -> SyncResult:
        """Execute stages A-E once.

        Returns:
            A ``SyncResult``; ``success`` is true iff ``errors`` is empty.

        Raises:
            SyncInProgress: If another run or bulk operation holds the
                orchestrator.  No side effects happen in that case.
        """
        result = SyncResult()
        with self._exclusive() as finish:
            logger.info("Sync started (namespace=%s)", self.namespace)
            try:
                self.remote.initialize()
                for name, stage in self._stages():
                    self._run_stage(name, stage, result)
                self._warn_orphans()
            except Exception as exc:
                logger.error("Sync aborted: %s", exc)
                result.errors.append(str(exc))
            result.success = not result.errors
            finish(result.success)
        logger.info(
            "Sync %s: %d up / %d down / %d deleted pages, %d conflict(s)",
            "completed" if result.success else "failed",
            result.pages_uploaded,
            result.pages_downloaded,
            result.pages_deleted,
            result.conflicts,
        )
        return result

    async def arun(self) -> SyncResult:
        """Run ``run()`` in a worker thread for async callers."""
        return await run_sync(self.run)

    def _stages(self) -> list[tuple[str, Callable[[SyncResult], None]]]:
        return [
            ("folders", self._sync_folders),
            ("deleted folders", self._sync_deleted_folders),
            ("pages", self._sync_pages),
            ("deleted pages", self._sync_deleted_pages),
            ("page contents", self._sync_page_contents),
        ]

    def _run_stage(
        self,
        name: str,
        stage: Callable[[SyncResult], None],
        result: SyncResult,
    ) -> None:
        logger.info("Stage: %s", name)
        try:
            stage(result)
        except _FATAL_ERRORS:
            raise
        except Exception as exc:
            logger.exception("Stage %s failed", name)
            result.errors.append(f"{name}: {exc}")

    @contextmanager
    def _exclusive(self) -> Iterator[Callable[[bool], None]]:
        """Hold the reentrancy guard for one run or bulk operation.

        Yields a callback that records the final status.
        """
        if not self._lock.acquire(blocking=False):
            raise SyncInProgress()
        self._status = SyncStatus.SYNCING
        outcome = {"success": False}

        def finish(success: bool) -> None:
            outcome["success"] = success

        try:
            yield finish
        finally:
            self._status = (
                SyncStatus.COMPLETED
                if outcome["success"]
                else SyncStatus.FAILED
            )
            self._lock.release()

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _read_index(
        self, name: str, parse: Callable[[bytes], list]
    ) -> list | None:
        data = self.remote.get_index(name)
        if data is None:
            return None
        return parse(data)

    def _local_tombstones(
        self, list_fn: Callable[[], list[Tombstone]], label: str
    ) -> list[Tombstone] | None:
        """Return local tombstones, or ``None`` if the store is unready."""
        try:
            return list_fn()
        except LocalStoreUnready as exc:
            logger.warning("Skipping %s tombstones: %s", label, exc)
            return None

    def _deleted_folder_ids(self) -> set[str]:
        local = self._local_tombstones(
            self.local.list_deleted_folders, "folder"
        )
        remote = self._read_index(
            DELETED_FOLDERS_FILE, deserialize_deleted_folders
        )
        return tombstone_ids(local or [], remote or [])

    def _deleted_page_ids(self) -> set[str]:
        local = self._local_tombstones(self.local.list_deleted_pages, "page")
        remote = self._read_index(
            DELETED_PAGES_FILE, deserialize_deleted_pages
        )
        return tombstone_ids(local or [], remote or [])

    def _warn_orphans(self) -> None:
        orphans = find_orphan_pages(
            self.local.list_folders(), self.local.list_pages()
        )
        for page in orphans:
            logger.warning(
                "Page %s (%s) references missing folder %s",
                page.id,
                page.name,
                page.folder_id,
            )

    # ------------------------------------------------------------------
    # Stage A: folders
    # ------------------------------------------------------------------

    def _sync_folders(self, result: SyncResult) -> None:
        local_folders = self.local.list_folders()
        remote_folders = self._read_index(FOLDERS_FILE, deserialize_folders)

        if remote_folders is None:
            logger.info(
                "Remote has no %s; seeding %d folder(s)",
                FOLDERS_FILE,
                len(local_folders),
            )
            self.remote.put_index(
                FOLDERS_FILE, serialize_folders(local_folders)
            )
            result.folders_uploaded += len(local_folders)
            return

        deleted = self._deleted_folder_ids()
        plan = diff_by_timestamp(local_folders, remote_folders, deleted)

        for folder in plan.to_download:
            logger.debug("Downloading folder %s (%s)", folder.id, folder.name)
            self.local.put_folder(folder)
            result.folders_downloaded += 1
        for folder_id in plan.pruned:
            logger.debug("Dropping tombstoned folder %s from index", folder_id)

        if not plan.changed:
            logger.debug("Folders already in sync")
            return

        snapshot = [
            f for f in self.local.list_folders() if f.id not in deleted
        ]
        self.remote.put_index(FOLDERS_FILE, serialize_folders(snapshot))
        result.folders_uploaded += len(plan.to_upload)

    # ------------------------------------------------------------------
    # Stage B: deleted folders
    # ------------------------------------------------------------------

    def _sync_deleted_folders(self, result: SyncResult) -> None:
        local_deleted = self._local_tombstones(
            self.local.list_deleted_folders, "folder"
        )
        if local_deleted is None:
            return
        remote_deleted = self._read_index(
            DELETED_FOLDERS_FILE, deserialize_deleted_folders
        )

        if remote_deleted is None:
            if local_deleted:
                self.remote.put_index(
                    DELETED_FOLDERS_FILE,
                    serialize_deleted_folders(
                        merge_tombstones(local_deleted)
                    ),
                )
            return

        for tombstone in remote_deleted:
            if self.local.get_folder(tombstone.entity_id) is not None:
                logger.debug("Deleting folder %s", tombstone.entity_id)
                self.local.silent_delete_folder(tombstone.entity_id)
                result.folders_deleted += 1

        merged = merge_tombstones(local_deleted, remote_deleted)
        if merged != merge_tombstones(remote_deleted):
            self.remote.put_index(
                DELETED_FOLDERS_FILE, serialize_deleted_folders(merged)
            )

    # ------------------------------------------------------------------
    # Stage C: page metadata
    # ------------------------------------------------------------------

    def _sync_pages(self, result: SyncResult) -> None:
        local_pages = self.local.list_pages()
        remote_meta = self._read_index(PAGES_FILE, deserialize_pages)
        deleted = self._deleted_page_ids()

        if remote_meta is None:
            live = [p for p in local_pages if p.id not in deleted]
            logger.info(
                "Remote has no %s; seeding %d page(s)", PAGES_FILE, len(live)
            )
            self.remote.put_index(
                PAGES_FILE,
                serialize_pages(
                    build_page_metadata(live, self.settings.hash_workers)
                ),
            )
            return

        plan = diff_by_timestamp(local_pages, remote_meta, deleted)
        if not plan.changed:
            logger.debug("Page metadata already in sync")
            return

        # Existing entries keep their remote metadata until stage E has
        # uploaded the newer content; only brand-new pages are added here.
        remote_ids = {m.id for m in remote_meta}
        new_pages = [p for p in plan.to_upload if p.id not in remote_ids]
        snapshot = [m for m in remote_meta if m.id not in deleted]
        snapshot.extend(
            build_page_metadata(new_pages, self.settings.hash_workers)
        )
        logger.debug(
            "Page index: %d new, %d newer locally, %d newer remotely, "
            "%d pruned",
            len(new_pages),
            len(plan.to_upload) - len(new_pages),
            len(plan.to_download),
            len(plan.pruned),
        )
        self.remote.put_index(PAGES_FILE, serialize_pages(snapshot))

    # ------------------------------------------------------------------
    # Stage D: deleted pages
    # ------------------------------------------------------------------

    def _sync_deleted_pages(self, result: SyncResult) -> None:
        local_deleted = self._local_tombstones(
            self.local.list_deleted_pages, "page"
        )
        if local_deleted is None:
            return
        remote_deleted = self._read_index(
            DELETED_PAGES_FILE, deserialize_deleted_pages
        )
        content_ids = self.remote.list_page_content_ids()
        state = self.state_store.load(self.namespace)

        published = merge_tombstones(remote_deleted or [])
        if remote_deleted is None:
            merged = merge_tombstones(local_deleted)
        else:
            for tombstone in remote_deleted:
                if self.local.get_page(tombstone.entity_id) is not None:
                    logger.debug("Deleting page %s", tombstone.entity_id)
                    self.local.silent_delete_page(tombstone.entity_id)
                    result.pages_deleted += 1
            merged = merge_tombstones(local_deleted, remote_deleted)

        if merged != published:
            self.remote.put_index(
                DELETED_PAGES_FILE, serialize_deleted_pages(merged)
            )

        for page_id in sorted(tombstone_ids(merged) & content_ids):
            logger.debug("Removing content file for page %s", page_id)
            self.remote.delete_page_content(page_id)
        for page_id in tombstone_ids(merged):
            self.state_store.forget(state, page_id)
        self.state_store.save(self.namespace, state)

    # ------------------------------------------------------------------
    # Stage E: page contents
    # ------------------------------------------------------------------

    def _sync_page_contents(self, result: SyncResult) -> None:
        state = self.state_store.load(self.namespace)
        try:
            remote_meta = self._read_index(PAGES_FILE, deserialize_pages)
            if remote_meta is None:
                self._seed_page_contents(state, result)
            else:
                self._merge_page_contents(remote_meta, state, result)
        finally:
            self.state_store.save(self.namespace, state)

    def _seed_page_contents(self, state: dict, result: SyncResult) -> None:
        deleted = self._deleted_page_ids()
        pages = [p for p in self.local.list_pages() if p.id not in deleted]
        metadata = build_page_metadata(pages, self.settings.hash_workers)
        uploaded: list[PageMetadata] = []
        for page, meta in zip(pages, metadata):
            try:
                self.remote.put_page_content(page.id, page.content)
            except RemoteUnavailable:
                raise
            except Exception as exc:
                self._page_failed(page.id, "upload", exc, result)
                continue
            self.state_store.record(
                state, page.id, meta.content_hash, page.updated_at
            )
            uploaded.append(meta)
            result.pages_uploaded += 1
        self.remote.put_index(PAGES_FILE, serialize_pages(uploaded))

    def _merge_page_contents(
        self,
        remote_meta: list[PageMetadata],
        state: dict,
        result: SyncResult,
    ) -> None:
        deleted = self._deleted_page_ids()
        content_ids = self.remote.list_page_content_ids()
        local_by_id = {
            p.id: p for p in self.local.list_pages() if p.id not in deleted
        }
        local_hashes = hash_many(
            ((p.id, p.content) for p in local_by_id.values()),
            max_workers=self.settings.hash_workers,
        )

        entries, index_dirty = self._repair_page_index(
            remote_meta, content_ids, local_by_id, deleted, result
        )

        # Upload pass: content first, metadata after.
        skip: set[str] = set()
        for page_id, page in local_by_id.items():
            meta = entries.get(page_id)
            local_hash = local_hashes[page_id]
            archived = self.state_store.archived_hash(state, page_id)
            push = self._push_kind(
                page, local_hash, meta, content_ids, archived
            )
            if push is None:
                continue
            skip.add(page_id)
            try:
                if push == "content":
                    logger.debug("Uploading page %s", page_id)
                    self.remote.put_page_content(page_id, page.content)
                else:
                    logger.debug("Updating metadata for page %s", page_id)
            except RemoteUnavailable:
                raise
            except Exception as exc:
                self._page_failed(page_id, "upload", exc, result)
                continue
            if push == "content" and meta is not None and (
                meta.updated_at > page.updated_at
            ):
                page = self._keep_remote_placement(page, meta)
            new_meta = page_metadata(page, local_hash)
            if new_meta != meta:
                entries[page_id] = new_meta
                index_dirty = True
            self.state_store.record(
                state, page_id, local_hash, page.updated_at
            )
            result.pages_uploaded += 1

        if index_dirty:
            self.remote.put_index(
                PAGES_FILE, serialize_pages(entries.values())
            )

        # Download pass.  Pages pushed (or whose push failed) are left
        # alone.
        for page_id, meta in entries.items():
            if page_id in skip:
                continue
            if page_id not in content_ids:
                logger.debug("No content file yet for page %s", page_id)
                continue
            page = local_by_id.get(page_id)
            try:
                if page is None:
                    self._download_page(meta, state, result)
                else:
                    self._reconcile_page(
                        page, local_hashes[page_id], meta, state, result
                    )
            except RemoteUnavailable:
                raise
            except Exception as exc:
                self._page_failed(page_id, "download", exc, result)

    def _repair_page_index(
        self,
        remote_meta: list[PageMetadata],
        content_ids: set[str],
        local_by_id: dict[str, Page],
        deleted: set[str],
        result: SyncResult,
    ) -> tuple[dict[str, PageMetadata], bool]:
        """Reconcile the metadata index with the content files present.

        Tombstoned entries are dropped.  Content files with no entry get
        one built from the local page or, failing that, from the content
        itself.  Entries without a content file are kept (their uploader
        may still be mid-run) and skipped by the download pass.

        Returns:
            ``(entries, dirty)`` where *dirty* means the index must be
            rewritten.
        """
        entries: dict[str, PageMetadata] = {}
        dirty = False
        for meta in remote_meta:
            if meta.id in deleted:
                dirty = True
                continue
            entries[meta.id] = meta

        unindexed = sorted(content_ids - set(entries) - deleted)
        fallback_folder = default_folder_id(self.local.list_folders()) or ""
        for page_id in unindexed:
            logger.warning(
                "Content file for page %s has no metadata; rebuilding",
                page_id,
            )
            local_page = local_by_id.get(page_id)
            try:
                content = self.remote.get_page_content(page_id)
            except SerializationError as exc:
                self._page_failed(page_id, "repair", exc, result)
                continue
            if content is None:
                continue
            if local_page is not None:
                template = local_page
            else:
                stamp = now_ms()
                template = Page(
                    id=page_id,
                    folder_id=fallback_folder,
                    name=guess_page_name(content),
                    created_at=stamp,
                    updated_at=stamp,
                )
            entries[page_id] = page_metadata(
                template.model_copy(update={"content": content}),
                content_hash(content),
            )
            dirty = True

        return entries, dirty

    @staticmethod
    def _push_kind(
        page: Page,
        local_hash: str,
        meta: PageMetadata | None,
        content_ids: set[str],
        archived: str | None,
    ) -> str | None:
        """Decide whether this replica pushes *page*.

        Content direction is decided against the archived hash when one
        exists: only a one-sided local edit is pushed, and an edit on both
        sides is left to the download pass, which emits a conflict copy.
        Without an archive entry the strictly newer ``updated_at`` wins.

        Returns:
            ``"content"``, ``"metadata"`` or ``None``.
        """
        if meta is None or page.id not in content_ids:
            return "content"
        local_newer = page.updated_at > meta.updated_at
        if hashes_match(local_hash, meta.content_hash):
            return "metadata" if local_newer else None
        if archived is None:
            return "content" if local_newer else None
        local_changed = not hashes_match(local_hash, archived)
        remote_changed = not hashes_match(meta.content_hash, archived)
        if local_changed and not remote_changed:
            return "content"
        return None

    def _keep_remote_placement(self, page: Page, meta: PageMetadata) -> Page:
        """Apply a newer remote rename or move to a locally edited page.

        The local content has just been pushed; name, folder and
        ``updated_at`` follow the newer remote entry so the push does not
        undo them.
        """
        logger.debug(
            "Keeping newer remote name/folder for page %s", page.id
        )
        merged = page.model_copy(
            update={
                "name": meta.name,
                "folder_id": meta.folder_id,
                "updated_at": meta.updated_at,
            }
        )
        self.local.put_page(merged)
        return merged

    def _download_page(
        self, meta: PageMetadata, state: dict, result: SyncResult
    ) -> None:
        content = self.remote.get_page_content(meta.id)
        if content is None:
            logger.warning("Content file for page %s vanished", meta.id)
            return
        logger.debug("Downloading new page %s (%s)", meta.id, meta.name)
        self.local.put_page(
            Page(
                id=meta.id,
                folder_id=meta.folder_id,
                name=meta.name,
                content=content,
                created_at=meta.created_at,
                updated_at=meta.updated_at,
            )
        )
        self.state_store.record(
            state, meta.id, content_hash(content), meta.updated_at
        )
        result.pages_downloaded += 1

    def _reconcile_page(
        self,
        page: Page,
        local_hash: str,
        meta: PageMetadata,
        state: dict,
        result: SyncResult,
    ) -> None:
        """Bring an existing local page in line with its remote entry.

        Reached only for pages the upload pass did not push, so if the
        contents differ the remote side either changed alone (plain
        download) or both sides changed (conflict copy, then download).
        """
        if hashes_match(local_hash, meta.content_hash):
            if meta.updated_at > page.updated_at:
                self._adopt_remote(page, meta, page.content, result)
            agreed_at = max(page.updated_at, meta.updated_at)
            self.state_store.record(state, page.id, local_hash, agreed_at)
            return

        remote_content = self.remote.get_page_content(page.id)
        if remote_content is None:
            logger.warning("Content file for page %s vanished", page.id)
            return

        archived = self.state_store.archived_hash(state, page.id)
        local_changed = not hashes_match(local_hash, archived)
        if local_changed and remote_content != page.content:
            self._create_conflict_copy(page)
            result.conflicts += 1
        self._adopt_remote(page, meta, remote_content, result)
        self.state_store.record(
            state, page.id, content_hash(remote_content), meta.updated_at
        )

    def _adopt_remote(
        self,
        page: Page,
        meta: PageMetadata,
        content: str,
        result: SyncResult,
    ) -> None:
        updated = page.model_copy(
            update={
                "name": meta.name,
                "folder_id": meta.folder_id,
                "content": content,
                "updated_at": meta.updated_at,
            }
        )
        if updated == page:
            return
        logger.debug("Applying remote version of page %s", page.id)
        self.local.put_page(updated)
        result.pages_downloaded += 1

    def _create_conflict_copy(self, page: Page) -> Page:
        """Preserve the local version of *page* under a new id."""
        now = now_ms()
        stamp = datetime.now(timezone.utc).strftime("%m-%d %H:%M")
        copy = page.model_copy(
            update={
                "id": f"{page.id}_conflict_{now}",
                "name": (
                    f"{page.name} ({self.settings.conflict_label} {stamp})"
                ),
                "updated_at": now,
            }
        )
        logger.warning(
            "Conflict on page %s; local version kept as %s",
            page.id,
            copy.id,
        )
        self.local.put_page(copy)
        return copy

    @staticmethod
    def _page_failed(
        page_id: str, action: str, exc: Exception, result: SyncResult
    ) -> None:
        logger.error("Failed to %s page %s: %s", action, page_id, exc)
        result.errors.append(f"page {page_id}: {action} failed: {exc}")

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def force_push(
        self, on_progress: ProgressCallback | None = None
    ) -> BulkResult:
        """Overwrite the remote namespace with the local replica.

        Page content goes up first, then the four index files.  Content
        files with no local page are removed.
        """
        progress = on_progress or _no_progress
        with self._exclusive() as finish:
            try:
                self._force_push(progress)
            except Exception as exc:
                logger.exception("Force push failed")
                return BulkResult(success=False, errors=[str(exc)])
            finish(True)
        return BulkResult(success=True)

    def _force_push(self, progress: ProgressCallback) -> None:
        self.remote.initialize()
        folders = self.local.list_folders()
        pages = self.local.list_pages()
        deleted_folders = (
            self._local_tombstones(self.local.list_deleted_folders, "folder")
            or []
        )
        deleted_pages = (
            self._local_tombstones(self.local.list_deleted_pages, "page")
            or []
        )
        stray = sorted(
            self.remote.list_page_content_ids() - {p.id for p in pages}
        )
        total = len(pages) + len(stray) + 4
        step = 0

        def advance(message: str) -> None:
            nonlocal step
            step += 1
            progress(step, total, message)

        state = self.state_store.load(self.namespace)
        state["entries"] = {}
        metadata = build_page_metadata(pages, self.settings.hash_workers)
        for index, (page, meta) in enumerate(zip(pages, metadata), 1):
            advance(f"Uploading page {page.name} ({index}/{len(pages)})")
            self.remote.put_page_content(page.id, page.content)
            self.state_store.record(
                state, page.id, meta.content_hash, page.updated_at
            )
        for page_id in stray:
            advance(f"Removing stray content for page {page_id}")
            self.remote.delete_page_content(page_id)

        advance(f"Uploading {len(folders)} folder(s)")
        self.remote.put_index(FOLDERS_FILE, serialize_folders(folders))
        advance(f"Uploading metadata for {len(pages)} page(s)")
        self.remote.put_index(PAGES_FILE, serialize_pages(metadata))
        advance("Uploading folder deletion records")
        self.remote.put_index(
            DELETED_FOLDERS_FILE,
            serialize_deleted_folders(merge_tombstones(deleted_folders)),
        )
        advance("Uploading page deletion records")
        self.remote.put_index(
            DELETED_PAGES_FILE,
            serialize_deleted_pages(merge_tombstones(deleted_pages)),
        )
        self.state_store.save(self.namespace, state)
        logger.info(
            "Force push complete: %d folder(s), %d page(s)",
            len(folders),
            len(pages),
        )

    def force_pull(
        self, on_progress: ProgressCallback | None = None
    ) -> BulkResult:
        """Replace the local replica with the remote namespace.

        Everything is downloaded before local data is touched, so a
        failed pull leaves the local replica as it was.
        """
        progress = on_progress or _no_progress
        with self._exclusive() as finish:
            try:
                self._force_pull(progress)
            except Exception as exc:
                logger.exception("Force pull failed")
                return BulkResult(success=False, errors=[str(exc)])
            finish(True)
        return BulkResult(success=True)

    def _force_pull(self, progress: ProgressCallback) -> None:
        self.remote.initialize()
        folders = self._read_index(FOLDERS_FILE, deserialize_folders)
        metadata = self._read_index(PAGES_FILE, deserialize_pages)
        if folders is None or metadata is None:
            raise PPageSyncError(
                "Remote namespace is empty; nothing to pull"
            )
        deleted_folders = self._read_index(
            DELETED_FOLDERS_FILE, deserialize_deleted_folders
        )
        deleted_pages = self._read_index(
            DELETED_PAGES_FILE, deserialize_deleted_pages
        )
        total = len(metadata) + len(folders) + 3
        step = 0

        def advance(message: str) -> None:
            nonlocal step
            step += 1
            progress(step, total, message)

        pages: list[Page] = []
        for index, meta in enumerate(metadata, 1):
            advance(f"Downloading page {meta.name} ({index}/{len(metadata)})")
            content = self.remote.get_page_content(meta.id)
            if content is None:
                logger.warning(
                    "Skipping page %s: no content file", meta.id
                )
                continue
            pages.append(
                Page(
                    id=meta.id,
                    folder_id=meta.folder_id,
                    name=meta.name,
                    content=content,
                    created_at=meta.created_at,
                    updated_at=meta.updated_at,
                )
            )

        advance("Clearing local data")
        self._clear_local()
        for folder in folders:
            advance(f"Saving folder {folder.name}")
            self.local.put_folder(folder)

        advance(f"Saving {len(pages)} page(s)")
        state = self.state_store.load(self.namespace)
        state["entries"] = {}
        for page in pages:
            self.local.put_page(page)
            self.state_store.record(
                state, page.id, content_hash(page.content), page.updated_at
            )
        self.state_store.save(self.namespace, state)

        advance("Saving deletion records")
        try:
            for tombstone in deleted_folders or []:
                self.local.add_deleted_folder(
                    tombstone.entity_id, tombstone.deleted_at
                )
            for tombstone in deleted_pages or []:
                self.local.add_deleted_page(
                    tombstone.entity_id, tombstone.deleted_at
                )
        except LocalStoreUnready as exc:
            logger.warning("Deletion records not saved: %s", exc)
        logger.info(
            "Force pull complete: %d folder(s), %d page(s)",
            len(folders),
            len(pages),
        )

    def clear_remote(self) -> None:
        """Delete every index and content file in the namespace."""
        with self._exclusive() as finish:
            self.remote.clear_namespace()
            self.state_store.clear(self.namespace)
            finish(True)

    def reset_local(self) -> None:
        """Delete every local folder, page and tombstone."""
        with self._exclusive() as finish:
            self._clear_local()
            self.state_store.clear(self.namespace)
            finish(True)
        logger.info("Local replica reset")

    def _clear_local(self) -> None:
        for page in self.local.list_pages():
            self.local.silent_delete_page(page.id)
        for folder in self.local.list_folders():
            self.local.silent_delete_folder(folder.id)
        try:
            self.local.clear_deleted_folders()
            self.local.clear_deleted_pages()
        except LocalStoreUnready as exc:
            logger.warning("Tombstones not cleared: %s", exc)
