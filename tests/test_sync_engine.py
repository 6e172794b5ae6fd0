"""Tests for the sync orchestrator, stage by stage."""

from __future__ import annotations

import pytest

from conftest import make_folder, make_page
from ppage_sync.config_schema import SyncSettings
from ppage_sync.errors import SyncInProgress
from ppage_sync.store.local import MemoryLocalStore
from ppage_sync.sync.engine import SyncOrchestrator
from ppage_sync.sync.hasher import content_hash
from ppage_sync.sync.models import SyncResult, SyncStatus, Tombstone
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
    serialize_deleted_folders,
    serialize_deleted_pages,
    serialize_folders,
    serialize_pages,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _remote_folders(remote):
    return {f.id: f for f in deserialize_folders(remote.blobs[FOLDERS_FILE])}


def _remote_pages(remote):
    return {m.id: m for m in deserialize_pages(remote.blobs[PAGES_FILE])}


class _FlakyLocalStore(MemoryLocalStore):
    """Refuses to store one page id."""

    def __init__(self, bad_id):
        super().__init__()
        self.bad_id = bad_id

    def put_page(self, page):
        if page.id == self.bad_id:
            raise OSError("disk full")
        super().put_page(page)


class _BrokenTombstoneStore(MemoryLocalStore):
    def list_deleted_folders(self):
        raise RuntimeError("boom")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    """Status, reentrancy guard and run-level error policy."""

    def test_status_transitions(self, make_replica):
        _, orchestrator = make_replica()
        assert orchestrator.status is SyncStatus.IDLE
        assert orchestrator.is_syncing is False
        result = orchestrator.run()
        assert result.success is True
        assert result.errors == []
        assert orchestrator.status is SyncStatus.COMPLETED

    def test_is_syncing_during_run(self, remote):
        seen = []

        class _Probe(MemoryLocalStore):
            def list_folders(self):
                seen.append(orchestrator.is_syncing)
                return super().list_folders()

        orchestrator = SyncOrchestrator(_Probe(), remote)
        orchestrator.run()
        assert seen and all(seen)
        assert orchestrator.is_syncing is False

    def test_second_run_rejected(self, remote, make_replica):
        _, orchestrator = make_replica()
        orchestrator._lock.acquire()
        try:
            with pytest.raises(SyncInProgress):
                orchestrator.run()
            with pytest.raises(SyncInProgress):
                orchestrator.force_push()
        finally:
            orchestrator._lock.release()
        assert remote.writes == []

    def test_remote_unavailable_aborts(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "x"))
        remote.available = False

        result = orchestrator.run()

        assert result.success is False
        assert len(result.errors) == 1
        assert "unavailable" in result.errors[0]
        assert orchestrator.status is SyncStatus.FAILED
        assert orchestrator.is_syncing is False

        remote.available = True
        assert orchestrator.run().success is True

    def test_version_mismatch_aborts(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "x"))
        remote.blobs[FOLDERS_FILE] = b'{"version": "3.0", "folders": []}'

        result = orchestrator.run()

        assert result.success is False
        assert "3.0" in result.errors[0]
        assert PAGES_FILE not in remote.blobs

    def test_stage_error_does_not_stop_later_stages(self, remote):
        local = _BrokenTombstoneStore()
        local.put_page(make_page("p1", "x"))
        orchestrator = SyncOrchestrator(local, remote)

        result = orchestrator.run()

        assert result.success is False
        assert result.errors == ["deleted folders: boom"]
        assert "p1" in _remote_pages(remote)
        assert result.pages_uploaded == 1

    async def test_arun(self, make_replica):
        local, orchestrator = make_replica()
        local.put_folder(make_folder("f1"))
        result = await orchestrator.arun()
        assert result.success is True
        assert result.folders_uploaded == 1


# ---------------------------------------------------------------------------
# Stage A: folders
# ---------------------------------------------------------------------------


class TestFolderStage:
    def test_seeding(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_folder(make_folder("f1"))
        local.put_folder(make_folder("f2", parent_id="f1"))
        result = SyncResult()

        orchestrator._sync_folders(result)

        assert set(_remote_folders(remote)) == {"f1", "f2"}
        assert result.folders_uploaded == 2
        assert result.folders_downloaded == 0

    def test_remote_newer_is_downloaded(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_folder(make_folder("f1", "Old", updated_at=1000))
        remote.put_index(
            FOLDERS_FILE,
            serialize_folders([make_folder("f1", "New", updated_at=2000)]),
        )
        result = SyncResult()

        orchestrator._sync_folders(result)

        assert local.get_folder("f1").name == "New"
        assert result.folders_downloaded == 1
        assert result.folders_uploaded == 0

    def test_local_newer_is_uploaded(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_folder(make_folder("f1", "Mine", updated_at=3000))
        remote.put_index(
            FOLDERS_FILE, serialize_folders([make_folder("f1", "Theirs")])
        )
        result = SyncResult()

        orchestrator._sync_folders(result)

        assert _remote_folders(remote)["f1"].name == "Mine"
        assert result.folders_uploaded == 1

    def test_equal_timestamps_write_nothing(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_folder(make_folder("f1", "Mine"))
        remote.put_index(
            FOLDERS_FILE, serialize_folders([make_folder("f1", "Theirs")])
        )
        remote.writes.clear()

        orchestrator._sync_folders(SyncResult())

        assert remote.writes == []
        assert local.get_folder("f1").name == "Mine"

    def test_tombstoned_folder_not_resurrected(self, remote, make_replica):
        local, orchestrator = make_replica()
        remote.put_index(
            FOLDERS_FILE,
            serialize_folders([make_folder("gone"), make_folder("kept")]),
        )
        remote.put_index(
            DELETED_FOLDERS_FILE,
            serialize_deleted_folders(
                [Tombstone(entity_id="gone", deleted_at=5000)]
            ),
        )
        result = SyncResult()

        orchestrator._sync_folders(result)

        assert local.get_folder("gone") is None
        assert local.get_folder("kept") is not None
        assert set(_remote_folders(remote)) == {"kept"}
        assert result.folders_downloaded == 1


# ---------------------------------------------------------------------------
# Stage B: folder tombstones
# ---------------------------------------------------------------------------


class TestFolderTombstoneStage:
    def test_remote_tombstone_deletes_locally(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_folder(make_folder("f1"))
        local.add_deleted_folder("other", 10)
        remote.put_index(
            DELETED_FOLDERS_FILE,
            serialize_deleted_folders(
                [Tombstone(entity_id="f1", deleted_at=20)]
            ),
        )
        result = SyncResult()

        orchestrator._sync_deleted_folders(result)

        assert local.get_folder("f1") is None
        assert result.folders_deleted == 1
        merged = deserialize_deleted_folders(
            remote.blobs[DELETED_FOLDERS_FILE]
        )
        assert {t.entity_id for t in merged} == {"f1", "other"}
        assert {t.entity_id for t in local.list_deleted_folders()} == {
            "other"
        }

    def test_later_deletion_wins(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.add_deleted_folder("f1", 50)
        remote.put_index(
            DELETED_FOLDERS_FILE,
            serialize_deleted_folders(
                [Tombstone(entity_id="f1", deleted_at=20)]
            ),
        )
        orchestrator._sync_deleted_folders(SyncResult())
        assert deserialize_deleted_folders(
            remote.blobs[DELETED_FOLDERS_FILE]
        ) == [Tombstone(entity_id="f1", deleted_at=50)]

    def test_seeding_uploads_local_log(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.add_deleted_folder("f1", 20)
        orchestrator._sync_deleted_folders(SyncResult())
        assert DELETED_FOLDERS_FILE in remote.blobs

    def test_nothing_to_seed(self, remote, make_replica):
        _, orchestrator = make_replica()
        orchestrator._sync_deleted_folders(SyncResult())
        assert remote.writes == []

    def test_unready_store_skips_stage(self, remote, make_replica):
        local, orchestrator = make_replica(
            local=MemoryLocalStore(tombstones_enabled=False)
        )
        local.put_folder(make_folder("f1"))
        remote.put_index(
            DELETED_FOLDERS_FILE,
            serialize_deleted_folders(
                [Tombstone(entity_id="f1", deleted_at=20)]
            ),
        )
        remote.writes.clear()
        result = SyncResult()

        orchestrator._sync_deleted_folders(result)

        assert remote.writes == []
        assert result.folders_deleted == 0


# ---------------------------------------------------------------------------
# Stage C: page metadata
# ---------------------------------------------------------------------------


class TestPageStage:
    def test_seeding_writes_metadata_only(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "hello"))
        result = SyncResult()

        orchestrator._sync_pages(result)

        assert _remote_pages(remote)["p1"].content_hash == content_hash(
            "hello"
        )
        assert "pages/page-p1.md" not in remote.blobs
        assert result.pages_uploaded == 0

    def test_new_pages_added_existing_entries_kept(
        self, remote, make_replica
    ):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "edited", updated_at=5000))
        local.put_page(make_page("p2", "new"))
        remote.put_index(
            PAGES_FILE,
            serialize_pages(
                build_page_metadata(
                    [make_page("p1", "original"), make_page("p3", "theirs")]
                )
            ),
        )

        orchestrator._sync_pages(SyncResult())

        entries = _remote_pages(remote)
        assert set(entries) == {"p1", "p2", "p3"}
        assert entries["p1"].content_hash == content_hash("original")
        assert entries["p2"].content_hash == content_hash("new")

    def test_tombstoned_entries_pruned(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.add_deleted_page("p1", 9000)
        remote.put_index(
            PAGES_FILE, serialize_pages(build_page_metadata([make_page("p1")]))
        )
        orchestrator._sync_pages(SyncResult())
        assert _remote_pages(remote) == {}


# ---------------------------------------------------------------------------
# Stage D: page tombstones
# ---------------------------------------------------------------------------


class TestPageTombstoneStage:
    def test_remote_tombstone_deletes_page_and_content(
        self, remote, make_replica
    ):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "x"))
        remote.put_page_content("p1", "x")
        remote.put_index(
            DELETED_PAGES_FILE,
            serialize_deleted_pages([Tombstone(entity_id="p1", deleted_at=9)]),
        )
        result = SyncResult()

        orchestrator._sync_deleted_pages(result)

        assert local.get_page("p1") is None
        assert local.list_deleted_pages() == []
        assert "pages/page-p1.md" not in remote.blobs
        assert result.pages_deleted == 1

    def test_local_tombstone_published_and_purged(
        self, remote, make_replica
    ):
        local, orchestrator = make_replica()
        local.add_deleted_page("p1", 9)
        remote.put_page_content("p1", "x")
        remote.put_page_content("p2", "y")
        result = SyncResult()

        orchestrator._sync_deleted_pages(result)

        assert deserialize_deleted_pages(
            remote.blobs[DELETED_PAGES_FILE]
        ) == [Tombstone(entity_id="p1", deleted_at=9)]
        assert remote.list_page_content_ids() == {"p2"}
        assert result.pages_deleted == 0

    def test_archive_forgets_deleted_pages(self, remote, make_replica):
        local, orchestrator = make_replica()
        state = orchestrator.state_store.load(orchestrator.namespace)
        orchestrator.state_store.record(state, "p1", "abc", 1)
        orchestrator.state_store.save(orchestrator.namespace, state)
        local.add_deleted_page("p1", 9)

        orchestrator._sync_deleted_pages(SyncResult())

        state = orchestrator.state_store.load(orchestrator.namespace)
        assert orchestrator.state_store.archived_hash(state, "p1") is None

    def test_unready_store_skips_stage(self, remote, make_replica):
        local, orchestrator = make_replica(
            local=MemoryLocalStore(tombstones_enabled=False)
        )
        local.put_page(make_page("p1"))
        remote.put_index(
            DELETED_PAGES_FILE,
            serialize_deleted_pages([Tombstone(entity_id="p1", deleted_at=9)]),
        )
        orchestrator._sync_deleted_pages(SyncResult())
        assert local.get_page("p1") is not None


# ---------------------------------------------------------------------------
# Stage E: page content
# ---------------------------------------------------------------------------


class TestContentStage:
    def _publish(self, remote, *pages):
        remote.put_index(
            PAGES_FILE, serialize_pages(build_page_metadata(pages))
        )
        for page in pages:
            remote.put_page_content(page.id, page.content)

    def test_new_remote_page_downloaded(self, remote, make_replica):
        local, orchestrator = make_replica()
        self._publish(
            remote, make_page("p1", "# Remote", name="Remote", updated_at=7)
        )
        result = SyncResult()

        orchestrator._sync_page_contents(result)

        page = local.get_page("p1")
        assert page.content == "# Remote"
        assert page.name == "Remote"
        assert page.updated_at == 7
        assert result.pages_downloaded == 1

    def test_local_edit_uploaded(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "mine", updated_at=5000))
        self._publish(remote, make_page("p1", "old"))
        result = SyncResult()

        orchestrator._sync_page_contents(result)

        assert remote.get_page_content("p1") == "mine"
        entry = _remote_pages(remote)["p1"]
        assert entry.content_hash == content_hash("mine")
        assert entry.updated_at == 5000
        assert result.pages_uploaded == 1
        assert result.conflicts == 0

    def test_content_uploaded_before_metadata(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "mine", updated_at=5000))
        self._publish(remote, make_page("p1", "old"))
        remote.writes.clear()

        orchestrator._sync_page_contents(SyncResult())

        assert remote.writes == [
            ("put", "pages/page-p1.md"),
            ("put", PAGES_FILE),
        ]

    def test_rename_moves_metadata_only(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "same", name="New", updated_at=5000))
        self._publish(remote, make_page("p1", "same", name="Old"))
        remote.writes.clear()
        result = SyncResult()

        orchestrator._sync_page_contents(result)

        assert remote.writes == [("put", PAGES_FILE)]
        assert _remote_pages(remote)["p1"].name == "New"
        assert result.pages_uploaded == 1

    def test_remote_rename_adopted(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "same", name="Old"))
        self._publish(
            remote, make_page("p1", "same", name="New", updated_at=5000)
        )
        result = SyncResult()

        orchestrator._sync_page_contents(result)

        assert local.get_page("p1").name == "New"
        assert result.pages_downloaded == 1
        assert result.conflicts == 0

    def test_no_archive_differing_content_is_conflict(
        self, remote, make_replica
    ):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "mine", name="Doc"))
        self._publish(
            remote, make_page("p1", "theirs", name="Doc", updated_at=5000)
        )
        result = SyncResult()

        orchestrator._sync_page_contents(result)

        pages = {p.id: p for p in local.list_pages()}
        assert pages["p1"].content == "theirs"
        (copy_id,) = set(pages) - {"p1"}
        assert copy_id.startswith("p1_conflict_")
        assert pages[copy_id].content == "mine"
        assert pages[copy_id].name.startswith("Doc (conflict copy ")
        assert pages[copy_id].folder_id == "f1"
        assert result.conflicts == 1
        assert result.pages_downloaded == 1

    def test_conflict_label_setting(self, remote):
        local = MemoryLocalStore()
        orchestrator = SyncOrchestrator(
            local, remote, settings=SyncSettings(conflict_label="Konflikt")
        )
        local.put_page(make_page("p1", "mine", name="Doc"))
        self._publish(remote, make_page("p1", "theirs", updated_at=5000))

        orchestrator._sync_page_contents(SyncResult())

        names = [p.name for p in local.list_pages()]
        assert any(n.startswith("Doc (Konflikt ") for n in names)

    def test_identical_bytes_are_not_a_conflict(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "same"))
        remote.put_index(
            PAGES_FILE,
            serialize_pages(
                [
                    build_page_metadata([make_page("p1", "stale")])[0]
                    .model_copy(update={"updated_at": 5000})
                ]
            ),
        )
        remote.put_page_content("p1", "same")
        result = SyncResult()

        orchestrator._sync_page_contents(result)

        assert result.conflicts == 0
        assert len(local.list_pages()) == 1
        assert local.get_page("p1").updated_at == 5000

    def test_page_failure_does_not_stop_others(self, remote):
        local = _FlakyLocalStore("bad")
        orchestrator = SyncOrchestrator(local, remote)
        self._publish(remote, make_page("bad", "x"), make_page("good", "y"))
        result = SyncResult()

        orchestrator._sync_page_contents(result)

        assert local.get_page("good") is not None
        assert result.pages_downloaded == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("page bad:")
        assert "disk full" in result.errors[0]

    def test_backfills_metadata_for_unindexed_content(
        self, remote, make_replica
    ):
        local, orchestrator = make_replica()
        local.put_folder(make_folder("root"))
        remote.put_index(PAGES_FILE, serialize_pages([]))
        remote.put_page_content("x", "# Found\nbody")
        result = SyncResult()

        orchestrator._sync_page_contents(result)

        page = local.get_page("x")
        assert page.name == "Found"
        assert page.folder_id == "root"
        assert page.content == "# Found\nbody"
        assert _remote_pages(remote)["x"].content_hash == content_hash(
            "# Found\nbody"
        )
        assert result.pages_downloaded == 1
        assert result.errors == []

    def test_entry_without_content_is_skipped(self, remote, make_replica):
        local, orchestrator = make_replica()
        remote.put_index(
            PAGES_FILE,
            serialize_pages(build_page_metadata([make_page("ghost", "x")])),
        )
        result = SyncResult()

        orchestrator._sync_page_contents(result)

        assert local.get_page("ghost") is None
        assert result.errors == []
        assert result.pages_downloaded == 0

    def test_missing_content_reuploaded(self, remote, make_replica):
        local, orchestrator = make_replica()
        page = make_page("p1", "mine")
        local.put_page(page)
        remote.put_index(
            PAGES_FILE, serialize_pages(build_page_metadata([page]))
        )
        result = SyncResult()

        orchestrator._sync_page_contents(result)

        assert remote.get_page_content("p1") == "mine"
        assert result.pages_uploaded == 1

    def test_seeds_contents_when_index_missing(self, remote, make_replica):
        local, orchestrator = make_replica()
        local.put_page(make_page("p1", "a"))
        local.put_page(make_page("p2", "b"))
        result = SyncResult()

        orchestrator._sync_page_contents(result)

        assert set(_remote_pages(remote)) == {"p1", "p2"}
        assert remote.list_page_content_ids() == {"p1", "p2"}
        assert result.pages_uploaded == 2
