"""Shared pytest fixtures for ppage-sync tests."""

import pytest
from dotenv import load_dotenv

from ppage_sync.store.local import MemoryLocalStore
from ppage_sync.store.remote import MemoryRemoteStore
from ppage_sync.sync.engine import SyncOrchestrator
from ppage_sync.sync.models import Folder, Page
from ppage_sync.sync.state import SyncState

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live blob server",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live blob server"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


def make_folder(folder_id, name=None, parent_id=None, updated_at=1000, **kw):
    """Build a Folder with sensible defaults."""
    return Folder(
        id=folder_id,
        name=name or folder_id,
        parent_id=parent_id,
        order=kw.pop("order", 0),
        created_at=kw.pop("created_at", 1000),
        updated_at=updated_at,
    )


def make_page(
    page_id, content="", folder_id="f1", updated_at=1000, name=None, **kw
):
    """Build a Page with sensible defaults."""
    return Page(
        id=page_id,
        folder_id=folder_id,
        name=name or page_id,
        content=content,
        created_at=kw.pop("created_at", 1000),
        updated_at=updated_at,
    )


@pytest.fixture
def remote():
    """A shared in-memory remote namespace."""
    return MemoryRemoteStore()


@pytest.fixture
def make_replica(remote):
    """Factory for replicas (local store + orchestrator) on one remote."""

    def _make(local=None, state=None):
        local = local if local is not None else MemoryLocalStore()
        orchestrator = SyncOrchestrator(
            local, remote, state=state or SyncState()
        )
        return local, orchestrator

    return _make
