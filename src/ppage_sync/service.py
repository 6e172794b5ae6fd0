"""Wiring from configuration to a ready ``SyncOrchestrator``.

Usage:
    from ppage_sync.service import create_orchestrator

    orchestrator = create_orchestrator()
    result = orchestrator.run()
"""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

from .config import load_config, validate_config
from .config_loader import load_hierarchical_config
from .config_schema import (
    LocalConfig,
    RemoteConfig,
    UnifiedConfig,
    build_config,
)
from .logger import setup_logging
from .store import (
    DirectoryRemoteStore,
    HttpRemoteStore,
    JsonFileLocalStore,
    LocalStore,
    MemoryLocalStore,
    MemoryRemoteStore,
    RemoteStore,
)
from .sync.engine import SyncOrchestrator
from .sync.state import SyncState

logger = logging.getLogger(__name__)


def create_remote_store(remote: RemoteConfig) -> RemoteStore:
    """Build the remote store adapter selected by ``remote.backend``."""
    if remote.backend == "http":
        if not remote.url:
            raise ValueError("http backend requires remote.url")
        return HttpRemoteStore(
            remote.url,
            namespace=remote.namespace,
            token=remote.token,
            timeout=(remote.connect_timeout, remote.read_timeout),
            verify=not remote.insecure,
        )
    if remote.backend == "directory":
        if not remote.path:
            raise ValueError("directory backend requires remote.path")
        return DirectoryRemoteStore(
            Path(remote.path).expanduser(), namespace=remote.namespace
        )
    return MemoryRemoteStore()


def create_local_store(local: LocalConfig) -> LocalStore:
    """Open the JSON-file store at ``local.path`` or an in-memory one."""
    if local.path:
        return JsonFileLocalStore(Path(local.path).expanduser())
    return MemoryLocalStore()


def create_orchestrator(
    config: UnifiedConfig | None = None, debug: bool = False
) -> SyncOrchestrator:
    """Build a ready orchestrator.

    Without *config* the full chain runs: ``.env`` file, hierarchical
    YAML, environment overrides.  An explicit *config* is only
    validated.  Logging is configured from the ``logging`` section.
    """
    if config is None:
        load_dotenv()
        config = load_config(
            build_config(load_hierarchical_config()), debug=debug
        )
    else:
        config = validate_config(config)

    setup_logging(
        debug=debug,
        log_file=config.logging.file,
        log_format=config.logging.format,
        level=config.logging.level,
    )

    state_dir = config.local.state_dir
    orchestrator = SyncOrchestrator(
        local=create_local_store(config.local),
        remote=create_remote_store(config.remote),
        settings=config.sync,
        state=SyncState(Path(state_dir).expanduser()) if state_dir else None,
        namespace=config.remote.namespace,
    )
    logger.debug(
        "Orchestrator ready (backend=%s, namespace=%s)",
        config.remote.backend,
        config.remote.namespace,
    )
    return orchestrator
