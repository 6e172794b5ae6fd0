"""Unified configuration schema for ppage_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the remote store, the local store, sync tuning and logging.

Usage:
    from ppage_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RemoteConfig(BaseModel):
    """Remote blob store settings.

    All fields are optional to support zero-config: env vars can supply
    them at runtime instead.
    """

    backend: Literal["memory", "directory", "http"] = Field(
        default="memory", description="Remote store implementation"
    )
    url: str | None = Field(
        default=None, description="Base URL for the http backend"
    )
    path: str | None = Field(
        default=None, description="Root directory for the directory backend"
    )
    token: str | None = Field(
        default=None, description="Bearer token for the http backend"
    )
    namespace: str = Field(
        default="ppage-app", description="Application namespace"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    connect_timeout: float = Field(
        default=10, gt=0, description="Connect timeout in seconds"
    )
    read_timeout: float = Field(
        default=60, gt=0, description="Read timeout in seconds"
    )

    model_config = {"frozen": True}


class LocalConfig(BaseModel):
    """Local replica settings.

    Attributes:
        path: JSON document holding the local store.  ``None`` keeps the
            replica in memory.
        state_dir: Directory for the sync archive.  ``None`` keeps it in
            memory.
    """

    path: str | None = Field(default=None, description="Local store file")
    state_dir: str | None = Field(
        default=None, description="Sync archive directory"
    )

    model_config = {"frozen": True}


class SyncSettings(BaseModel):
    """Tuning knobs for the orchestrator."""

    hash_workers: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Threads used to hash page content (1-64)",
    )
    conflict_label: str = Field(
        default="conflict copy",
        min_length=1,
        description="Label inserted into conflict copy names",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``"text"`` or ``"json"``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Record format"
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    local: LocalConfig = Field(default_factory=LocalConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
