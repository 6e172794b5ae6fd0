"""Per-replica sync archive.

Records, for every page, the content hash this replica last agreed on
with the remote store.  Stage E uses it to tell "only the remote changed"
(plain download) from "both sides changed" (conflict) without a shared
clock: if the local hash still equals the archived hash, the local copy
was not edited since the last sync.

Each remote namespace gets its own state file (``sync_{namespace}.json``)
in ``state_dir``.  When ``state_dir`` is ``None`` the archive lives only
in memory for the lifetime of the object.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Dict-based state** -- state is a plain ``dict`` so the orchestrator
  can mutate it freely during a run and persist once per stage.
* **Advisory only** -- a missing or stale entry never loses data; it only
  makes the orchestrator fall back to the conservative conflict path.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class SyncState:
    """Load, save, and query the sync archive for a namespace.

    Args:
        state_dir: Directory for state files, or ``None`` for an
            in-memory archive.
    """

    def __init__(self, state_dir: Path | None = None) -> None:
        self._state_dir = state_dir
        self._memory: dict[str, dict] = {}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, namespace: str) -> dict:
        """Load the archive for *namespace*.

        Returns:
            The state dict.  If nothing was saved yet an empty state with
            ``version=1`` is returned.
        """
        if self._state_dir is None:
            saved = self._memory.get(namespace)
            if saved is not None:
                return copy.deepcopy(saved)
            return self._empty(namespace)

        path = self._state_path(namespace)
        if not path.exists():
            return self._empty(namespace)
        try:
            with open(path, encoding="utf-8") as fh:
                state = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning(
                "Ignoring unreadable sync state %s: %s", path, exc
            )
            return self._empty(namespace)
        if state.get("version") != STATE_VERSION:
            logger.warning(
                "Ignoring sync state %s with version %r",
                path,
                state.get("version"),
            )
            return self._empty(namespace)
        state.setdefault("entries", {})
        return state

    def save(self, namespace: str, state: dict) -> None:
        """Persist the archive atomically.

        The ``last_sync`` field is set to the current UTC ISO 8601
        timestamp before writing.
        """
        state["last_sync"] = datetime.now(timezone.utc).isoformat()

        if self._state_dir is None:
            self._memory[namespace] = copy.deepcopy(state)
            return

        self._state_dir.mkdir(parents=True, exist_ok=True)
        target = self._state_path(namespace)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state, fh, indent=2)
            os.replace(tmp_path, target)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def clear(self, namespace: str) -> None:
        """Forget everything archived for *namespace*."""
        if self._state_dir is None:
            self._memory.pop(namespace, None)
            return
        self._state_path(namespace).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Entry helpers
    # ------------------------------------------------------------------

    def archived_hash(self, state: dict, page_id: str) -> str | None:
        """Return the hash last agreed on for *page_id*, if any."""
        entry = state.get("entries", {}).get(page_id)
        return entry.get("content_hash") if entry else None

    def record(
        self,
        state: dict,
        page_id: str,
        content_hash: str,
        updated_at: int,
    ) -> None:
        """Upsert the archive entry for *page_id*.  Mutates *state*."""
        state.setdefault("entries", {})[page_id] = {
            "content_hash": content_hash,
            "updated_at": updated_at,
            "last_synced": datetime.now(timezone.utc).isoformat(),
        }

    def forget(self, state: dict, page_id: str) -> None:
        """Remove *page_id* from the archive.  No-op if absent."""
        state.get("entries", {}).pop(page_id, None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _empty(namespace: str) -> dict:
        return {
            "version": STATE_VERSION,
            "last_sync": None,
            "namespace": namespace,
            "entries": {},
        }

    def _state_path(self, namespace: str) -> Path:
        """Return the path to the state file for *namespace*."""
        assert self._state_dir is not None
        return self._state_dir / f"sync_{namespace}.json"
