"""Merge and diff utilities for the reconciliation stages.

Two primitives are shared by the folder and page stages:

* ``diff_by_timestamp`` -- compares two keyed collections (local rows and
  remote index entries) by ``updated_at`` and says which side should move
  where.  Comparisons are strict; equal timestamps mean "no change".
* ``merge_tombstones`` -- last-writer-wins union of two tombstone logs.

Neither function performs I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Iterable, Protocol, TypeVar

from .models import Tombstone


class _Stamped(Protocol):
    @property
    def id(self) -> str: ...

    @property
    def updated_at(self) -> int: ...


L = TypeVar("L", bound=_Stamped)
R = TypeVar("R", bound=_Stamped)


@dataclass
class ReconcilePlan(Generic[L, R]):
    """Outcome of ``diff_by_timestamp``.

    Attributes:
        to_upload: Local items that are missing remotely or newer.
        to_download: Remote items that are missing locally or newer.
        pruned: Ids present remotely but covered by a tombstone.
    """

    to_upload: list[L] = field(default_factory=list)
    to_download: list[R] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.to_upload or self.to_download or self.pruned)


def diff_by_timestamp(
    local: Iterable[L],
    remote: Iterable[R],
    tombstoned: set[str] | frozenset[str] = frozenset(),
) -> ReconcilePlan[L, R]:
    """Decide the direction of every id present on either side.

    Ids in *tombstoned* never move: local rows are left for the tombstone
    stage to delete and remote entries are reported as ``pruned``.
    """
    plan: ReconcilePlan[L, R] = ReconcilePlan()
    local_by_id = {item.id: item for item in local}
    remote_by_id = {item.id: item for item in remote}

    for item_id, item in local_by_id.items():
        if item_id in tombstoned:
            continue
        other = remote_by_id.get(item_id)
        if other is None or item.updated_at > other.updated_at:
            plan.to_upload.append(item)

    for item_id, item in remote_by_id.items():
        if item_id in tombstoned:
            plan.pruned.append(item_id)
            continue
        other = local_by_id.get(item_id)
        if other is None or item.updated_at > other.updated_at:
            plan.to_download.append(item)

    return plan


def merge_tombstones(
    *collections: Iterable[Tombstone],
) -> list[Tombstone]:
    """Union *collections* by entity id, keeping the latest ``deleted_at``.

    The result is sorted by entity id so the serialized snapshot is
    stable across runs.
    """
    latest: dict[str, int] = {}
    for collection in collections:
        for tombstone in collection:
            current = latest.get(tombstone.entity_id)
            if current is None or tombstone.deleted_at > current:
                latest[tombstone.entity_id] = tombstone.deleted_at
    return [
        Tombstone(entity_id=entity_id, deleted_at=deleted_at)
        for entity_id, deleted_at in sorted(latest.items())
    ]


def tombstone_ids(*collections: Iterable[Tombstone]) -> set[str]:
    """Return every entity id named by *collections*."""
    return {t.entity_id for c in collections for t in c}
