"""Helpers shared by the sync engine and its async callers."""

from .async_utils import run_sync

__all__ = ["run_sync"]
