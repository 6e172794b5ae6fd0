"""Local and remote replica adapters."""

from .http import HttpRemoteStore
from .local import JsonFileLocalStore, LocalStore, MemoryLocalStore
from .remote import DirectoryRemoteStore, MemoryRemoteStore, RemoteStore

__all__ = [
    "DirectoryRemoteStore",
    "HttpRemoteStore",
    "JsonFileLocalStore",
    "LocalStore",
    "MemoryLocalStore",
    "MemoryRemoteStore",
    "RemoteStore",
]
