"""Content hashing for pages.

The hash is a cheap equality test: two replicas can tell whether their
copies of a page differ without shipping the text.  Digests are lowercase
hex SHA-256 of the UTF-8 encoded content, with no normalisation, because
content is replaced wholesale and must round-trip byte for byte.

If the digest primitive is unavailable (e.g. a locked-down OpenSSL
build) a ``fallback-<length>-<ms>`` marker is returned instead.  Such a
marker must never be used to conclude that two contents are equal;
``hashes_match()`` encodes that rule and callers should use it instead of
comparing strings directly.
"""

from __future__ import annotations

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from .models import now_ms

logger = logging.getLogger(__name__)

FALLBACK_PREFIX = "fallback-"


def content_hash(content: str) -> str:
    """Compute the SHA-256 hex digest of *content*."""
    try:
        digest = hashlib.sha256(content.encode("utf-8"))
    except ValueError as exc:
        logger.error("Failed to calculate content hash: %s", exc)
        return f"{FALLBACK_PREFIX}{len(content)}-{now_ms()}"
    return digest.hexdigest()


def is_trusted_hash(value: str | None) -> bool:
    """Return ``True`` if *value* is a real digest, not a fallback marker."""
    return bool(value) and not value.startswith(FALLBACK_PREFIX)


def hashes_match(left: str | None, right: str | None) -> bool:
    """Equality test that degrades to "changed" for untrusted hashes."""
    if not (is_trusted_hash(left) and is_trusted_hash(right)):
        return False
    return left == right


def verify_content_hash(content: str, expected: str) -> bool:
    """Return ``True`` if *content* hashes to *expected*."""
    return hashes_match(content_hash(content), expected)


def hash_many(
    items: Iterable[tuple[str, str]], max_workers: int = 8
) -> dict[str, str]:
    """Hash many ``(id, content)`` pairs concurrently.

    All digests are started at once and collected when every one has
    finished.  The pairs are independent, so ordering is irrelevant.

    Args:
        items: ``(id, content)`` pairs.  Later duplicates win.
        max_workers: Thread pool size.

    Returns:
        Mapping of id to digest.
    """
    pairs = list(items)
    if not pairs:
        return {}
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        digests = pool.map(content_hash, [content for _, content in pairs])
        return {
            item_id: digest
            for (item_id, _), digest in zip(pairs, digests)
        }
