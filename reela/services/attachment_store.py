"""Bounded in-memory buffer for attachments awaiting a generation request.

Attachments uploaded ahead of a generation request (or extracted from a
multipart extension request) are parked here under an opaque pointer and
handed to the attachment preprocessor by reference.

Eviction policy:
    - Every entry expires ``ttl_seconds`` after it was stored (or touched).
    - Expired entries are dropped lazily on access and eagerly by
      :meth:`AttachmentStore.evict_expired`.
    - When storing would exceed ``capacity_bytes``, expired entries are
      evicted first, then the oldest entries until the new one fits.
    - A single payload larger than the whole capacity is rejected.

The store is an explicit object passed to its consumers; the application
creates one per process in its lifespan.
"""

import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from reela.exceptions import AttachmentValidationError

log = structlog.get_logger(__name__)


@dataclass
class StoredAttachment:
    """An attachment held in memory.

    Attributes:
        data: Raw bytes.
        content_type: Declared MIME type.
        name: Original file name, if known.
        stored_at: Clock reading when stored.
        expires_at: Clock reading after which the entry is gone.
    """

    data: bytes
    content_type: str
    name: str
    stored_at: float
    expires_at: float

    @property
    def size(self) -> int:
        return len(self.data)


def generate_pointer() -> str:
    """Return a fresh opaque attachment pointer."""
    return f"att_{secrets.token_urlsafe(16)}"


class AttachmentStore:
    """Capacity-bounded, TTL-evicting attachment buffer.

    Example:
        >>> store = AttachmentStore(capacity_bytes=10_000_000, ttl_seconds=900)
        >>> pointer = store.put(b"...", "image/png", "frame.png")
        >>> store.get(pointer).content_type
        'image/png'
    """

    def __init__(
        self,
        capacity_bytes: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity_bytes <= 0:
            raise ValueError("capacity_bytes must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.capacity_bytes = capacity_bytes
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, StoredAttachment] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def total_size(self) -> int:
        return sum(entry.size for entry in self._entries.values())

    def put(
        self,
        data: bytes,
        content_type: str,
        name: str = "",
        pointer: str | None = None,
        ttl_seconds: float | None = None,
    ) -> str:
        """Store bytes and return the pointer that addresses them.

        Raises:
            AttachmentValidationError: If the payload alone exceeds capacity.
        """
        size = len(data)
        if size > self.capacity_bytes:
            raise AttachmentValidationError(
                f"Attachment too large to buffer: {size} bytes "
                f"(capacity {self.capacity_bytes} bytes)"
            )

        pointer = pointer or generate_pointer()
        self._entries.pop(pointer, None)

        if self.total_size + size > self.capacity_bytes:
            log.warning(
                "attachment_store_capacity_exceeded",
                total_size=self.total_size,
                incoming=size,
                capacity=self.capacity_bytes,
            )
            self.evict_expired()
            if self.total_size + size > self.capacity_bytes:
                self._evict_oldest(self.total_size + size - self.capacity_bytes)

        now = self._clock()
        self._entries[pointer] = StoredAttachment(
            data=data,
            content_type=content_type,
            name=name,
            stored_at=now,
            expires_at=now + (ttl_seconds or self.ttl_seconds),
        )
        log.info(
            "attachment_stored",
            pointer=pointer,
            size=size,
            content_type=content_type,
            total_files=len(self._entries),
        )
        return pointer

    def get(self, pointer: str) -> StoredAttachment | None:
        """Return the attachment, or None when unknown or expired."""
        entry = self._entries.get(pointer)
        if entry is None:
            log.warning("attachment_not_found", pointer=pointer)
            return None
        if self._clock() > entry.expires_at:
            log.warning("attachment_expired", pointer=pointer)
            del self._entries[pointer]
            return None
        return entry

    def has(self, pointer: str) -> bool:
        entry = self._entries.get(pointer)
        if entry is None:
            return False
        if self._clock() > entry.expires_at:
            del self._entries[pointer]
            return False
        return True

    def delete(self, pointer: str) -> bool:
        return self._entries.pop(pointer, None) is not None

    def touch(self, pointer: str, ttl_seconds: float | None = None) -> bool:
        """Restart the TTL of a live entry."""
        if not self.has(pointer):
            return False
        self._entries[pointer].expires_at = self._clock() + (ttl_seconds or self.ttl_seconds)
        return True

    def evict_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [p for p, entry in self._entries.items() if now > entry.expires_at]
        freed = 0
        for pointer in expired:
            freed += self._entries.pop(pointer).size
        if expired:
            log.info("attachment_store_cleanup", removed=len(expired), freed_bytes=freed)
        return len(expired)

    def _evict_oldest(self, space_needed: int) -> None:
        freed = 0
        for pointer, entry in sorted(self._entries.items(), key=lambda item: item[1].stored_at):
            del self._entries[pointer]
            freed += entry.size
            log.info("attachment_evicted_for_space", pointer=pointer, size=entry.size)
            if freed >= space_needed:
                break

    def stats(self) -> dict:
        """Summarize current contents (pointer, size, age, remaining TTL)."""
        now = self._clock()
        return {
            "total_files": len(self._entries),
            "total_size": self.total_size,
            "files": [
                {
                    "pointer": pointer,
                    "size": entry.size,
                    "age": now - entry.stored_at,
                    "ttl": max(0.0, entry.expires_at - now),
                }
                for pointer, entry in self._entries.items()
            ],
        }
