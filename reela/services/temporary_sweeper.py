"""Background cleanup of expired temporary data.

Anonymous artifacts are uploaded with ``expires-at`` object metadata and
are not tracked in the record store, so the object store is swept
periodically for temporary objects past their expiry. The same loop drops
expired entries from the attachment store.
"""

import asyncio
from typing import Protocol

import structlog

from reela.services.attachment_store import AttachmentStore

log = structlog.get_logger(__name__)


class SweepableStore(Protocol):
    async def delete_expired_temporary(self) -> int: ...


async def sweep_once(objects: SweepableStore, attachments: AttachmentStore | None = None) -> int:
    """Run one cleanup pass and return the number of objects deleted."""
    deleted = await objects.delete_expired_temporary()
    evicted = attachments.evict_expired() if attachments is not None else 0
    if deleted or evicted:
        log.info("temporary_sweep_completed", objects_deleted=deleted, attachments_evicted=evicted)
    return deleted


async def sweep_temporary_artifacts_loop(
    objects: SweepableStore,
    interval_seconds: int,
    attachments: AttachmentStore | None = None,
) -> None:
    """Background task: sweep expired temporary data every ``interval_seconds``.

    Runs until cancelled by application shutdown. Errors are logged and do
    not stop the loop.
    """
    log.info("temporary_sweep_loop_started", interval_seconds=interval_seconds)
    while True:
        try:
            await sweep_once(objects, attachments)
        except Exception as e:
            log.error("temporary_sweep_failed", error=str(e), error_type=type(e).__name__)
        await asyncio.sleep(interval_seconds)
