"""Chain order resolution for video extensions.

A chain is an original video (implicit position 0) plus the clips attached
to either side of it. Clips appended at the end count up from 1, clips
prepended at the start count down from -1.
"""

from dataclasses import dataclass
from typing import Protocol

import structlog

from reela.models import ExtensionSide, Video

log = structlog.get_logger(__name__)


class ChainRecordStore(Protocol):
    async def get_artifact(self, artifact_id: str) -> Video | None: ...

    async def get_extreme_chain_order(
        self, parent_file_id: str, side: ExtensionSide
    ) -> int | None: ...


def next_chain_order(extreme: int | None, side: ExtensionSide) -> int:
    """Position one step beyond ``extreme`` on ``side``, starting at 1 or -1."""
    if side is ExtensionSide.END:
        return 1 if extreme is None else extreme + 1
    return -1 if extreme is None else extreme - 1


@dataclass(frozen=True)
class ChainPosition:
    """Where a new clip sits.

    Attributes:
        parent_id: ``file_id`` of the parent, or None when the parent is
            unknown and the clip starts a fresh chain.
        chain_order: Signed position relative to the parent.
    """

    parent_id: str | None
    chain_order: int


class ChainOrderResolver:
    def __init__(self, records: ChainRecordStore):
        self.records = records

    async def locate(self, parent_artifact_id: str, side: ExtensionSide) -> ChainPosition:
        """Compute the position of a new clip next to ``parent_artifact_id``."""
        parent = await self.records.get_artifact(parent_artifact_id)
        if parent is None:
            log.info("chain_parent_not_found", parent_artifact_id=parent_artifact_id)
            return ChainPosition(parent_id=None, chain_order=0)

        extreme = await self.records.get_extreme_chain_order(parent.file_id, side)
        order = next_chain_order(extreme, side)

        log.info(
            "chain_order_resolved",
            parent_file_id=parent.file_id,
            side=side.value,
            previous_extreme=extreme,
            chain_order=order,
        )
        return ChainPosition(parent_id=parent.file_id, chain_order=order)

    async def resolve(self, parent_artifact_id: str, side: ExtensionSide) -> int:
        return (await self.locate(parent_artifact_id, side)).chain_order
