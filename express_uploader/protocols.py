"""
Protocols (Interfaces) for Dependency Inversion.

The orchestrators only depend on these, so tests and alternative clients
can be injected.
"""
import asyncio
from typing import BinaryIO, Iterable, List, Optional, Protocol, runtime_checkable

from .models import FilterOutcome, UploadStatusRecord


@runtime_checkable
class IExpressClient(Protocol):
    """Interface for the remote order operations."""

    def inspect_url(self, eid: str) -> str:
        ...

    async def get_status(self, order_id: str) -> List[UploadStatusRecord]:
        """Earlier uploads of an order; raises if undeterminable."""
        ...

    async def filter(self, all_paths: Iterable[str]) -> Optional[FilterOutcome]:
        """Server classification of the order files, None if not recognized."""
        ...

    async def qualify(
        self,
        outcome: FilterOutcome,
        order_file: BinaryIO,
        design_file: Optional[BinaryIO] = None,
    ) -> str:
        """Empty string if the order qualifies, otherwise the reason."""
        ...

    async def upload(
        self,
        archive_name: str,
        archive: BinaryIO,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Upload an order archive; raises UploadCancelledError when cancelled."""
        ...
