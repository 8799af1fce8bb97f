# filevents/ports/storage.py
from __future__ import annotations

from typing import Protocol
from ..domain.models import DecodedEvent, PartitionFile
from ..domain.value_types import RawRecord


class EventStore(Protocol):
    """Port for appending raw/decoded event pairs to durable storage."""

    async def save(self, raw: RawRecord, event: DecodedEvent) -> None:
        """Append one raw event and its decoded form to the current partition pair."""

    async def close(self) -> None:
        """Close any open partition files."""


class PartitionCatalog(Protocol):
    """Port used by the compactor to discover partitions and their output slots."""

    consolidated_path: str

    def list_event_partitions(self) -> list[PartitionFile]:
        """Event partitions ordered by epoch."""

    def list_compiled_partitions(self) -> list[PartitionFile]:
        """Compiled DDO partitions ordered by epoch."""

    def compiled_path(self, name: str) -> str:
        """Path of the compiled partition for event partition `name`."""
