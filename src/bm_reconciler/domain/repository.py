"""Repository Protocol for system_events.

Trading and pricing append audit rows through the same Protocol the
reconciler reads them back with.
"""

from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_reconciler.domain.models import SystemEvent


class SystemEventRepositoryProtocol(Protocol):
    async def list_unprocessed(
        self, db: AsyncSession, event_types: tuple[str, ...], limit: int
    ) -> list[SystemEvent]: ...

    async def mark_processed(self, db: AsyncSession, event_id: int, result: str) -> None: ...

    async def insert_event(
        self,
        db: AsyncSession,
        event_type: str,
        entity_id: str | None,
        tx_signature: str | None,
        data: dict[str, Any],
        processed: bool = False,
    ) -> int: ...

    async def signature_known(self, db: AsyncSession, tx_signature: str) -> bool: ...
