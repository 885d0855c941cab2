# src/bm_reconciler/infrastructure/events_repository.py
"""system_events persistence.

Append-only audit rows; the only mutation is flipping `processed` (with the
reconciliation result), which the reconciler alone performs.
"""
import json
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_reconciler.domain.models import SystemEvent

_LIST_UNPROCESSED_SQL = text("""
    SELECT id, event_type, entity_id, tx_signature, data, processed,
           created_at, processed_at, reconciliation_result
    FROM system_events
    WHERE processed = FALSE
      AND event_type IN :event_types
    ORDER BY created_at ASC, id ASC
    LIMIT :limit
""").bindparams(bindparam("event_types", expanding=True))

_MARK_PROCESSED_SQL = text("""
    UPDATE system_events
    SET processed = TRUE, processed_at = NOW(), reconciliation_result = :result
    WHERE id = :event_id AND processed = FALSE
""")

_INSERT_SQL = text("""
    INSERT INTO system_events (event_type, entity_id, tx_signature, data, processed)
    VALUES (:event_type, :entity_id, :tx_signature, CAST(:data AS JSONB), :processed)
    RETURNING id
""")

_SIGNATURE_KNOWN_SQL = text("""
    SELECT EXISTS (SELECT 1 FROM trades WHERE tx_signature = :sig)
        OR EXISTS (SELECT 1 FROM system_events WHERE tx_signature = :sig)
""")


def _decode_data(raw: Any) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, str):
        decoded = json.loads(raw) if raw else {}
        # Legacy rows stored a JSON string inside the JSONB column.
        if isinstance(decoded, str):
            decoded = json.loads(decoded)
        return decoded if isinstance(decoded, dict) else {}
    return dict(raw)


def _row_to_event(row: Any) -> SystemEvent:
    return SystemEvent(
        id=row.id,
        event_type=row.event_type,
        entity_id=row.entity_id,
        tx_signature=row.tx_signature,
        data=_decode_data(row.data),
        processed=bool(row.processed),
        created_at=row.created_at,
        processed_at=row.processed_at,
        reconciliation_result=row.reconciliation_result,
    )


class SystemEventRepository:
    async def list_unprocessed(
        self, db: AsyncSession, event_types: tuple[str, ...], limit: int
    ) -> list[SystemEvent]:
        rows = (
            await db.execute(
                _LIST_UNPROCESSED_SQL, {"event_types": list(event_types), "limit": limit}
            )
        ).fetchall()
        return [_row_to_event(r) for r in rows]

    async def mark_processed(self, db: AsyncSession, event_id: int, result: str) -> None:
        await db.execute(_MARK_PROCESSED_SQL, {"event_id": event_id, "result": result})

    async def insert_event(
        self,
        db: AsyncSession,
        event_type: str,
        entity_id: str | None,
        tx_signature: str | None,
        data: dict[str, Any],
        processed: bool = False,
    ) -> int:
        result = await db.execute(
            _INSERT_SQL,
            {
                "event_type": event_type,
                "entity_id": entity_id,
                "tx_signature": tx_signature,
                "data": json.dumps(data, default=str),
                "processed": processed,
            },
        )
        return int(result.scalar_one())

    async def signature_known(self, db: AsyncSession, tx_signature: str) -> bool:
        result = await db.execute(_SIGNATURE_KNOWN_SQL, {"sig": tx_signature})
        return bool(result.scalar_one())
