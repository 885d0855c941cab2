# src/bm_trading/infrastructure/trades_repository.py
"""Trades persistence.

`tx_signature` is UNIQUE: inserts use ON CONFLICT DO NOTHING so a duplicate
submission yields no row instead of overwriting the existing one. Status
transitions only ever leave `pending`.
"""
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_trading.domain.models import Trade

_COLUMNS = """
    id, tx_signature, market_id, user_wallet, side, amount,
    price_scaled, total_value, status, block_height, created_at, confirmed_at
"""

_INSERT_PENDING_SQL = text(f"""
    INSERT INTO trades (
        tx_signature, market_id, user_wallet, side,
        amount, price_scaled, total_value, status
    ) VALUES (
        :tx_signature, :market_id, :user_wallet, :side,
        :amount, :price_scaled, :total_value, 'pending'
    )
    ON CONFLICT (tx_signature) DO NOTHING
    RETURNING {_COLUMNS}
""")

_GET_BY_SIGNATURE_SQL = text(f"SELECT {_COLUMNS} FROM trades WHERE tx_signature = :sig")

_GET_BY_ID_SQL = text(f"SELECT {_COLUMNS} FROM trades WHERE id = :trade_id")

_CONFIRM_SQL = text(f"""
    UPDATE trades
    SET status = 'confirmed', block_height = :slot, confirmed_at = :confirmed_at
    WHERE id = :trade_id AND status = 'pending'
    RETURNING {_COLUMNS}
""")

_MARK_FAILED_SQL = text(f"""
    UPDATE trades
    SET status = 'failed', block_height = :slot
    WHERE id = :trade_id AND status = 'pending'
    RETURNING {_COLUMNS}
""")


def _row_to_trade(row: Any) -> Trade:
    return Trade(
        id=row.id,
        tx_signature=row.tx_signature,
        market_id=row.market_id,
        user_wallet=row.user_wallet,
        side=row.side,
        amount=int(row.amount),
        price_scaled=int(row.price_scaled),
        total_value=int(row.total_value),
        status=row.status,
        block_height=row.block_height,
        created_at=row.created_at,
        confirmed_at=row.confirmed_at,
    )


class TradesRepository:
    async def insert_pending(
        self,
        db: AsyncSession,
        tx_signature: str,
        market_id: int,
        user_wallet: str,
        side: str,
        amount: int,
        price_scaled: int,
        total_value: int,
    ) -> Trade | None:
        row = (
            await db.execute(
                _INSERT_PENDING_SQL,
                {
                    "tx_signature": tx_signature,
                    "market_id": market_id,
                    "user_wallet": user_wallet,
                    "side": side,
                    "amount": amount,
                    "price_scaled": price_scaled,
                    "total_value": total_value,
                },
            )
        ).fetchone()
        return _row_to_trade(row) if row else None

    async def get_by_signature(self, db: AsyncSession, tx_signature: str) -> Trade | None:
        row = (await db.execute(_GET_BY_SIGNATURE_SQL, {"sig": tx_signature})).fetchone()
        return _row_to_trade(row) if row else None

    async def get_by_id(self, db: AsyncSession, trade_id: int) -> Trade | None:
        row = (await db.execute(_GET_BY_ID_SQL, {"trade_id": trade_id})).fetchone()
        return _row_to_trade(row) if row else None

    async def confirm(
        self,
        db: AsyncSession,
        trade_id: int,
        slot: int,
        confirmed_at: datetime | None,
    ) -> Trade | None:
        row = (
            await db.execute(
                _CONFIRM_SQL,
                {"trade_id": trade_id, "slot": slot, "confirmed_at": confirmed_at},
            )
        ).fetchone()
        return _row_to_trade(row) if row else None

    async def mark_failed(self, db: AsyncSession, trade_id: int, slot: int) -> Trade | None:
        row = (
            await db.execute(_MARK_FAILED_SQL, {"trade_id": trade_id, "slot": slot})
        ).fetchone()
        return _row_to_trade(row) if row else None
