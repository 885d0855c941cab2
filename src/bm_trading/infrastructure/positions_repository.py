# src/bm_trading/infrastructure/positions_repository.py
"""Positions persistence, one row per (wallet, bond)."""
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_trading.domain.models import Position

_GET_FOR_UPDATE_SQL = text("""
    SELECT wallet_address, bond_id, quantity_scaled, avg_price_scaled, total_cost
    FROM positions
    WHERE wallet_address = :wallet AND bond_id = :bond_id
    FOR UPDATE
""")

_UPSERT_SQL = text("""
    INSERT INTO positions (wallet_address, bond_id, quantity_scaled, avg_price_scaled, total_cost)
    VALUES (:wallet, :bond_id, :quantity_scaled, :avg_price_scaled, :total_cost)
    ON CONFLICT (wallet_address, bond_id) DO UPDATE
    SET quantity_scaled = EXCLUDED.quantity_scaled,
        avg_price_scaled = EXCLUDED.avg_price_scaled,
        total_cost = EXCLUDED.total_cost,
        updated_at = NOW()
""")

_DELETE_SQL = text("""
    DELETE FROM positions WHERE wallet_address = :wallet AND bond_id = :bond_id
""")


def _row_to_position(row: Any) -> Position:
    return Position(
        wallet_address=row.wallet_address,
        bond_id=row.bond_id,
        quantity_scaled=int(row.quantity_scaled),
        avg_price_scaled=int(row.avg_price_scaled or 0),
        total_cost=int(row.total_cost or 0),
    )


class PositionsRepository:
    async def get_for_update(
        self, db: AsyncSession, wallet: str, bond_id: int
    ) -> Position | None:
        row = (
            await db.execute(_GET_FOR_UPDATE_SQL, {"wallet": wallet, "bond_id": bond_id})
        ).fetchone()
        return _row_to_position(row) if row else None

    async def upsert(self, db: AsyncSession, position: Position) -> None:
        await db.execute(
            _UPSERT_SQL,
            {
                "wallet": position.wallet_address,
                "bond_id": position.bond_id,
                "quantity_scaled": position.quantity_scaled,
                "avg_price_scaled": position.avg_price_scaled,
                "total_cost": position.total_cost,
            },
        )

    async def delete(self, db: AsyncSession, wallet: str, bond_id: int) -> None:
        await db.execute(_DELETE_SQL, {"wallet": wallet, "bond_id": bond_id})
