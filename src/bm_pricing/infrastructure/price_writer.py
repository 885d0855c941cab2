# src/bm_pricing/infrastructure/price_writer.py
"""Append-only price tables: price_history and oracle_updates."""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

_INSERT_HISTORY_SQL = text("""
    INSERT INTO price_history (market_id, price_scaled, source)
    VALUES (:market_id, :price_scaled, :source)
""")

_INSERT_ORACLE_UPDATE_SQL = text("""
    INSERT INTO oracle_updates (market_id, old_price_scaled, new_price_scaled, source)
    VALUES (:market_id, :old_price_scaled, :new_price_scaled, :source)
    RETURNING id
""")

_SET_TX_SIGNATURE_SQL = text("""
    UPDATE oracle_updates SET tx_signature = :sig
    WHERE id = :update_id AND tx_signature IS NULL
""")


class PriceWriter:
    async def insert_history(
        self, db: AsyncSession, market_id: int, price_scaled: int, source: str
    ) -> None:
        await db.execute(
            _INSERT_HISTORY_SQL,
            {"market_id": market_id, "price_scaled": price_scaled, "source": source},
        )

    async def insert_oracle_update(
        self,
        db: AsyncSession,
        market_id: int,
        old_price_scaled: int,
        new_price_scaled: int,
        source: str,
    ) -> int:
        result = await db.execute(
            _INSERT_ORACLE_UPDATE_SQL,
            {
                "market_id": market_id,
                "old_price_scaled": old_price_scaled,
                "new_price_scaled": new_price_scaled,
                "source": source,
            },
        )
        return int(result.scalar_one())

    async def set_oracle_tx_signature(
        self, db: AsyncSession, update_id: int, tx_signature: str
    ) -> None:
        await db.execute(_SET_TX_SIGNATURE_SQL, {"update_id": update_id, "sig": tx_signature})
