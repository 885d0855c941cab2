"""MarketRepository: concrete MarketRepositoryProtocol.

All queries use raw text() SQL (no ORM). Markets are always read joined with
their bond, since tradability depends on both `markets.paused` and
`bonds.status`.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.bm_market.domain.models import Market

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_MARKET_COLUMNS = """
    m.id, m.bond_id, m.market_pda, m.price_per_token_scaled, m.paused,
    m.vault_bond_account, m.vault_usdc_account, m.admin_pubkey,
    b.bond_mint, b.status AS bond_status, b.isin, b.name, b.issuer
"""

_GET_MARKET_SQL = text(f"""
    SELECT {_MARKET_COLUMNS}
    FROM markets m
    JOIN bonds b ON b.id = m.bond_id
    WHERE m.id = :market_id
""")

_GET_MARKET_FOR_UPDATE_SQL = text(f"""
    SELECT {_MARKET_COLUMNS}
    FROM markets m
    JOIN bonds b ON b.id = m.bond_id
    WHERE m.id = :market_id
    FOR UPDATE OF m
""")

_LIST_PRICEABLE_SQL = text(f"""
    SELECT {_MARKET_COLUMNS}
    FROM markets m
    JOIN bonds b ON b.id = m.bond_id
    WHERE m.paused = FALSE AND b.status = 'active'
    ORDER BY m.id
""")

_UPDATE_PRICE_SQL = text("""
    UPDATE markets
    SET price_per_token_scaled = :price_scaled, updated_at = NOW()
    WHERE id = :market_id
""")

_SET_PAUSED_SQL = text("""
    UPDATE markets
    SET paused = :paused, updated_at = NOW()
    WHERE id = :market_id
""")

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------

def _row_to_market(row: object) -> Market:
    return Market(
        id=row.id,  # type: ignore[attr-defined]
        bond_id=row.bond_id,  # type: ignore[attr-defined]
        market_pda=row.market_pda,  # type: ignore[attr-defined]
        price_per_token_scaled=int(row.price_per_token_scaled),  # type: ignore[attr-defined]
        paused=bool(row.paused),  # type: ignore[attr-defined]
        vault_bond_account=row.vault_bond_account,  # type: ignore[attr-defined]
        vault_usdc_account=row.vault_usdc_account,  # type: ignore[attr-defined]
        admin_pubkey=row.admin_pubkey,  # type: ignore[attr-defined]
        bond_mint=row.bond_mint,  # type: ignore[attr-defined]
        bond_status=row.bond_status,  # type: ignore[attr-defined]
        isin=row.isin,  # type: ignore[attr-defined]
        name=row.name,  # type: ignore[attr-defined]
        issuer=row.issuer,  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class MarketRepository:
    async def get_market_by_id(self, db: AsyncSession, market_id: int) -> Market | None:
        row = (await db.execute(_GET_MARKET_SQL, {"market_id": market_id})).fetchone()
        return _row_to_market(row) if row else None

    async def get_market_for_update(
        self, db: AsyncSession, market_id: int
    ) -> Market | None:
        row = (
            await db.execute(_GET_MARKET_FOR_UPDATE_SQL, {"market_id": market_id})
        ).fetchone()
        return _row_to_market(row) if row else None

    async def list_priceable_markets(self, db: AsyncSession) -> list[Market]:
        rows = (await db.execute(_LIST_PRICEABLE_SQL)).fetchall()
        return [_row_to_market(r) for r in rows]

    async def update_price(self, db: AsyncSession, market_id: int, price_scaled: int) -> None:
        await db.execute(
            _UPDATE_PRICE_SQL, {"market_id": market_id, "price_scaled": price_scaled}
        )

    async def set_paused(self, db: AsyncSession, market_id: int, paused: bool) -> None:
        await db.execute(_SET_PAUSED_SQL, {"market_id": market_id, "paused": paused})
