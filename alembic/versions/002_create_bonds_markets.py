"""002: create bonds and markets tables

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE bonds (
            id              BIGSERIAL       PRIMARY KEY,
            bond_mint       TEXT            NOT NULL,
            isin            TEXT,
            issuer          TEXT            NOT NULL,
            name            TEXT            NOT NULL,
            coupon_rate     NUMERIC(5,2)    NOT NULL,
            maturity_date   DATE            NOT NULL,
            face_value      NUMERIC(15,2)   NOT NULL,
            decimals        INT             NOT NULL DEFAULT 6,
            total_supply    BIGINT          NOT NULL,
            status          TEXT            NOT NULL DEFAULT 'active',
            listed_yield    NUMERIC(5,2),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_bonds_bond_mint   UNIQUE (bond_mint),
            CONSTRAINT uq_bonds_isin        UNIQUE (isin),
            CONSTRAINT ck_bonds_coupon      CHECK (coupon_rate >= 0),
            CONSTRAINT ck_bonds_face_value  CHECK (face_value > 0),
            CONSTRAINT ck_bonds_supply      CHECK (total_supply > 0),
            CONSTRAINT ck_bonds_status      CHECK (
                status IN ('active', 'paused', 'matured', 'defaulted')
            )
        );
    """)
    op.execute("CREATE INDEX idx_bonds_status ON bonds (status);")
    op.execute("""
        CREATE TRIGGER trg_bonds_updated_at
            BEFORE UPDATE ON bonds
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)

    op.execute("""
        CREATE TABLE markets (
            id                      BIGSERIAL   PRIMARY KEY,
            bond_id                 BIGINT      NOT NULL REFERENCES bonds (id) ON DELETE CASCADE,
            market_pda              TEXT        NOT NULL,
            price_per_token_scaled  BIGINT      NOT NULL,
            vault_bond_account      TEXT        NOT NULL,
            vault_usdc_account      TEXT        NOT NULL,
            admin_pubkey            TEXT        NOT NULL,
            paused                  BOOLEAN     NOT NULL DEFAULT FALSE,
            created_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_markets_market_pda    UNIQUE (market_pda),
            CONSTRAINT ck_markets_price         CHECK (price_per_token_scaled > 0)
        );
    """)
    op.execute("CREATE INDEX idx_markets_bond_id ON markets (bond_id);")
    op.execute("CREATE INDEX idx_markets_paused ON markets (paused);")
    op.execute("""
        CREATE TRIGGER trg_markets_updated_at
            BEFORE UPDATE ON markets
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)
    op.execute("COMMENT ON COLUMN markets.price_per_token_scaled IS 'quote units * 1_000_000';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS markets CASCADE;")
    op.execute("DROP TABLE IF EXISTS bonds CASCADE;")
