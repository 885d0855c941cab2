"""003: create trades table

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE trades (
            id              BIGSERIAL   PRIMARY KEY,
            tx_signature    TEXT        NOT NULL,
            market_id       BIGINT      NOT NULL REFERENCES markets (id),
            user_wallet     TEXT        NOT NULL,
            side            TEXT        NOT NULL,
            amount          BIGINT      NOT NULL,
            price_scaled    BIGINT      NOT NULL,
            total_value     BIGINT      NOT NULL,
            status          TEXT        NOT NULL DEFAULT 'pending',
            block_height    BIGINT,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            confirmed_at    TIMESTAMPTZ,
            CONSTRAINT uq_trades_tx_signature   UNIQUE (tx_signature),
            CONSTRAINT ck_trades_side           CHECK (side IN ('buy', 'sell')),
            CONSTRAINT ck_trades_amount         CHECK (amount > 0),
            CONSTRAINT ck_trades_price          CHECK (price_scaled > 0),
            CONSTRAINT ck_trades_total_value    CHECK (total_value >= 0),
            CONSTRAINT ck_trades_status         CHECK (
                status IN ('pending', 'confirmed', 'failed')
            )
        );
    """)
    op.execute("CREATE INDEX idx_trades_market_id ON trades (market_id, created_at DESC);")
    op.execute("CREATE INDEX idx_trades_user_wallet ON trades (user_wallet, created_at DESC);")
    op.execute("CREATE INDEX idx_trades_pending ON trades (status) WHERE status = 'pending';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS trades CASCADE;")
