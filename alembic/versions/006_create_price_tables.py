"""006: create price_history and oracle_updates tables

Revision ID: 006
Revises: 005
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE price_history (
            id              BIGSERIAL   PRIMARY KEY,
            market_id       BIGINT      NOT NULL REFERENCES markets (id),
            price_scaled    BIGINT      NOT NULL,
            source          TEXT        NOT NULL DEFAULT 'oracle',
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_price_history_price   CHECK (price_scaled > 0),
            CONSTRAINT ck_price_history_source  CHECK (
                source IN ('oracle', 'trade', 'manual', 'aspero', 'fallback')
            )
        );
    """)
    op.execute(
        "CREATE INDEX idx_price_history_market ON price_history (market_id, created_at DESC);"
    )

    op.execute("""
        CREATE TABLE oracle_updates (
            id                  BIGSERIAL   PRIMARY KEY,
            market_id           BIGINT      NOT NULL REFERENCES markets (id),
            old_price_scaled    BIGINT,
            new_price_scaled    BIGINT      NOT NULL,
            source              TEXT        NOT NULL DEFAULT 'aspero',
            tx_signature        TEXT,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_oracle_updates_new_price CHECK (new_price_scaled > 0)
        );
    """)
    op.execute(
        "CREATE INDEX idx_oracle_updates_market ON oracle_updates (market_id, created_at DESC);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS oracle_updates CASCADE;")
    op.execute("DROP TABLE IF EXISTS price_history CASCADE;")
