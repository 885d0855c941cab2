"""004: create positions table

Revision ID: 004
Revises: 003
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE positions (
            id                  BIGSERIAL   PRIMARY KEY,
            wallet_address      TEXT        NOT NULL,
            bond_id             BIGINT      NOT NULL REFERENCES bonds (id),
            quantity_scaled     BIGINT      NOT NULL DEFAULT 0,
            avg_price_scaled    BIGINT      NOT NULL DEFAULT 0,
            total_cost          BIGINT      NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_positions_wallet_bond UNIQUE (wallet_address, bond_id),
            CONSTRAINT ck_positions_quantity    CHECK (quantity_scaled >= 0)
        );
    """)
    op.execute("CREATE INDEX idx_positions_wallet ON positions (wallet_address);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS positions CASCADE;")
