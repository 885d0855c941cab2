"""005: create system_events table

Revision ID: 005
Revises: 004
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE system_events (
            id                      BIGSERIAL   PRIMARY KEY,
            event_type              TEXT        NOT NULL,
            entity_id               TEXT,
            tx_signature            TEXT,
            data                    JSONB       NOT NULL DEFAULT '{}'::jsonb,
            processed               BOOLEAN     NOT NULL DEFAULT FALSE,
            reconciliation_result   TEXT,
            created_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            processed_at            TIMESTAMPTZ,
            CONSTRAINT ck_system_events_type CHECK (
                event_type IN ('trade', 'price_update', 'market_init', 'bond_mint', 'pause', 'resume')
            ),
            CONSTRAINT ck_system_events_result CHECK (
                reconciliation_result IS NULL
                OR reconciliation_result IN ('matched', 'unmatched_timeout')
            )
        );
    """)
    op.execute("""
        CREATE INDEX idx_system_events_unprocessed
            ON system_events (created_at, id) WHERE processed = FALSE;
    """)
    op.execute("CREATE INDEX idx_system_events_tx_signature ON system_events (tx_signature);")
    op.execute("COMMENT ON TABLE system_events IS 'append-only audit log; only processed is mutated';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS system_events CASCADE;")
