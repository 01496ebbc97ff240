"""001: create p2p_events table

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE p2p_events (
            id              BIGSERIAL       PRIMARY KEY,
            market_id       VARCHAR(64)     NOT NULL,
            event_type      VARCHAR(40)     NOT NULL,
            payload         JSONB           NOT NULL,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_p2p_event_type CHECK (
                event_type IN (
                    'SUPPLIED',
                    'BORROWED',
                    'WITHDRAWN',
                    'REPAID',
                    'LIQUIDATED',
                    'P2P_SUPPLY_DELTA_UPDATED',
                    'P2P_BORROW_DELTA_UPDATED',
                    'P2P_AMOUNTS_UPDATED',
                    'SUPPLIER_POSITION_UPDATED',
                    'BORROWER_POSITION_UPDATED'
                )
            )
        );
    """)
    op.execute("CREATE INDEX idx_p2p_events_market_time ON p2p_events (market_id, created_at);")
    op.execute("CREATE INDEX idx_p2p_events_user_id ON p2p_events USING GIN ((payload->'user_id'));")
    op.execute("COMMENT ON TABLE p2p_events IS 'P2P overlay event log, append-only';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS p2p_events CASCADE;")
