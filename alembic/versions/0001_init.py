from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "positions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("token_mint", sa.String(64), index=True),
        sa.Column("state", sa.String(16), index=True),
        sa.Column("entry_amount_in", sa.String(80), nullable=False),
        sa.Column("entry_amount_out", sa.String(80), nullable=False),
        sa.Column("entry_price", sa.Float, nullable=False),
        sa.Column("entry_signature", sa.String(96)),
        sa.Column("exit_amount_out", sa.String(80)),
        sa.Column("exit_signature", sa.String(96)),
        sa.Column("profit", sa.BigInteger),
        sa.Column("failed_exit_attempts", sa.Integer, default=0),
        sa.Column("opened_at", sa.DateTime, nullable=False),
        sa.Column("closed_at", sa.DateTime),
    )
    op.create_table(
        "ledger_deltas",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("position_id", sa.Integer, index=True),
        sa.Column("wallet", sa.String(64), nullable=False),
        sa.Column("delta", sa.BigInteger, nullable=False),
        sa.Column("delivered", sa.Boolean, default=False, index=True),
        sa.Column("attempts", sa.Integer, default=0),
        sa.Column("last_error", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )


def downgrade():
    op.drop_table("ledger_deltas")
    op.drop_table("positions")
