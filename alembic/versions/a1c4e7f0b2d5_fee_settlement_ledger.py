"""Fee settlement ledger — fee claims, distributions, claim locks, launched tokens.

Both claim programs share the tables, keyed by the ``program`` column.
``fee_claims`` and ``distributions`` are append-only.

Revision ID: a1c4e7f0b2d5
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op

revision = "a1c4e7f0b2d5"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "fee_claims",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("program", sa.String(20), nullable=False),
        sa.Column("token_id", sa.String(64), nullable=False),
        sa.Column("claimed_sol", sa.Numeric(20, 9), nullable=False),
        sa.Column("signature", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_fee_claims_program_token", "fee_claims", ["program", "token_id"])

    op.create_table(
        "distributions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("program", sa.String(20), nullable=False),
        sa.Column("token_id", sa.String(64), nullable=False),
        sa.Column("beneficiary_key", sa.String(64), nullable=False),
        sa.Column("payout_wallet", sa.String(64), nullable=True),
        sa.Column("amount_sol", sa.Numeric(20, 9), nullable=False),
        sa.Column("distribution_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("signature", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    # Cooldown lookup: latest completed payout per beneficiary
    op.create_index(
        "idx_distributions_beneficiary",
        "distributions",
        ["program", "beneficiary_key", "status", "created_at"],
    )
    op.create_index("idx_distributions_program_token", "distributions", ["program", "token_id"])

    op.create_table(
        "claim_locks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("program", sa.String(20), nullable=False),
        sa.Column("lock_key", sa.String(128), nullable=False),
        sa.Column("holder", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("program", "lock_key", name="uq_claim_locks_program_key"),
    )

    op.create_table(
        "launched_tokens",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("program", sa.String(20), nullable=False),
        sa.Column("mint_address", sa.String(64), nullable=True),
        sa.Column("creator_handle", sa.String(64), nullable=False),
        sa.Column("creator_wallet", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_launched_tokens_creator", "launched_tokens", ["program", "creator_handle"])


def downgrade() -> None:
    op.drop_index("idx_launched_tokens_creator", table_name="launched_tokens")
    op.drop_table("launched_tokens")
    op.drop_table("claim_locks")
    op.drop_index("idx_distributions_program_token", table_name="distributions")
    op.drop_index("idx_distributions_beneficiary", table_name="distributions")
    op.drop_table("distributions")
    op.drop_index("idx_fee_claims_program_token", table_name="fee_claims")
    op.drop_table("fee_claims")
