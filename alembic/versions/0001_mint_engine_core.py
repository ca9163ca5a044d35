"""mint engine core tables

Revision ID: 0001_mint_engine_core
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_mint_engine_core'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "collections",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("collection_mint_address", sa.String(length=64), nullable=False, unique=True),
        sa.Column("creator_wallet", sa.String(length=64), nullable=False),
        sa.Column("royalty_percentage", sa.Numeric(5, 2), server_default=sa.text("0"), nullable=False),
        sa.Column("total_supply", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), server_default=sa.text("'draft'"), nullable=False),
        sa.Column("minted_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("total_supply > 0", name="ck_collections_total_supply_positive"),
        sa.CheckConstraint(
            "minted_count >= 0 AND minted_count <= total_supply",
            name="ck_collections_minted_count_bounds",
        ),
        sa.CheckConstraint(
            "status IN ('draft', 'active', 'completed', 'archived')",
            name="ck_collections_status",
        ),
        sa.CheckConstraint(
            "royalty_percentage >= 0 AND royalty_percentage <= 100",
            name="ck_collections_royalty_range",
        ),
    )
    op.create_index("ix_collections_status", "collections", ["status"])

    op.create_table(
        "mint_phases",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "collection_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("collections.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("price_sol", sa.Numeric(20, 9), server_default=sa.text("0"), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_allow_list", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("mint_limit", sa.Integer(), nullable=True),
        sa.Column(
            "allow_list_json",
            postgresql.JSONB,
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column("merkle_root", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("price_sol >= 0", name="ck_mint_phases_price_nonneg"),
        sa.CheckConstraint("end_time IS NULL OR end_time > start_time", name="ck_mint_phases_window"),
        sa.CheckConstraint("mint_limit IS NULL OR mint_limit > 0", name="ck_mint_phases_limit_positive"),
    )
    op.create_index("ix_mint_phases_collection_start", "mint_phases", ["collection_id", "start_time"])

    op.create_table(
        "items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "collection_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("collections.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("image_uri", sa.String(length=512), nullable=True),
        sa.Column("item_index", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(length=16), server_default=sa.text("'unsold'"), nullable=False),
        sa.Column("reservation_key", sa.String(length=128), nullable=True),
        sa.Column("owner_wallet", sa.String(length=64), nullable=True),
        sa.Column("mint_signature", sa.String(length=128), nullable=True),
        sa.Column("minted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("collection_id", "item_index", name="uq_items_collection_index"),
        sa.CheckConstraint("item_index >= 0", name="ck_items_index_nonneg"),
        sa.CheckConstraint("state IN ('unsold', 'reserved', 'minted')", name="ck_items_state"),
        sa.CheckConstraint(
            "(state = 'minted') = (owner_wallet IS NOT NULL AND mint_signature IS NOT NULL)",
            name="ck_items_minted_attribution",
        ),
        sa.CheckConstraint(
            "(state = 'reserved') = (reservation_key IS NOT NULL)",
            name="ck_items_reservation_key",
        ),
    )
    op.create_index("ix_items_claim", "items", ["collection_id", "state", "item_index"])
    op.create_index("ix_items_reservation_key", "items", ["reservation_key"])
    op.create_index("ix_items_mint_signature", "items", ["mint_signature"])

    op.create_table(
        "mint_reservations",
        sa.Column("idempotency_key", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column(
            "collection_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("collections.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "phase_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("mint_phases.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("wallet", sa.String(length=64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column(
            "item_ids_json",
            postgresql.JSONB,
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column("request_hash", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=32), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("unit_price_sol", sa.Numeric(20, 9), server_default=sa.text("0"), nullable=False),
        sa.Column("platform_fee_usd", sa.Numeric(20, 4), server_default=sa.text("0"), nullable=False),
        sa.Column("platform_fee_lamports", sa.BigInteger(), server_default=sa.text("0"), nullable=False),
        sa.Column("creator_payment_lamports", sa.BigInteger(), server_default=sa.text("0"), nullable=False),
        sa.Column("price_degraded", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("transaction_b64", sa.Text(), nullable=True),
        sa.Column("recent_blockhash", sa.String(length=64), nullable=True),
        sa.Column("signature", sa.String(length=128), nullable=True),
        sa.Column("failure_reason", sa.String(length=256), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_mint_reservations_quantity_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'transaction_ready', 'confirmed', 'failed', 'expired')",
            name="ck_mint_reservations_status",
        ),
    )
    op.create_index("ix_mint_reservations_sweep", "mint_reservations", ["status", "expires_at"])
    op.create_index(
        "ix_mint_reservations_wallet_phase", "mint_reservations", ["phase_id", "wallet", "status"]
    )

    op.create_table(
        "mint_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "collection_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("collections.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "phase_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("mint_phases.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "reservation_key",
            sa.String(length=128),
            sa.ForeignKey("mint_reservations.idempotency_key", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("buyer_wallet", sa.String(length=64), nullable=False),
        sa.Column("signature", sa.String(length=128), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("amount_paid_sol", sa.Numeric(20, 9), nullable=False),
        sa.Column("platform_fee_usd", sa.Numeric(20, 4), nullable=False),
        sa.Column("platform_fee_lamports", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("signature", name="uq_mint_transactions_signature"),
        sa.UniqueConstraint("reservation_key", name="uq_mint_transactions_reservation"),
        sa.CheckConstraint("quantity > 0", name="ck_mint_transactions_quantity_positive"),
        sa.CheckConstraint("amount_paid_sol >= 0", name="ck_mint_transactions_amount_nonneg"),
    )
    op.create_index("ix_mint_transactions_collection", "mint_transactions", ["collection_id", "created_at"])
    op.create_index("ix_mint_transactions_buyer", "mint_transactions", ["buyer_wallet"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("collection_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reservation_key", sa.String(length=128), nullable=True),
        sa.Column("wallet", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column(
            "details_json",
            postgresql.JSONB,
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_audit_logs_collection", "audit_logs", ["collection_id", "created_at"])
    op.create_index("ix_audit_logs_reservation", "audit_logs", ["reservation_key"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade():
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_reservation", table_name="audit_logs")
    op.drop_index("ix_audit_logs_collection", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_mint_transactions_buyer", table_name="mint_transactions")
    op.drop_index("ix_mint_transactions_collection", table_name="mint_transactions")
    op.drop_table("mint_transactions")

    op.drop_index("ix_mint_reservations_wallet_phase", table_name="mint_reservations")
    op.drop_index("ix_mint_reservations_sweep", table_name="mint_reservations")
    op.drop_table("mint_reservations")

    op.drop_index("ix_items_mint_signature", table_name="items")
    op.drop_index("ix_items_reservation_key", table_name="items")
    op.drop_index("ix_items_claim", table_name="items")
    op.drop_table("items")

    op.drop_index("ix_mint_phases_collection_start", table_name="mint_phases")
    op.drop_table("mint_phases")

    op.drop_index("ix_collections_status", table_name="collections")
    op.drop_table("collections")
