#mint_engine/models/mint_transaction.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Integer,
    BigInteger,
    Numeric,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from mint_engine.db.base import Base


class MintTransaction(Base):
    """
    Append-only record of one confirmed mint.
    One row per ledger signature; never UPDATEd.
    """
    __tablename__ = "mint_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    collection_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("collections.id", ondelete="RESTRICT"),
        nullable=False,
    )
    phase_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("mint_phases.id", ondelete="SET NULL"),
        nullable=True,
    )
    reservation_key: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("mint_reservations.idempotency_key", ondelete="RESTRICT"),
        nullable=False,
    )

    buyer_wallet: Mapped[str] = mapped_column(String(64), nullable=False)
    signature: Mapped[str] = mapped_column(String(128), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paid_sol: Mapped[Decimal] = mapped_column(Numeric(20, 9), nullable=False)
    platform_fee_usd: Mapped[Decimal] = mapped_column(Numeric(20, 4), nullable=False)
    platform_fee_lamports: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("signature", name="uq_mint_transactions_signature"),
        UniqueConstraint("reservation_key", name="uq_mint_transactions_reservation"),
        CheckConstraint("quantity > 0", name="ck_mint_transactions_quantity_positive"),
        CheckConstraint("amount_paid_sol >= 0", name="ck_mint_transactions_amount_nonneg"),
        Index("ix_mint_transactions_collection", "collection_id", "created_at"),
        Index("ix_mint_transactions_buyer", "buyer_wallet"),
    )
