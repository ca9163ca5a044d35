#mint_engine/models/reservation.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import (
    String,
    DateTime,
    Integer,
    BigInteger,
    Numeric,
    Boolean,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from mint_engine.db.base import Base, JSONType
from mint_engine.models.enums import ReservationStatus


class Reservation(Base):
    """
    Idempotency record for a mint request.

    Keyed by the client-supplied Idempotency-Key: a retried request with the
    same key replays this row instead of allocating again.
    """
    __tablename__ = "mint_reservations"

    idempotency_key: Mapped[str] = mapped_column(String(128), primary_key=True)

    collection_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("collections.id", ondelete="CASCADE"),
        nullable=False,
    )
    phase_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("mint_phases.id", ondelete="SET NULL"),
        nullable=True,
    )

    wallet: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    item_ids_json: Mapped[List[Any]] = mapped_column(JSONType, nullable=False, default=list)

    request_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, server_default=text(f"'{ReservationStatus.pending.value}'")
    )

    # price breakdown captured at reservation time
    unit_price_sol: Mapped[Decimal] = mapped_column(Numeric(20, 9), nullable=False, server_default=text("0"))
    platform_fee_usd: Mapped[Decimal] = mapped_column(Numeric(20, 4), nullable=False, server_default=text("0"))
    platform_fee_lamports: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default=text("0"))
    creator_payment_lamports: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default=text("0"))
    price_degraded: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))

    transaction_b64: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recent_blockhash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    signature: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    @property
    def item_ids(self) -> List[uuid.UUID]:
        return [uuid.UUID(str(i)) for i in (self.item_ids_json or [])]

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_mint_reservations_quantity_positive"),
        CheckConstraint(
            "status IN ('pending', 'transaction_ready', 'confirmed', 'failed', 'expired')",
            name="ck_mint_reservations_status",
        ),
        Index("ix_mint_reservations_sweep", "status", "expires_at"),
        Index("ix_mint_reservations_wallet_phase", "phase_id", "wallet", "status"),
    )
