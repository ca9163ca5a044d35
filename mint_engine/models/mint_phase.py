#mint_engine/models/mint_phase.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import (
    String,
    DateTime,
    Integer,
    Numeric,
    Boolean,
    ForeignKey,
    CheckConstraint,
    Index,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mint_engine.db.base import Base, JSONType


class MintPhase(Base):
    """
    Priced, time-boxed sale window: [start_time, end_time), end_time NULL = open ended.

    Allow-list phases keep the eligible wallets plus the Merkle root derived
    from them; the root is the durable commitment proofs are checked against.
    """
    __tablename__ = "mint_phases"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    collection_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("collections.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price_sol: Mapped[Decimal] = mapped_column(Numeric(20, 9), nullable=False, server_default=text("0"))

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    is_allow_list: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    mint_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # per wallet

    allow_list_json: Mapped[List[Any]] = mapped_column(JSONType, nullable=False, default=list)
    merkle_root: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    collection = relationship("Collection", back_populates="phases")

    __table_args__ = (
        CheckConstraint("price_sol >= 0", name="ck_mint_phases_price_nonneg"),
        CheckConstraint("end_time IS NULL OR end_time > start_time", name="ck_mint_phases_window"),
        CheckConstraint("mint_limit IS NULL OR mint_limit > 0", name="ck_mint_phases_limit_positive"),
        Index("ix_mint_phases_collection_start", "collection_id", "start_time"),
    )
