#mint_engine/models/collection.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String,
    DateTime,
    Integer,
    Numeric,
    CheckConstraint,
    Index,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mint_engine.db.base import Base
from mint_engine.models.enums import CollectionStatus


class Collection(Base):
    """
    A limited drop with an immutable total_supply.

    minted_count is a cache refreshed from Item state; never trust it for
    availability decisions.
    """
    __tablename__ = "collections"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    collection_mint_address: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    creator_wallet: Mapped[str] = mapped_column(String(64), nullable=False)
    royalty_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, server_default=text("0")
    )

    total_supply: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text(f"'{CollectionStatus.draft.value}'")
    )
    minted_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    items = relationship("Item", back_populates="collection", cascade="all, delete-orphan")
    phases = relationship(
        "MintPhase",
        back_populates="collection",
        cascade="all, delete-orphan",
        order_by="MintPhase.start_time",
    )

    __table_args__ = (
        CheckConstraint("total_supply > 0", name="ck_collections_total_supply_positive"),
        CheckConstraint(
            "minted_count >= 0 AND minted_count <= total_supply",
            name="ck_collections_minted_count_bounds",
        ),
        CheckConstraint(
            "status IN ('draft', 'active', 'completed', 'archived')",
            name="ck_collections_status",
        ),
        CheckConstraint(
            "royalty_percentage >= 0 AND royalty_percentage <= 100",
            name="ck_collections_royalty_range",
        ),
        Index("ix_collections_status", "status"),
    )
