#mint_engine/models/item.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Integer,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mint_engine.db.base import Base
from mint_engine.models.enums import ItemState


class Item(Base):
    __tablename__ = "items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    collection_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("collections.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    image_uri: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    item_index: Mapped[int] = mapped_column(Integer, nullable=False)

    state: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text(f"'{ItemState.unsold.value}'")
    )
    reservation_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    owner_wallet: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    mint_signature: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    minted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    collection = relationship("Collection", back_populates="items")

    __table_args__ = (
        UniqueConstraint("collection_id", "item_index", name="uq_items_collection_index"),
        CheckConstraint("item_index >= 0", name="ck_items_index_nonneg"),
        CheckConstraint("state IN ('unsold', 'reserved', 'minted')", name="ck_items_state"),
        # owner + signature exist iff minted
        CheckConstraint(
            "(state = 'minted') = (owner_wallet IS NOT NULL AND mint_signature IS NOT NULL)",
            name="ck_items_minted_attribution",
        ),
        CheckConstraint(
            "(state = 'reserved') = (reservation_key IS NOT NULL)",
            name="ck_items_reservation_key",
        ),
        Index("ix_items_claim", "collection_id", "state", "item_index"),
        Index("ix_items_reservation_key", "reservation_key"),
        Index("ix_items_mint_signature", "mint_signature"),
    )
