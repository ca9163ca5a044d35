from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, Index, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from mint_engine.db.base import Base, JSONType


class AuditLog(Base):
    """
    Append-only operational audit of engine actions (never UPDATE).
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    collection_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    reservation_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    wallet: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    action: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. MINT_RESERVED
    request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    details_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_audit_logs_collection", "collection_id", "created_at"),
        Index("ix_audit_logs_reservation", "reservation_key"),
        Index("ix_audit_logs_action", "action"),
    )
