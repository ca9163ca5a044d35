from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from mint_engine.models.audit_log import AuditLog


class AuditAction:
    # Reservation lifecycle
    MINT_RESERVED = "MINT_RESERVED"
    MINT_CONFIRMED = "MINT_CONFIRMED"
    MINT_LATE_CONFIRMED = "MINT_LATE_CONFIRMED"
    MINT_PAYMENT_FAILED = "MINT_PAYMENT_FAILED"
    MINT_PAYMENT_PENDING = "MINT_PAYMENT_PENDING"
    RESERVATION_EXPIRED = "RESERVATION_EXPIRED"

    # Collection lifecycle
    COLLECTION_ACTIVATED = "COLLECTION_ACTIVATED"
    COLLECTION_COMPLETED = "COLLECTION_COMPLETED"


class AuditService:
    def write(
        self,
        db: Session,
        *,
        action: str,
        collection_id: Optional[uuid.UUID] = None,
        reservation_key: Optional[str] = None,
        wallet: Optional[str] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Adds the row to the caller's unit of work; the caller commits.
        Audit rows must land atomically with the state change they describe.
        """
        row = AuditLog(
            collection_id=collection_id,
            reservation_key=reservation_key,
            wallet=wallet,
            action=action,
            request_id=request_id,
            details_json=details or {},
        )
        db.add(row)
        return row
