# mint_engine/services/expiry_sweeper.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from mint_engine.core.clock import as_utc, utcnow
from mint_engine.core.config import get_settings
from mint_engine.core.errors import MintError
from mint_engine.core.logging import configure_logging
from mint_engine.db.session import SessionLocal
from mint_engine.models.enums import ItemState, OPEN_RESERVATION_STATUSES, ReservationStatus
from mint_engine.models.item import Item
from mint_engine.models.reservation import Reservation
from mint_engine.services.audit_service import AuditAction, AuditService
from mint_engine.services.collection_service import CollectionService
from mint_engine.services.fulfillment_service import FulfillmentService
from mint_engine.services.ledger_client import get_ledger_client

logger = logging.getLogger(__name__)

# failed reservations still hold their Items until swept
_EXPIRABLE_STATUSES = OPEN_RESERVATION_STATUSES + (ReservationStatus.failed.value,)


def expire_reservation(
    db: Session,
    idempotency_key: str,
    *,
    now: Optional[datetime] = None,
    request_id: Optional[str] = None,
) -> bool:
    """
    Mark one reservation expired and return its reserved Items to unsold.

    The status transition is a guarded UPDATE, so it cannot race a
    confirmation holding the reservation row lock: whichever commits first
    wins and the other becomes a no-op. Caller commits.
    """
    now = now or utcnow()
    row = db.execute(
        update(Reservation)
        .where(
            Reservation.idempotency_key == idempotency_key,
            Reservation.status.in_(_EXPIRABLE_STATUSES),
        )
        .values(status=ReservationStatus.expired.value, updated_at=now)
        .returning(Reservation.collection_id, Reservation.wallet, Reservation.quantity)
        .execution_options(synchronize_session=False)
    ).first()
    if row is None:
        return False

    released = db.execute(
        update(Item)
        .where(
            Item.reservation_key == idempotency_key,
            Item.state == ItemState.reserved.value,
        )
        .values(state=ItemState.unsold.value, reservation_key=None, updated_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount

    AuditService().write(
        db,
        action=AuditAction.RESERVATION_EXPIRED,
        collection_id=row.collection_id,
        reservation_key=idempotency_key,
        wallet=row.wallet,
        request_id=request_id,
        details={"released": released, "quantity": row.quantity},
    )
    logger.info(
        "reservation_expired",
        extra={"reservation_key": idempotency_key, "released": released},
    )
    return True


@dataclass
class SweepResult:
    reconciled_keys: List[str] = field(default_factory=list)
    expired_keys: List[str] = field(default_factory=list)
    activated_collections: List[str] = field(default_factory=list)


class ExpirySweeper:
    """
    Periodic compensating action for the reserve -> confirm saga:
    finishes mints whose reported payment has since landed on the ledger,
    reclaims abandoned reservations and activates collections whose first
    phase has started.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        fulfillment: Optional[FulfillmentService] = None,
    ):
        self.session_factory = session_factory
        self.fulfillment = fulfillment

    def due_keys(self, db: Session, now: datetime) -> List[str]:
        return list(
            db.execute(
                select(Reservation.idempotency_key)
                .where(
                    or_(
                        (Reservation.status.in_(OPEN_RESERVATION_STATUSES)) & (Reservation.expires_at < now),
                        Reservation.status == ReservationStatus.failed.value,
                    )
                )
                .order_by(Reservation.expires_at.asc())
            )
            .scalars()
            .all()
        )

    def reconcile(self, db: Session, *, now: Optional[datetime] = None) -> List[str]:
        """
        Complete signed reservations whose payment the ledger now reports as
        confirmed. Runs before expiry so a paid reservation is not reclaimed.
        """
        if self.fulfillment is None:
            return []
        now = as_utc(now) if now else utcnow()
        confirmed: List[str] = []
        for key in self.fulfillment.signed_open_keys(db):
            try:
                if self.fulfillment.reconcile(db, key, now=now) is not None:
                    confirmed.append(key)
            except MintError as exc:
                db.rollback()
                logger.warning(
                    "reservation_reconcile_failed",
                    extra={"reservation_key": key, "code": exc.code, "error": str(exc)},
                )
        return confirmed

    def sweep(self, db: Session, *, now: Optional[datetime] = None) -> List[str]:
        """
        Expire every overdue reservation; one transaction per reservation.
        """
        now = as_utc(now) if now else utcnow()
        expired: List[str] = []
        for key in self.due_keys(db, now):
            try:
                if expire_reservation(db, key, now=now):
                    expired.append(key)
                db.commit()
            except Exception:
                db.rollback()
                logger.exception("reservation_expiry_failed", extra={"reservation_key": key})
        return expired

    def run_once(self, *, now: Optional[datetime] = None) -> SweepResult:
        db = self.session_factory()
        try:
            result = SweepResult()
            result.reconciled_keys = self.reconcile(db, now=now)
            result.expired_keys = self.sweep(db, now=now)
            activated = CollectionService().activate_due(db, now=now)
            result.activated_collections = [str(c.id) for c in activated]
            return result
        finally:
            db.close()

    def run_forever(self, interval_seconds: float, stop_event: Optional[threading.Event] = None) -> None:
        stop_event = stop_event or threading.Event()
        logger.info("expiry_sweeper_started", extra={"interval_seconds": interval_seconds})
        while not stop_event.is_set():
            try:
                result = self.run_once()
                if result.reconciled_keys or result.expired_keys or result.activated_collections:
                    logger.info(
                        "expiry_sweep_completed",
                        extra={
                            "reconciled": len(result.reconciled_keys),
                            "expired": len(result.expired_keys),
                            "activated": len(result.activated_collections),
                        },
                    )
            except Exception as exc:  # noqa: BLE001
                logger.warning("expiry_sweep_failed", extra={"error": str(exc)}, exc_info=True)
            stop_event.wait(interval_seconds)


def start_background_sweeper(
    session_factory: Callable[[], Session],
    interval_seconds: float,
    *,
    fulfillment: Optional[FulfillmentService] = None,
) -> threading.Event:
    stop_event = threading.Event()
    thread = threading.Thread(
        target=ExpirySweeper(session_factory, fulfillment=fulfillment).run_forever,
        args=(interval_seconds, stop_event),
        name="expiry-sweeper",
        daemon=True,
    )
    thread.start()
    return stop_event


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    sweeper = ExpirySweeper(
        SessionLocal,
        fulfillment=FulfillmentService(settings, ledger=get_ledger_client()),
    )
    try:
        sweeper.run_forever(settings.sweep_interval_seconds)
    except KeyboardInterrupt:
        logger.info("expiry_sweeper_stopped")


if __name__ == "__main__":
    main()
