# mint_engine/services/fulfillment_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from solders.signature import Signature
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mint_engine.core.clock import as_utc, utcnow
from mint_engine.core.config import Settings
from mint_engine.core.errors import (
    IdempotencyConflict,
    InvariantViolation,
    ItemsNotReserved,
    NotFound,
    PaymentNotConfirmed,
    ReservationExpired,
    ValidationError,
)
from mint_engine.models.enums import ItemState, OPEN_RESERVATION_STATUSES, ReservationStatus
from mint_engine.models.item import Item
from mint_engine.models.mint_transaction import MintTransaction
from mint_engine.models.reservation import Reservation
from mint_engine.services import allow_list
from mint_engine.services.asset_issuer import AssetIssuer, OffChainIssuer
from mint_engine.services.audit_service import AuditAction, AuditService
from mint_engine.services.collection_service import CollectionService
from mint_engine.services.ledger_client import LedgerClient, SignatureState

logger = logging.getLogger(__name__)


def item_view(item: Item) -> Dict[str, Any]:
    return {
        "id": str(item.id),
        "name": item.name,
        "imageUri": item.image_uri,
        "itemIndex": item.item_index,
    }


@dataclass
class FulfillmentResult:
    reservation_key: str
    signature: str
    wallet: str
    minted_items: List[Dict[str, Any]] = field(default_factory=list)
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reservationKey": self.reservation_key,
            "transactionSignature": self.signature,
            "wallet": self.wallet,
            "mintedItems": self.minted_items,
            "replayed": self.replayed,
        }


class FulfillmentService:
    """
    Step two of the mint saga: the buyer reports the signature of the
    payment transaction and the reserved Items become minted to them.
    Replays by signature or by reservation key return the original result.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        ledger: LedgerClient,
        issuer: Optional[AssetIssuer] = None,
    ):
        self.settings = settings
        self.ledger = ledger
        self.issuer = issuer or OffChainIssuer()
        self.collections = CollectionService()
        self.audit = AuditService()

    # ---------------------------
    # HELPERS
    # ---------------------------

    @staticmethod
    def _validate(signature: str, wallet: str) -> str:
        try:
            Signature.from_string(signature)
        except Exception:
            raise ValidationError("signature is not a valid transaction signature.")
        try:
            return allow_list.canonical_address(wallet)
        except ValueError:
            raise ValidationError("wallet is not a valid Solana address.", details={"wallet": wallet})

    def _items(self, db: Session, ids: Sequence[uuid.UUID]) -> List[Item]:
        if not ids:
            return []
        return list(
            db.execute(select(Item).where(Item.id.in_(list(ids))).order_by(Item.item_index.asc()))
            .scalars()
            .all()
        )

    def _replay(self, db: Session, r: Reservation) -> FulfillmentResult:
        return FulfillmentResult(
            reservation_key=r.idempotency_key,
            signature=r.signature or "",
            wallet=r.wallet,
            minted_items=[item_view(i) for i in self._items(db, r.item_ids)],
            replayed=True,
        )

    def _by_signature(self, db: Session, signature: str) -> Optional[MintTransaction]:
        return db.execute(
            select(MintTransaction).where(MintTransaction.signature == signature)
        ).scalar_one_or_none()

    def _mark_failed(
        self,
        db: Session,
        r: Reservation,
        *,
        signature: str,
        reason: str,
        request_id: Optional[str],
        now: datetime,
    ) -> None:
        if r.status not in OPEN_RESERVATION_STATUSES:
            return
        r.status = ReservationStatus.failed.value
        r.signature = signature
        r.failure_reason = reason[:256]
        r.updated_at = now
        self.audit.write(
            db,
            action=AuditAction.MINT_PAYMENT_FAILED,
            collection_id=r.collection_id,
            reservation_key=r.idempotency_key,
            wallet=r.wallet,
            request_id=request_id,
            details={"signature": signature, "reason": reason},
        )
        db.commit()

    def _record_pending_signature(
        self,
        db: Session,
        r: Reservation,
        *,
        signature: str,
        request_id: Optional[str],
        now: datetime,
    ) -> None:
        """
        Keep the reported signature so reconciliation can finish the mint
        once the ledger confirms it.
        """
        if r.status not in OPEN_RESERVATION_STATUSES or r.signature == signature:
            return
        r.signature = signature
        r.updated_at = now
        self.audit.write(
            db,
            action=AuditAction.MINT_PAYMENT_PENDING,
            collection_id=r.collection_id,
            reservation_key=r.idempotency_key,
            wallet=r.wallet,
            request_id=request_id,
            details={"signature": signature},
        )
        db.commit()

    # ---------------------------
    # COMPLETE
    # ---------------------------

    def complete(
        self,
        db: Session,
        *,
        idempotency_key: str,
        signature: str,
        wallet: str,
        item_ids: Optional[Sequence[uuid.UUID]] = None,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> FulfillmentResult:
        now = as_utc(now) if now else utcnow()
        wallet = self._validate(signature, wallet)

        prior = self._by_signature(db, signature)
        if prior is not None:
            if prior.reservation_key != idempotency_key:
                raise IdempotencyConflict(
                    "Signature already confirmed a different reservation.",
                    details={"signature": signature},
                )
            return self._replay(db, db.get(Reservation, idempotency_key))

        r = db.get(Reservation, idempotency_key)
        if r is None:
            raise NotFound("Reservation not found.", details={"idempotencyKey": idempotency_key})
        if r.wallet != wallet:
            raise ValidationError("wallet does not match the reservation.")
        if r.status == ReservationStatus.confirmed.value:
            if r.signature == signature:
                return self._replay(db, r)
            raise IdempotencyConflict(
                "Reservation already confirmed with a different signature.",
                details={"idempotencyKey": idempotency_key},
            )

        if self.settings.verify_signatures:
            state = self.ledger.get_signature_status(signature)
            if state == SignatureState.FAILED:
                self._mark_failed(
                    db, r, signature=signature, reason="transaction failed on ledger", request_id=request_id, now=now
                )
                raise PaymentNotConfirmed(
                    "Payment transaction failed on the ledger.",
                    details={"signature": signature},
                )
            if state != SignatureState.CONFIRMED:
                self._record_pending_signature(db, r, signature=signature, request_id=request_id, now=now)
                raise PaymentNotConfirmed(
                    "Payment transaction is not confirmed yet.",
                    details={"signature": signature},
                )

        return self._record(
            db,
            r,
            signature=signature,
            item_ids=item_ids,
            request_id=request_id,
            now=now,
        )

    def _record(
        self,
        db: Session,
        r: Reservation,
        *,
        signature: str,
        item_ids: Optional[Sequence[uuid.UUID]],
        request_id: Optional[str],
        now: datetime,
        reconciled: bool = False,
    ) -> FulfillmentResult:
        idempotency_key = r.idempotency_key
        wallet = r.wallet
        collection_id = r.collection_id
        try:
            result, minted = self._confirm(
                db,
                idempotency_key=idempotency_key,
                signature=signature,
                wallet=wallet,
                item_ids=item_ids,
                request_id=request_id,
                now=now,
                reconciled=reconciled,
            )
        except IntegrityError:
            db.rollback()
            prior = self._by_signature(db, signature)
            if prior is None or prior.reservation_key != idempotency_key:
                raise IdempotencyConflict(
                    "Signature already confirmed a different reservation.",
                    details={"signature": signature},
                )
            logger.info("confirmation_race_replayed", extra={"reservation_key": idempotency_key})
            return self._replay(db, db.get(Reservation, idempotency_key))
        except Exception:
            db.rollback()
            raise

        if minted is not None:
            collection = self.collections.get_collection(db, collection_id)
            try:
                self.issuer.issue(
                    collection=collection,
                    items=self._items(db, [uuid.UUID(i["id"]) for i in result.minted_items]),
                    wallet=wallet,
                    signature=signature,
                )
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "asset_issuance_failed",
                    extra={"reservation_key": idempotency_key, "error": str(exc)},
                    exc_info=True,
                )
        return result

    # ---------------------------
    # RECONCILE
    # ---------------------------

    def signed_open_keys(self, db: Session) -> List[str]:
        return list(
            db.execute(
                select(Reservation.idempotency_key)
                .where(
                    Reservation.status.in_(OPEN_RESERVATION_STATUSES),
                    Reservation.signature.is_not(None),
                )
                .order_by(Reservation.expires_at.asc())
            )
            .scalars()
            .all()
        )

    def reconcile(
        self,
        db: Session,
        idempotency_key: str,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[FulfillmentResult]:
        """
        Re-check a reported but unconfirmed payment against the ledger and
        finish the mint when it has landed. Returns None when nothing changed.
        """
        now = as_utc(now) if now else utcnow()
        r = db.get(Reservation, idempotency_key)
        if r is None or r.signature is None or r.status not in OPEN_RESERVATION_STATUSES:
            return None
        signature = r.signature
        state = self.ledger.get_signature_status(signature)
        if state == SignatureState.FAILED:
            self._mark_failed(
                db, r, signature=signature, reason="transaction failed on ledger", request_id=None, now=now
            )
            return None
        if state != SignatureState.CONFIRMED:
            return None
        logger.info("payment_reconciled", extra={"reservation_key": idempotency_key, "signature": signature})
        return self._record(db, r, signature=signature, item_ids=None, request_id=None, now=now, reconciled=True)

    def _confirm(
        self,
        db: Session,
        *,
        idempotency_key: str,
        signature: str,
        wallet: str,
        item_ids: Optional[Sequence[uuid.UUID]],
        request_id: Optional[str],
        now: datetime,
        reconciled: bool = False,
    ):
        """
        Returns (result, minted_count); minted_count is None for a replay.
        Lock order matches reservation: collection, then reservation, then Items.
        """
        collection_id = db.get(Reservation, idempotency_key).collection_id
        collection = self.collections.get_collection_for_update(db, collection_id)
        r = db.execute(
            select(Reservation)
            .where(Reservation.idempotency_key == idempotency_key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

        if r.status == ReservationStatus.confirmed.value:
            db.rollback()
            r = db.get(Reservation, idempotency_key)
            if r.signature == signature:
                return self._replay(db, r), None
            raise IdempotencyConflict(
                "Reservation already confirmed with a different signature.",
                details={"idempotencyKey": idempotency_key},
            )

        reserved_ids = r.item_ids
        if item_ids is not None and {str(i) for i in item_ids} != {str(i) for i in reserved_ids}:
            raise ItemsNotReserved(
                "Items do not match the reservation.",
                details={"reserved": [str(i) for i in reserved_ids]},
            )

        late = r.status == ReservationStatus.expired.value
        if late:
            # swept before the payment was reported; re-reserve only if untouched
            reclaimed = db.execute(
                update(Item)
                .where(Item.id.in_(reserved_ids), Item.state == ItemState.unsold.value)
                .values(state=ItemState.reserved.value, reservation_key=idempotency_key, updated_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount
            if reclaimed != r.quantity:
                db.rollback()
                logger.error(
                    "late_confirmation_unrecoverable",
                    extra={"reservation_key": idempotency_key, "signature": signature},
                )
                raise ReservationExpired(
                    "Reservation expired and its items were claimed by another buyer.",
                    details={"idempotencyKey": idempotency_key, "signature": signature},
                )

        minted = db.execute(
            update(Item)
            .where(
                Item.id.in_(reserved_ids),
                Item.reservation_key == idempotency_key,
                Item.state == ItemState.reserved.value,
            )
            .values(
                state=ItemState.minted.value,
                reservation_key=None,
                owner_wallet=wallet,
                mint_signature=signature,
                minted_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if minted != r.quantity:
            logger.error(
                "reserved_items_missing",
                extra={"reservation_key": idempotency_key, "expected": r.quantity, "found": minted},
            )
            raise InvariantViolation(
                "Reserved items are no longer held by this reservation.",
                details={"expected": r.quantity, "found": minted},
            )

        db.add(
            MintTransaction(
                collection_id=r.collection_id,
                phase_id=r.phase_id,
                reservation_key=idempotency_key,
                buyer_wallet=wallet,
                signature=signature,
                quantity=r.quantity,
                amount_paid_sol=Decimal(r.unit_price_sol) * r.quantity,
                platform_fee_usd=r.platform_fee_usd,
                platform_fee_lamports=r.platform_fee_lamports,
            )
        )
        r.status = ReservationStatus.confirmed.value
        r.signature = signature
        r.failure_reason = None
        r.confirmed_at = now
        r.updated_at = now
        db.flush()

        self.collections.refresh_minted_count(db, collection, now=now, request_id=request_id)
        self.audit.write(
            db,
            action=AuditAction.MINT_LATE_CONFIRMED if late else AuditAction.MINT_CONFIRMED,
            collection_id=r.collection_id,
            reservation_key=idempotency_key,
            wallet=wallet,
            request_id=request_id,
            details={
                "signature": signature,
                "itemIds": [str(i) for i in reserved_ids],
                "reconciled": reconciled,
            },
        )
        db.commit()

        logger.info(
            "mint_confirmed",
            extra={"reservation_key": idempotency_key, "signature": signature, "late": late},
        )
        items = self._items(db, reserved_ids)
        return (
            FulfillmentResult(
                reservation_key=idempotency_key,
                signature=signature,
                wallet=wallet,
                minted_items=[item_view(i) for i in items],
                replayed=False,
            ),
            minted,
        )
