# mint_engine/services/reservation_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mint_engine.core.clock import as_utc, utcnow
from mint_engine.core.config import Settings
from mint_engine.core.errors import (
    CollectionNotActive,
    IdempotencyConflict,
    InsufficientSupply,
    MintLimitExceeded,
    NotFound,
    ValidationError,
)
from mint_engine.core.hashing import request_hash
from mint_engine.models.collection import Collection
from mint_engine.models.enums import (
    CollectionStatus,
    ItemState,
    OPEN_RESERVATION_STATUSES,
    ReservationStatus,
)
from mint_engine.models.item import Item
from mint_engine.models.reservation import Reservation
from mint_engine.services import allow_list
from mint_engine.services.audit_service import AuditAction, AuditService
from mint_engine.services.collection_service import CollectionService
from mint_engine.services.expiry_sweeper import expire_reservation
from mint_engine.services.ledger_client import LedgerClient
from mint_engine.services.phase_resolver import ResolvedPhase, resolve_active_phase
from mint_engine.services.price_oracle import LAMPORTS_PER_SOL, PlatformFee, PriceOracleService
from mint_engine.services.transaction_builder import TransactionBuilder, sol_to_lamports

logger = logging.getLogger(__name__)

# reservations counted against a phase's per-wallet mint limit
_LIMIT_STATUSES = OPEN_RESERVATION_STATUSES + (ReservationStatus.confirmed.value,)


@dataclass
class ReservationOutcome:
    reservation: Reservation
    replayed: bool = False


@dataclass(frozen=True)
class PriceQuote:
    collection_id: uuid.UUID
    phase_id: uuid.UUID
    phase_name: str
    quantity: int
    unit_price_sol: Decimal
    fee: PlatformFee

    def to_dict(self) -> Dict[str, Any]:
        creator_lamports = sol_to_lamports(self.unit_price_sol * self.quantity)
        return {
            "collectionId": str(self.collection_id),
            "phaseId": str(self.phase_id),
            "phaseName": self.phase_name,
            **breakdown(
                quantity=self.quantity,
                unit_price_sol=self.unit_price_sol,
                platform_fee_usd=self.fee.fee_usd,
                platform_fee_lamports=self.fee.fee_lamports,
                creator_payment_lamports=creator_lamports,
                degraded=self.fee.degraded,
            ),
        }


def _lamports_to_sol(lamports: int) -> str:
    return str((Decimal(lamports) / LAMPORTS_PER_SOL).quantize(Decimal("0.000000001")))


def breakdown(
    *,
    quantity: int,
    unit_price_sol: Decimal,
    platform_fee_usd: Decimal,
    platform_fee_lamports: int,
    creator_payment_lamports: int,
    degraded: bool,
) -> Dict[str, Any]:
    total = platform_fee_lamports + creator_payment_lamports
    return {
        "quantity": quantity,
        "unitPriceSol": str(Decimal(unit_price_sol)),
        "subtotalSol": _lamports_to_sol(creator_payment_lamports),
        "platformFeeUsd": str(Decimal(platform_fee_usd)),
        "platformFeeSol": _lamports_to_sol(platform_fee_lamports),
        "platformFeeLamports": platform_fee_lamports,
        "creatorPaymentLamports": creator_payment_lamports,
        "totalLamports": total,
        "totalSol": _lamports_to_sol(total),
        "priceDegraded": degraded,
    }


def price_breakdown(r: Reservation) -> Dict[str, Any]:
    return breakdown(
        quantity=r.quantity,
        unit_price_sol=r.unit_price_sol,
        platform_fee_usd=r.platform_fee_usd,
        platform_fee_lamports=int(r.platform_fee_lamports or 0),
        creator_payment_lamports=int(r.creator_payment_lamports or 0),
        degraded=bool(r.price_degraded),
    )


def effective_status(r: Reservation, now: Optional[datetime] = None) -> str:
    """
    Open reservations past their deadline read as expired even before the
    sweeper has reclaimed them.
    """
    now = now or utcnow()
    if r.status in OPEN_RESERVATION_STATUSES and as_utc(r.expires_at) <= now:
        return ReservationStatus.expired.value
    return r.status


class ReservationService:
    """
    Step one of the mint saga: price the request, claim Items and hand back
    an unsigned payment transaction. Keyed by Idempotency-Key so retries
    replay instead of allocating twice.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        oracle: PriceOracleService,
        ledger: LedgerClient,
        builder: Optional[TransactionBuilder] = None,
    ):
        self.settings = settings
        self.oracle = oracle
        self.ledger = ledger
        self.builder = builder or TransactionBuilder(settings.platform_wallet)
        self.collections = CollectionService()
        self.audit = AuditService()

    # ---------------------------
    # VALIDATION
    # ---------------------------

    def _validate(self, idempotency_key: str, quantity: int, wallet: str) -> str:
        if not idempotency_key or len(idempotency_key) > 128:
            raise ValidationError("Idempotency-Key must be 1-128 characters.")
        max_q = self.settings.max_quantity_per_request
        if quantity < 1 or quantity > max_q:
            raise ValidationError(
                f"quantity must be between 1 and {max_q}.",
                details={"quantity": quantity},
            )
        try:
            return allow_list.canonical_address(wallet)
        except ValueError:
            raise ValidationError("wallet is not a valid Solana address.", details={"wallet": wallet})

    def _resolve(
        self,
        db: Session,
        collection: Collection,
        *,
        now: datetime,
        wallet: str,
        phase_id: Optional[uuid.UUID],
        proof: Optional[Sequence[str]],
    ) -> ResolvedPhase:
        phases = self.collections.get_phases(db, collection.id)
        return resolve_active_phase(
            phases,
            now=now,
            requested_phase_id=phase_id,
            wallet=wallet,
            proof=proof,
        )

    def _ensure_active(self, db: Session, collection: Collection, now: datetime) -> None:
        if collection.status == CollectionStatus.draft.value:
            # first phase may have opened since the last sweep
            self.collections.activate_due(db, now=now, collection_id=collection.id)
            db.refresh(collection)
        if collection.status != CollectionStatus.active.value:
            raise CollectionNotActive(
                f"Collection is {collection.status}.",
                details={"collectionId": str(collection.id), "status": collection.status},
            )

    def _lock_reservation(self, db: Session, idempotency_key: str) -> Optional[Reservation]:
        return db.execute(
            select(Reservation)
            .where(Reservation.idempotency_key == idempotency_key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _minted_or_held(self, db: Session, *, phase_id: uuid.UUID, wallet: str, exclude_key: str) -> int:
        return int(
            db.execute(
                select(func.coalesce(func.sum(Reservation.quantity), 0)).where(
                    Reservation.phase_id == phase_id,
                    Reservation.wallet == wallet,
                    Reservation.status.in_(_LIMIT_STATUSES),
                    Reservation.idempotency_key != exclude_key,
                )
            ).scalar_one()
        )

    # ---------------------------
    # READS
    # ---------------------------

    def get_reservation(self, db: Session, idempotency_key: str) -> Reservation:
        r = db.get(Reservation, idempotency_key)
        if not r:
            raise NotFound("Reservation not found.", details={"idempotencyKey": idempotency_key})
        return r

    def get_status(self, db: Session, idempotency_key: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Status surface for polling clients. The unsigned transaction is only
        handed out while the reservation can still be confirmed.
        """
        r = self.get_reservation(db, idempotency_key)
        status = effective_status(r, now)
        body: Dict[str, Any] = {"status": status, "transaction": None}
        if status == ReservationStatus.transaction_ready.value:
            body["transaction"] = {
                "base64": r.transaction_b64,
                "recentBlockhash": r.recent_blockhash,
                "feePayer": r.wallet,
            }
        return body

    def availability(self, db: Session, collection_ref: str) -> Dict[str, int]:
        collection = self.collections.get_collection(db, collection_ref)
        return self.collections.stats(db, collection)

    def reserved_items(self, db: Session, reservation: Reservation) -> List[Item]:
        ids = reservation.item_ids
        if not ids:
            return []
        return list(
            db.execute(select(Item).where(Item.id.in_(ids)).order_by(Item.item_index.asc()))
            .scalars()
            .all()
        )

    def quote(
        self,
        db: Session,
        *,
        collection_ref: str,
        quantity: int,
        wallet: Optional[str] = None,
        phase_id: Optional[uuid.UUID] = None,
        proof: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None,
    ) -> PriceQuote:
        """
        Price a prospective mint without touching inventory.
        """
        now = as_utc(now) if now else utcnow()
        max_q = self.settings.max_quantity_per_request
        if quantity < 1 or quantity > max_q:
            raise ValidationError(f"quantity must be between 1 and {max_q}.")
        canonical = None
        if wallet:
            try:
                canonical = allow_list.canonical_address(wallet)
            except ValueError:
                raise ValidationError("wallet is not a valid Solana address.")

        collection = self.collections.get_collection(db, collection_ref)
        resolved = self._resolve(db, collection, now=now, wallet=canonical, phase_id=phase_id, proof=proof)
        return PriceQuote(
            collection_id=collection.id,
            phase_id=resolved.phase.id,
            phase_name=resolved.phase.name,
            quantity=quantity,
            unit_price_sol=resolved.unit_price_sol,
            fee=self.oracle.calculate_platform_fee(),
        )

    # ---------------------------
    # RESERVE
    # ---------------------------

    def reserve(
        self,
        db: Session,
        *,
        idempotency_key: str,
        collection_ref: str,
        quantity: int,
        wallet: str,
        phase_id: Optional[uuid.UUID] = None,
        proof: Optional[Sequence[str]] = None,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReservationOutcome:
        now = as_utc(now) if now else utcnow()
        wallet = self._validate(idempotency_key, quantity, wallet)
        collection = self.collections.get_collection(db, collection_ref)

        req_hash = request_hash(
            {
                "collectionId": str(collection.id),
                "quantity": quantity,
                "wallet": wallet,
                "phaseId": str(phase_id) if phase_id else None,
            }
        )

        existing = db.get(Reservation, idempotency_key)
        if existing is not None:
            if existing.request_hash != req_hash:
                raise IdempotencyConflict(
                    "Idempotency-Key reuse with different parameters is not allowed.",
                    details={"idempotencyKey": idempotency_key},
                )
            if existing.status == ReservationStatus.confirmed.value:
                return ReservationOutcome(existing, replayed=True)
            if effective_status(existing, now) in OPEN_RESERVATION_STATUSES:
                return ReservationOutcome(existing, replayed=True)
            if existing.status != ReservationStatus.expired.value:
                # lapsed or failed: release its Items before re-arming the key
                expire_reservation(db, idempotency_key, now=now, request_id=request_id)
                db.commit()
                db.refresh(existing)

        self._ensure_active(db, collection, now)
        resolved = self._resolve(db, collection, now=now, wallet=wallet, phase_id=phase_id, proof=proof)

        # upstream calls happen before any row is touched
        fee = self.oracle.calculate_platform_fee()
        blockhash = self.ledger.get_latest_blockhash()

        try:
            return self._claim(
                db,
                collection_id=collection.id,
                idempotency_key=idempotency_key,
                req_hash=req_hash,
                quantity=quantity,
                wallet=wallet,
                resolved=resolved,
                fee=fee,
                blockhash=blockhash,
                request_id=request_id,
                now=now,
            )
        except IntegrityError:
            db.rollback()
            winner = db.get(Reservation, idempotency_key)
            if winner is None or winner.request_hash != req_hash:
                raise IdempotencyConflict(
                    "Idempotency-Key reuse with different parameters is not allowed.",
                    details={"idempotencyKey": idempotency_key},
                )
            logger.info("reservation_race_replayed", extra={"reservation_key": idempotency_key})
            return ReservationOutcome(winner, replayed=True)
        except Exception:
            db.rollback()
            raise

    def _claim(
        self,
        db: Session,
        *,
        collection_id: uuid.UUID,
        idempotency_key: str,
        req_hash: str,
        quantity: int,
        wallet: str,
        resolved: ResolvedPhase,
        fee: PlatformFee,
        blockhash: str,
        request_id: Optional[str],
        now: datetime,
    ) -> ReservationOutcome:
        # serializes claims per collection
        collection = self.collections.get_collection_for_update(db, collection_id)

        # a request with the same key may have committed since the unlocked check
        r = self._lock_reservation(db, idempotency_key)
        if r is not None:
            if r.request_hash != req_hash:
                raise IdempotencyConflict(
                    "Idempotency-Key reuse with different parameters is not allowed.",
                    details={"idempotencyKey": idempotency_key},
                )
            live = effective_status(r, now) in OPEN_RESERVATION_STATUSES
            if live or r.status == ReservationStatus.confirmed.value:
                db.commit()
                logger.info("reservation_race_replayed", extra={"reservation_key": idempotency_key})
                return ReservationOutcome(r, replayed=True)
            if r.status != ReservationStatus.expired.value:
                expire_reservation(db, idempotency_key, now=now, request_id=request_id)
                db.refresh(r)

        if collection.status != CollectionStatus.active.value:
            raise CollectionNotActive(
                f"Collection is {collection.status}.",
                details={"collectionId": str(collection.id), "status": collection.status},
            )

        phase = resolved.phase
        if phase.mint_limit:
            held = self._minted_or_held(db, phase_id=phase.id, wallet=wallet, exclude_key=idempotency_key)
            if held + quantity > phase.mint_limit:
                raise MintLimitExceeded(
                    f"Phase '{phase.name}' allows {phase.mint_limit} per wallet.",
                    details={"mintLimit": phase.mint_limit, "alreadyHeld": held, "requested": quantity},
                )

        if r is None:
            r = Reservation(idempotency_key=idempotency_key, request_hash=req_hash)
            db.add(r)
        r.collection_id = collection.id
        r.phase_id = phase.id
        r.wallet = wallet
        r.quantity = quantity
        r.item_ids_json = []
        r.status = ReservationStatus.pending.value
        r.signature = None
        r.failure_reason = None
        r.confirmed_at = None
        r.expires_at = now + timedelta(seconds=self.settings.reservation_ttl_seconds)
        r.updated_at = now
        db.flush()

        next_unsold = (
            select(Item.id)
            .where(Item.collection_id == collection.id, Item.state == ItemState.unsold.value)
            .order_by(Item.item_index.asc())
            .limit(quantity)
        )
        claimed = db.execute(
            update(Item)
            .where(Item.id.in_(next_unsold))
            .values(state=ItemState.reserved.value, reservation_key=idempotency_key, updated_at=now)
            .returning(Item.id, Item.item_index)
            .execution_options(synchronize_session=False)
        ).all()

        if len(claimed) < quantity:
            db.rollback()
            available = self.collections.count_by_state(db, collection_id)[ItemState.unsold.value]
            raise InsufficientSupply(
                f"Only {available} item(s) available.",
                details={"requested": quantity, "available": available},
            )

        item_ids = [str(row.id) for row in sorted(claimed, key=lambda row: row.item_index)]

        tx = self.builder.build(
            buyer_wallet=wallet,
            creator_wallet=collection.creator_wallet,
            quantity=quantity,
            unit_price_sol=resolved.unit_price_sol,
            fee_lamports=fee.fee_lamports,
            recent_blockhash=blockhash,
        )

        r.item_ids_json = item_ids
        r.unit_price_sol = resolved.unit_price_sol
        r.platform_fee_usd = fee.fee_usd
        r.platform_fee_lamports = tx.fee_lamports
        r.creator_payment_lamports = tx.creator_payment_lamports
        r.price_degraded = fee.degraded
        r.transaction_b64 = tx.transaction_b64
        r.recent_blockhash = tx.recent_blockhash
        r.status = ReservationStatus.transaction_ready.value

        self.audit.write(
            db,
            action=AuditAction.MINT_RESERVED,
            collection_id=collection.id,
            reservation_key=idempotency_key,
            wallet=wallet,
            request_id=request_id,
            details={
                "phaseId": str(phase.id),
                "quantity": quantity,
                "itemIds": item_ids,
                "totalLamports": tx.total_lamports,
                "priceDegraded": fee.degraded,
            },
        )
        db.commit()
        db.refresh(r)

        logger.info(
            "mint_reserved",
            extra={
                "reservation_key": idempotency_key,
                "collection_id": str(collection.id),
                "quantity": quantity,
            },
        )
        return ReservationOutcome(r, replayed=False)
