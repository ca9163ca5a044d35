# mint_engine/services/collection_service.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mint_engine.core.clock import as_utc, utcnow
from mint_engine.core.errors import InvariantViolation, NotFound
from mint_engine.models.collection import Collection
from mint_engine.models.enums import CollectionStatus, ItemState
from mint_engine.models.item import Item
from mint_engine.models.mint_phase import MintPhase
from mint_engine.services import allow_list
from mint_engine.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)


class CollectionService:
    # ---------------------------
    # READS
    # ---------------------------

    def get_collection(self, db: Session, ref: Union[str, uuid.UUID]) -> Collection:
        """
        Lookup by id or by collection mint address.
        """
        coll: Optional[Collection] = None
        if isinstance(ref, uuid.UUID):
            coll = db.get(Collection, ref)
        else:
            try:
                coll = db.get(Collection, uuid.UUID(str(ref)))
            except ValueError:
                coll = None
            if coll is None:
                coll = db.execute(
                    select(Collection).where(Collection.collection_mint_address == str(ref))
                ).scalar_one_or_none()
        if not coll:
            raise NotFound("Collection not found.", details={"collection": str(ref)})
        return coll

    def get_collection_for_update(self, db: Session, collection_id: uuid.UUID) -> Collection:
        """
        Lock the collection row (FOR UPDATE) to serialize inventory claims.
        """
        coll = db.execute(
            select(Collection)
            .where(Collection.id == collection_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not coll:
            raise NotFound("Collection not found.", details={"collection": str(collection_id)})
        return coll

    def get_phases(self, db: Session, collection_id: uuid.UUID) -> List[MintPhase]:
        return list(
            db.execute(
                select(MintPhase)
                .where(MintPhase.collection_id == collection_id)
                .order_by(MintPhase.start_time.asc(), MintPhase.id.asc())
            )
            .scalars()
            .all()
        )

    def get_phase(self, db: Session, phase_id: uuid.UUID) -> MintPhase:
        phase = db.get(MintPhase, phase_id)
        if not phase:
            raise NotFound("Mint phase not found.", details={"phaseId": str(phase_id)})
        return phase

    def count_by_state(self, db: Session, collection_id: uuid.UUID) -> Dict[str, int]:
        rows = db.execute(
            select(Item.state, func.count(Item.id))
            .where(Item.collection_id == collection_id)
            .group_by(Item.state)
        ).all()
        counts = {s.value: 0 for s in ItemState}
        for state, n in rows:
            counts[state] = int(n)
        return counts

    def stats(self, db: Session, collection: Collection) -> Dict[str, int]:
        """
        Display counts derived from Item state (eventually consistent).
        """
        counts = self.count_by_state(db, collection.id)
        return {
            "totalSupply": collection.total_supply,
            "minted": counts[ItemState.minted.value],
            "reserved": counts[ItemState.reserved.value],
            "available": counts[ItemState.unsold.value],
        }

    # ---------------------------
    # MUTATIONS (caller commits)
    # ---------------------------

    def refresh_minted_count(
        self,
        db: Session,
        collection: Collection,
        *,
        now: Optional[datetime] = None,
        request_id: Optional[str] = None,
    ) -> int:
        """
        Recompute the cached minted_count from Item state.
        Sold-out active collections move to completed.
        """
        now = now or utcnow()
        minted = db.execute(
            select(func.count(Item.id)).where(
                Item.collection_id == collection.id,
                Item.state == ItemState.minted.value,
            )
        ).scalar_one()

        if minted > collection.total_supply:
            logger.error(
                "minted_count_exceeds_supply",
                extra={
                    "collection_id": str(collection.id),
                    "minted": minted,
                    "total_supply": collection.total_supply,
                },
            )
            raise InvariantViolation(
                "Minted items exceed total supply.",
                details={"collectionId": str(collection.id), "minted": minted},
            )

        collection.minted_count = minted
        collection.updated_at = now

        if minted == collection.total_supply and collection.status == CollectionStatus.active.value:
            collection.status = CollectionStatus.completed.value
            AuditService().write(
                db,
                action=AuditAction.COLLECTION_COMPLETED,
                collection_id=collection.id,
                request_id=request_id,
                details={"minted": minted},
            )
            logger.info("collection_completed", extra={"collection_id": str(collection.id)})
        return minted

    def activate_due(
        self,
        db: Session,
        *,
        now: Optional[datetime] = None,
        collection_id: Optional[uuid.UUID] = None,
    ) -> List[Collection]:
        """
        Draft collections whose earliest phase has started become active.
        With collection_id only that collection is considered. Commits.
        """
        now = as_utc(now) if now else utcnow()
        earliest = (
            select(MintPhase.collection_id, func.min(MintPhase.start_time).label("first_start"))
            .group_by(MintPhase.collection_id)
            .subquery()
        )
        stmt = (
            select(Collection.id)
            .join(earliest, earliest.c.collection_id == Collection.id)
            .where(
                Collection.status == CollectionStatus.draft.value,
                earliest.c.first_start <= now,
            )
        )
        if collection_id is not None:
            stmt = stmt.where(Collection.id == collection_id)
        due_ids = list(db.execute(stmt).scalars().all())
        due: List[Collection] = []
        for cid in due_ids:
            # re-check under lock; another worker may have moved it already
            coll = db.execute(
                select(Collection)
                .where(Collection.id == cid, Collection.status == CollectionStatus.draft.value)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if not coll:
                continue
            due.append(coll)
            coll.status = CollectionStatus.active.value
            coll.updated_at = now
            AuditService().write(
                db,
                action=AuditAction.COLLECTION_ACTIVATED,
                collection_id=coll.id,
                details={"activatedAt": now.isoformat()},
            )
            logger.info("collection_activated", extra={"collection_id": str(coll.id)})
        db.commit()
        return due

    def set_allow_list(self, db: Session, phase: MintPhase, wallets: Iterable[str]) -> str:
        """
        Store the allow list and its Merkle root on the phase. Caller commits.
        """
        commitment = allow_list.build_commitment(wallets)
        phase.allow_list_json = sorted(commitment.proofs.keys())
        phase.merkle_root = commitment.root
        phase.is_allow_list = True
        return commitment.root

    def allow_list_proof(self, phase: MintPhase, wallet: str) -> List[str]:
        return allow_list.proof_for(phase.allow_list_json or [], wallet)
