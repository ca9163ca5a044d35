# mint_engine/api/v1/collections.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from mint_engine.core.clock import as_utc, utcnow
from mint_engine.core.deps import get_collection_service
from mint_engine.core.errors import MintError, to_http
from mint_engine.db.session import get_db
from mint_engine.schemas.collections import CollectionStats, PhaseList
from mint_engine.services.collection_service import CollectionService
from mint_engine.services.phase_resolver import phase_contains

router = APIRouter(prefix="/collections")


@router.get("/{collection_ref}/stats", response_model=CollectionStats)
def collection_stats(
    collection_ref: str,
    db: Session = Depends(get_db),
    svc: CollectionService = Depends(get_collection_service),
):
    """
    Counts are derived from Item state; treat them as display values.
    """
    try:
        coll = svc.get_collection(db, collection_ref)
    except MintError as e:
        raise to_http(e)
    return {"collectionId": str(coll.id), "status": coll.status, **svc.stats(db, coll)}


@router.get("/{collection_ref}/phases", response_model=PhaseList)
def collection_phases(
    collection_ref: str,
    db: Session = Depends(get_db),
    svc: CollectionService = Depends(get_collection_service),
):
    try:
        coll = svc.get_collection(db, collection_ref)
    except MintError as e:
        raise to_http(e)

    now = utcnow()
    phases = []
    for p in svc.get_phases(db, coll.id):
        end = as_utc(p.end_time)
        phases.append(
            {
                "id": str(p.id),
                "name": p.name,
                "priceSol": str(p.price_sol),
                "startTime": as_utc(p.start_time).isoformat(),
                "endTime": end.isoformat() if end else None,
                "isAllowList": bool(p.is_allow_list),
                "mintLimit": p.mint_limit,
                "merkleRoot": p.merkle_root,
                "isActive": phase_contains(p, now),
            }
        )
    return {"collectionId": str(coll.id), "phases": phases}
