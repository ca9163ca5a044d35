# mint_engine/api/v1/phases.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from mint_engine.core.deps import get_collection_service
from mint_engine.core.errors import MintError, ValidationError, to_http
from mint_engine.db.session import get_db
from mint_engine.schemas.collections import AllowListProof
from mint_engine.services import allow_list
from mint_engine.services.collection_service import CollectionService

router = APIRouter(prefix="/phases")


@router.get("/{phase_id}/proof", response_model=AllowListProof)
def allow_list_proof(
    phase_id: uuid.UUID,
    wallet: str = Query(..., min_length=32, max_length=64),
    db: Session = Depends(get_db),
    svc: CollectionService = Depends(get_collection_service),
):
    """
    Merkle proof a wallet submits with its reservation for an allow-listed phase.
    """
    try:
        phase = svc.get_phase(db, phase_id)
        if not phase.is_allow_list or not phase.merkle_root:
            raise ValidationError("Phase has no allow list.", details={"phaseId": str(phase_id)})
        try:
            canonical = allow_list.canonical_address(wallet)
        except ValueError:
            raise ValidationError("wallet is not a valid Solana address.")
        proof = svc.allow_list_proof(phase, canonical)
    except MintError as e:
        raise to_http(e)
    return {"phaseId": str(phase.id), "wallet": canonical, "merkleRoot": phase.merkle_root, "proof": proof}
