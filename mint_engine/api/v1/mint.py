# mint_engine/api/v1/mint.py
from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from mint_engine.core.clock import as_utc, utcnow
from mint_engine.core.deps import get_fulfillment_service, get_reservation_service, request_id
from mint_engine.core.deps_idempotency import require_idempotency_key
from mint_engine.core.errors import MintError, to_http
from mint_engine.db.session import get_db
from mint_engine.models.reservation import Reservation
from mint_engine.schemas.mint import (
    CompleteRequest,
    CompleteResponse,
    ReserveRequest,
    ReserveResponse,
    StatusResponse,
)
from mint_engine.services.fulfillment_service import FulfillmentService, item_view
from mint_engine.services.reservation_service import (
    ReservationService,
    effective_status,
    price_breakdown,
)

router = APIRouter(prefix="/mint")


# ---------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------


def _reservation_view(db: Session, svc: ReservationService, r: Reservation) -> Dict[str, Any]:
    return {
        "idempotencyKey": r.idempotency_key,
        "collectionId": str(r.collection_id),
        "phaseId": str(r.phase_id) if r.phase_id else None,
        "wallet": r.wallet,
        "quantity": r.quantity,
        "itemIds": [str(i) for i in r.item_ids],
        "items": [item_view(i) for i in svc.reserved_items(db, r)],
        "status": effective_status(r, utcnow()),
        "expiresAt": as_utc(r.expires_at).isoformat(),
        "signature": r.signature,
        "failureReason": r.failure_reason,
    }


# ---------------------------------------------------------------------
# POST /v1/mint/reserve
# ---------------------------------------------------------------------


@router.post("/reserve", response_model=ReserveResponse)
def reserve_mint(
    payload: ReserveRequest,
    idempotency_key: str = Depends(require_idempotency_key),
    rid: Optional[str] = Depends(request_id),
    db: Session = Depends(get_db),
    svc: ReservationService = Depends(get_reservation_service),
):
    try:
        outcome = svc.reserve(
            db,
            idempotency_key=idempotency_key,
            collection_ref=payload.collection_ref,
            quantity=payload.quantity,
            wallet=payload.wallet,
            phase_id=payload.phaseId,
            proof=payload.allowlistProof,
            request_id=rid,
        )
    except MintError as e:
        raise to_http(e)

    r = outcome.reservation
    return {
        "reservation": _reservation_view(db, svc, r),
        "priceBreakdown": price_breakdown(r),
        "transaction": {
            "base64": r.transaction_b64,
            "recentBlockhash": r.recent_blockhash,
            "feePayer": r.wallet,
        },
        "replayed": outcome.replayed,
    }


# ---------------------------------------------------------------------
# POST /v1/mint/complete
# ---------------------------------------------------------------------


@router.post("/complete", response_model=CompleteResponse)
def complete_mint(
    payload: CompleteRequest,
    idempotency_key: str = Depends(require_idempotency_key),
    rid: Optional[str] = Depends(request_id),
    db: Session = Depends(get_db),
    svc: FulfillmentService = Depends(get_fulfillment_service),
):
    try:
        result = svc.complete(
            db,
            idempotency_key=idempotency_key,
            signature=payload.signature,
            wallet=payload.wallet,
            item_ids=payload.itemIds,
            request_id=rid,
        )
    except MintError as e:
        raise to_http(e)
    return result.to_dict()


# ---------------------------------------------------------------------
# GET /v1/mint/status/{idempotency_key}
# ---------------------------------------------------------------------


@router.get("/status/{idempotency_key}", response_model=StatusResponse)
def mint_status(
    idempotency_key: str,
    db: Session = Depends(get_db),
    svc: ReservationService = Depends(get_reservation_service),
):
    try:
        r = svc.get_reservation(db, idempotency_key)
        status = svc.get_status(db, idempotency_key)
    except MintError as e:
        raise to_http(e)
    return {
        **status,
        "reservation": _reservation_view(db, svc, r),
        "priceBreakdown": price_breakdown(r),
    }


# ---------------------------------------------------------------------
# GET /v1/mint/price
# ---------------------------------------------------------------------


@router.get("/price")
def mint_price(
    request: Request,
    collection: str = Query(..., min_length=1),
    quantity: int = Query(1, ge=1),
    wallet: Optional[str] = Query(None),
    phaseId: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    svc: ReservationService = Depends(get_reservation_service),
):
    proof = request.query_params.getlist("proof") or None
    try:
        quote = svc.quote(
            db,
            collection_ref=collection,
            quantity=quantity,
            wallet=wallet,
            phase_id=phaseId,
            proof=proof,
        )
    except MintError as e:
        raise to_http(e)
    return {**quote.to_dict(), "rates": svc.oracle.get_rates().to_dict()}
