import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from mint_engine.core.clock import utcnow
from mint_engine.core.errors import NotAllowlisted, NotFound
from mint_engine.models.mint_phase import MintPhase
from mint_engine.services import allow_list
from mint_engine.services.collection_service import CollectionService
from mint_engine.tests.factories import create_collection, new_signature, new_wallet


def test_lookup_by_id_or_address(db):
    svc = CollectionService()
    coll = create_collection(db, supply=1)

    assert svc.get_collection(db, coll.id) is coll
    assert svc.get_collection(db, str(coll.id)) is coll
    assert svc.get_collection(db, coll.collection_mint_address) is coll
    with pytest.raises(NotFound):
        svc.get_collection(db, str(uuid.uuid4()))
    with pytest.raises(NotFound):
        svc.get_collection(db, "unknown-address")


def test_stats_follow_item_state(db, reservations, fulfillment):
    svc = CollectionService()
    coll = create_collection(db, supply=5)
    wallet = new_wallet()
    reservations.reserve(db, idempotency_key="a", collection_ref=str(coll.id), quantity=2, wallet=wallet)
    reservations.reserve(db, idempotency_key="b", collection_ref=str(coll.id), quantity=1, wallet=new_wallet())
    fulfillment.complete(db, idempotency_key="a", signature=new_signature(), wallet=wallet)

    stats = svc.stats(db, coll)

    assert stats == {"totalSupply": 5, "minted": 2, "reserved": 1, "available": 2}


def test_allow_list_root_and_proofs(db):
    svc = CollectionService()
    members = [new_wallet() for _ in range(5)]
    coll = create_collection(db, supply=1)
    phase = MintPhase(
        collection_id=coll.id,
        name="OG",
        price_sol=Decimal("0.5"),
        start_time=utcnow() - timedelta(minutes=5),
    )
    db.add(phase)
    db.flush()

    root = svc.set_allow_list(db, phase, members)
    db.commit()

    assert phase.is_allow_list is True
    assert phase.merkle_root == root
    for w in members:
        assert allow_list.verify(w, svc.allow_list_proof(phase, w), root)
    with pytest.raises(NotAllowlisted):
        svc.allow_list_proof(phase, new_wallet())
