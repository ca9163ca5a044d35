from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from mint_engine.core.clock import utcnow
from mint_engine.core.errors import PaymentNotConfirmed
from mint_engine.models.audit_log import AuditLog
from mint_engine.models.collection import Collection
from mint_engine.models.item import Item
from mint_engine.models.reservation import Reservation
from mint_engine.services.expiry_sweeper import ExpirySweeper, expire_reservation
from mint_engine.services.fulfillment_service import FulfillmentService
from mint_engine.services.ledger_client import SignatureState
from mint_engine.tests.factories import create_collection, new_signature, new_wallet


def test_overdue_reservation_returns_items(db, session_factory, reservations):
    coll = create_collection(db, supply=3)
    t0 = utcnow()
    r = reservations.reserve(
        db, idempotency_key="abandoned", collection_ref=str(coll.id), quantity=2, wallet=new_wallet(), now=t0
    ).reservation
    item_ids = r.item_ids

    sweeper = ExpirySweeper(session_factory)
    assert sweeper.sweep(db, now=t0 + timedelta(seconds=599)) == []
    assert sweeper.sweep(db, now=t0 + timedelta(seconds=601)) == ["abandoned"]

    db.expire_all()
    assert db.get(Reservation, "abandoned").status == "expired"
    items = db.execute(select(Item).where(Item.id.in_(item_ids))).scalars().all()
    assert all(i.state == "unsold" and i.reservation_key is None for i in items)
    audit = db.execute(select(AuditLog).where(AuditLog.action == "RESERVATION_EXPIRED")).scalar_one()
    assert audit.details_json["released"] == 2


def test_confirmed_reservation_is_never_expired(db, session_factory, reservations, fulfillment):
    coll = create_collection(db, supply=2)
    wallet = new_wallet()
    t0 = utcnow()
    reservations.reserve(db, idempotency_key="paid", collection_ref=str(coll.id), quantity=1, wallet=wallet, now=t0)
    fulfillment.complete(db, idempotency_key="paid", signature=new_signature(), wallet=wallet, now=t0)

    assert ExpirySweeper(session_factory).sweep(db, now=t0 + timedelta(days=1)) == []
    assert expire_reservation(db, "paid") is False

    db.expire_all()
    assert db.get(Reservation, "paid").status == "confirmed"


def test_expired_key_can_be_re_reserved(db, session_factory, reservations):
    coll = create_collection(db, supply=3)
    wallet = new_wallet()
    t0 = utcnow()
    reservations.reserve(db, idempotency_key="again", collection_ref=str(coll.id), quantity=1, wallet=wallet, now=t0)
    later = t0 + timedelta(hours=1)
    ExpirySweeper(session_factory).sweep(db, now=later)

    outcome = reservations.reserve(
        db, idempotency_key="again", collection_ref=str(coll.id), quantity=1, wallet=wallet, now=later
    )

    assert outcome.replayed is False
    assert outcome.reservation.status == "transaction_ready"
    assert outcome.reservation.quantity == 1


def test_lapsed_reservation_released_on_retry_before_sweep(db, reservations):
    coll = create_collection(db, supply=1)
    wallet = new_wallet()
    t0 = utcnow()
    reservations.reserve(db, idempotency_key="lapsed", collection_ref=str(coll.id), quantity=1, wallet=wallet, now=t0)

    outcome = reservations.reserve(
        db, idempotency_key="lapsed", collection_ref=str(coll.id), quantity=1, wallet=wallet, now=t0 + timedelta(hours=1)
    )

    assert outcome.replayed is False
    assert len(outcome.reservation.item_ids) == 1


def test_run_once_activates_due_collections(db, session_factory):
    now = utcnow()
    due = create_collection(db, supply=1, status="draft")
    later = create_collection(
        db,
        supply=1,
        status="draft",
        phases=[dict(name="Later", price_sol=Decimal("1"), start_time=now + timedelta(days=1))],
    )

    result = ExpirySweeper(session_factory).run_once(now=now)

    assert result.activated_collections == [str(due.id)]
    db.expire_all()
    assert db.get(Collection, due.id).status == "active"
    assert db.get(Collection, later.id).status == "draft"


def _report_unconfirmed(db, settings, ledger, reservations, *, key, quantity=1, supply=2, now=None):
    coll = create_collection(db, supply=supply)
    wallet = new_wallet()
    reservations.reserve(db, idempotency_key=key, collection_ref=str(coll.id), quantity=quantity, wallet=wallet, now=now)
    settings.verify_signatures = True
    svc = FulfillmentService(settings, ledger=ledger)
    sig = new_signature()
    ledger.statuses[sig] = SignatureState.UNKNOWN
    with pytest.raises(PaymentNotConfirmed):
        svc.complete(db, idempotency_key=key, signature=sig, wallet=wallet, now=now)
    return coll, svc, sig


def test_reconcile_completes_payment_that_landed_late(db, session_factory, settings, ledger, reservations):
    t0 = utcnow()
    coll, svc, sig = _report_unconfirmed(db, settings, ledger, reservations, key="slow-rpc", now=t0)
    ledger.statuses[sig] = SignatureState.CONFIRMED

    # past the reservation deadline: reconciliation runs before expiry
    result = ExpirySweeper(session_factory, fulfillment=svc).run_once(now=t0 + timedelta(hours=1))

    assert result.reconciled_keys == ["slow-rpc"]
    assert result.expired_keys == []
    db.expire_all()
    r = db.get(Reservation, "slow-rpc")
    assert r.status == "confirmed"
    assert r.signature == sig
    assert db.get(Collection, coll.id).minted_count == 1
    audit = db.execute(
        select(AuditLog).where(AuditLog.reservation_key == "slow-rpc", AuditLog.action == "MINT_CONFIRMED")
    ).scalar_one()
    assert audit.details_json["reconciled"] is True


def test_reconcile_leaves_unconfirmed_payment_to_expiry(db, session_factory, settings, ledger, reservations):
    t0 = utcnow()
    _, svc, _ = _report_unconfirmed(db, settings, ledger, reservations, key="never-landed", now=t0)
    sweeper = ExpirySweeper(session_factory, fulfillment=svc)

    early = sweeper.run_once(now=t0 + timedelta(seconds=1))
    assert early.reconciled_keys == []
    assert early.expired_keys == []

    late = sweeper.run_once(now=t0 + timedelta(hours=1))
    assert late.reconciled_keys == []
    assert late.expired_keys == ["never-landed"]


def test_reconcile_marks_failed_payment(db, session_factory, settings, ledger, reservations):
    t0 = utcnow()
    _, svc, sig = _report_unconfirmed(db, settings, ledger, reservations, key="reverted", now=t0)
    ledger.statuses[sig] = SignatureState.FAILED

    result = ExpirySweeper(session_factory, fulfillment=svc).run_once(now=t0 + timedelta(seconds=1))

    assert result.reconciled_keys == []
    # failed reservations are reclaimed in the same pass
    assert result.expired_keys == ["reverted"]


def test_reconcile_survives_ledger_outage(db, session_factory, settings, ledger, reservations):
    t0 = utcnow()
    _, svc, _ = _report_unconfirmed(db, settings, ledger, reservations, key="rpc-down", now=t0)
    ledger.down = True

    result = ExpirySweeper(session_factory, fulfillment=svc).run_once(now=t0 + timedelta(seconds=1))

    assert result.reconciled_keys == []
    db.expire_all()
    assert db.get(Reservation, "rpc-down").status == "transaction_ready"


def test_main_logs_stop_on_interrupt(monkeypatch, caplog):
    from mint_engine.services import expiry_sweeper

    def interrupted(self, interval_seconds, stop_event=None):
        raise KeyboardInterrupt

    monkeypatch.setattr(expiry_sweeper, "configure_logging", lambda settings: None)
    monkeypatch.setattr(expiry_sweeper.ExpirySweeper, "run_forever", interrupted)

    with caplog.at_level("INFO", logger="mint_engine.services.expiry_sweeper"):
        expiry_sweeper.main()

    assert "expiry_sweeper_stopped" in [rec.getMessage() for rec in caplog.records]
