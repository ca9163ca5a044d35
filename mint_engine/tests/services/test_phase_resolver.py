import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from solders.keypair import Keypair

from mint_engine.core.errors import NoActivePhase, NotAllowlisted
from mint_engine.models.mint_phase import MintPhase
from mint_engine.services import allow_list
from mint_engine.services.phase_resolver import phase_contains, resolve_active_phase

NOON = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def phase(name, price, start, end=None, allow=None, **kw):
    p = MintPhase(
        id=uuid.uuid4(),
        collection_id=uuid.uuid4(),
        name=name,
        price_sol=Decimal(price),
        start_time=start,
        end_time=end,
        is_allow_list=bool(allow),
        **kw,
    )
    if allow:
        p.merkle_root = allow_list.build_commitment(allow).root
        p.allow_list_json = list(allow)
    return p


@pytest.fixture()
def og_members():
    return [str(Keypair().pubkey()) for _ in range(5)]


@pytest.fixture()
def og_and_public(og_members):
    # OG 12:00-14:00 allow-listed; Public opens 13:00 with no end
    og = phase("OG", "0.5", NOON, NOON + timedelta(hours=2), allow=og_members)
    public = phase("Public", "1", NOON + timedelta(hours=1))
    return og, public


def test_window_is_half_open():
    p = phase("P", "1", NOON, NOON + timedelta(hours=1))
    assert phase_contains(p, NOON)
    assert phase_contains(p, NOON + timedelta(minutes=59))
    assert not phase_contains(p, NOON + timedelta(hours=1))
    assert not phase_contains(p, NOON - timedelta(seconds=1))


def test_allow_listed_wallet_gets_early_phase_during_overlap(og_and_public, og_members):
    og, public = og_and_public
    wallet = og_members[2]
    proof = allow_list.proof_for(og_members, wallet)

    resolved = resolve_active_phase([public, og], now=NOON + timedelta(hours=1), wallet=wallet, proof=proof)

    assert resolved.phase is og
    assert resolved.unit_price_sol == Decimal("0.5")


def test_outsider_falls_through_to_public_during_overlap(og_and_public):
    og, public = og_and_public
    outsider = str(Keypair().pubkey())

    resolved = resolve_active_phase([og, public], now=NOON + timedelta(hours=1), wallet=outsider)

    assert resolved.phase is public
    assert resolved.unit_price_sol == Decimal("1")


def test_outsider_rejected_when_only_allow_list_phase_open(og_and_public):
    og, public = og_and_public
    with pytest.raises(NotAllowlisted):
        resolve_active_phase([og, public], now=NOON + timedelta(minutes=30), wallet=str(Keypair().pubkey()))


def test_no_phase_open():
    p = phase("Later", "1", NOON + timedelta(days=1))
    with pytest.raises(NoActivePhase):
        resolve_active_phase([p], now=NOON)
    with pytest.raises(NoActivePhase):
        resolve_active_phase([], now=NOON)


def test_requested_phase_honoured_outside_window(og_and_public):
    og, public = og_and_public
    resolved = resolve_active_phase([og, public], now=NOON - timedelta(days=1), requested_phase_id=public.id)
    assert resolved.phase is public


def test_requested_allow_list_phase_still_checks_proof(og_and_public, og_members):
    og, public = og_and_public
    with pytest.raises(NotAllowlisted):
        resolve_active_phase(
            [og, public],
            now=NOON + timedelta(hours=1),
            requested_phase_id=og.id,
            wallet=str(Keypair().pubkey()),
        )


def test_unknown_requested_phase_falls_back_to_window(og_and_public):
    og, public = og_and_public
    resolved = resolve_active_phase(
        [og, public],
        now=NOON + timedelta(hours=3),
        requested_phase_id=uuid.uuid4(),
    )
    assert resolved.phase is public


def test_naive_datetimes_treated_as_utc():
    p = phase("P", "1", NOON.replace(tzinfo=None))
    assert resolve_active_phase([p], now=NOON + timedelta(minutes=1)).phase is p
