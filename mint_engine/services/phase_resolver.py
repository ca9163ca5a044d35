# mint_engine/services/phase_resolver.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from mint_engine.core.clock import as_utc
from mint_engine.core.errors import NoActivePhase, NotAllowlisted
from mint_engine.models.mint_phase import MintPhase
from mint_engine.services import allow_list


@dataclass(frozen=True)
class ResolvedPhase:
    phase: MintPhase
    unit_price_sol: Decimal


def phase_contains(phase: MintPhase, now: datetime) -> bool:
    """[start_time, end_time) with an open end when end_time is NULL."""
    start = as_utc(phase.start_time)
    end = as_utc(phase.end_time)
    return start <= now and (end is None or now < end)


def _eligible(phase: MintPhase, wallet: Optional[str], proof: Optional[Sequence[str]]) -> bool:
    if not phase.is_allow_list:
        return True
    if not wallet:
        return False
    return allow_list.verify(wallet, proof, phase.merkle_root)


def _resolved(phase: MintPhase) -> ResolvedPhase:
    return ResolvedPhase(phase=phase, unit_price_sol=Decimal(phase.price_sol or 0))


def resolve_active_phase(
    phases: Sequence[MintPhase],
    *,
    now: datetime,
    requested_phase_id: Optional[uuid.UUID] = None,
    wallet: Optional[str] = None,
    proof: Optional[Sequence[str]] = None,
) -> ResolvedPhase:
    """
    Resolution order:
    1. A requested phase id that exists is honoured regardless of its window
       (phase-specific links); its allow-list still applies.
    2. Otherwise phases whose window contains `now`, earliest start first.
       The first one the wallet is eligible for wins, so an allow-listed
       early phase does not shadow an overlapping public phase.
    """
    now = as_utc(now)

    if requested_phase_id is not None:
        named = next((p for p in phases if p.id == requested_phase_id), None)
        if named is not None:
            if not _eligible(named, wallet, proof):
                raise NotAllowlisted(
                    f"Wallet is not on the allow list for phase '{named.name}'.",
                    details={"phaseId": str(named.id)},
                )
            return _resolved(named)

    candidates = sorted(
        (p for p in phases if phase_contains(p, now)),
        key=lambda p: (as_utc(p.start_time), str(p.id)),
    )
    if not candidates:
        raise NoActivePhase("No mint phase is active at this time.")

    for phase in candidates:
        if _eligible(phase, wallet, proof):
            return _resolved(phase)

    raise NotAllowlisted(
        "Every active phase is allow-listed and no valid proof was supplied.",
        details={"phaseIds": [str(p.id) for p in candidates]},
    )
