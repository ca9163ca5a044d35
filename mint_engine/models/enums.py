#mint_engine/models/enums.py
from __future__ import annotations
from enum import Enum


class CollectionStatus(str, Enum):
    draft = "draft"
    active = "active"
    completed = "completed"
    archived = "archived"


class ItemState(str, Enum):
    # unsold -> reserved -> minted, reserved -> unsold only via expiry sweep
    unsold = "unsold"
    reserved = "reserved"
    minted = "minted"


class ReservationStatus(str, Enum):
    pending = "pending"
    transaction_ready = "transaction_ready"
    confirmed = "confirmed"
    failed = "failed"
    expired = "expired"


# statuses that still hold Items in `reserved`
OPEN_RESERVATION_STATUSES = (
    ReservationStatus.pending.value,
    ReservationStatus.transaction_ready.value,
)
