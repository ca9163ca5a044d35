from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException


class MintError(Exception):
    """
    Base for every engine failure surfaced to callers.

    Each subclass carries a stable `code` (part of the API contract) and the
    HTTP status the routes translate it to.
    """
    code = "MINT_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(MintError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFound(MintError):
    code = "NOT_FOUND"
    status_code = 404


class NoActivePhase(MintError):
    code = "NO_ACTIVE_PHASE"
    status_code = 409


class NotAllowlisted(MintError):
    code = "NOT_ALLOWLISTED"
    status_code = 403


class CollectionNotActive(MintError):
    code = "COLLECTION_NOT_ACTIVE"
    status_code = 409


class InsufficientSupply(MintError):
    code = "INSUFFICIENT_SUPPLY"
    status_code = 409


class MintLimitExceeded(MintError):
    code = "MINT_LIMIT_EXCEEDED"
    status_code = 409


class IdempotencyConflict(MintError):
    code = "IDEMPOTENCY_CONFLICT"
    status_code = 409


class ItemsNotReserved(MintError):
    code = "ITEMS_NOT_RESERVED"
    status_code = 409


class ReservationExpired(MintError):
    code = "RESERVATION_EXPIRED"
    status_code = 410


class PaymentNotConfirmed(MintError):
    code = "PAYMENT_NOT_CONFIRMED"
    status_code = 402


class UpstreamUnavailable(MintError):
    code = "UPSTREAM_UNAVAILABLE"
    status_code = 503
    retryable = True


class InvariantViolation(MintError):
    code = "INVARIANT_VIOLATION"
    status_code = 500


def to_http(exc: MintError) -> HTTPException:
    headers = {"Retry-After": "5"} if exc.retryable else None
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict(), headers=headers)
