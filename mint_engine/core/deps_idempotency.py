from __future__ import annotations

from fastapi import HTTPException, Request

MAX_IDEMPOTENCY_KEY_LENGTH = 128


async def require_idempotency_key(request: Request) -> str:
    key = (request.headers.get("Idempotency-Key") or "").strip()
    if not key:
        raise HTTPException(
            status_code=400,
            detail={"code": "VALIDATION_ERROR", "message": "Missing Idempotency-Key header."},
        )
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise HTTPException(
            status_code=400,
            detail={"code": "VALIDATION_ERROR", "message": "Idempotency-Key too long."},
        )
    return key
