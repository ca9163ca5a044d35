from __future__ import annotations

import hashlib
import json
from typing import Any, Dict


def canonical_dumps(obj: Dict[str, Any]) -> str:
    # Deterministic JSON string: sorted keys, no whitespace
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def request_hash(payload: Dict[str, Any]) -> str:
    """
    SHA-256 of the canonical request payload; used to detect an
    Idempotency-Key being replayed with different parameters.
    """
    return sha256_hex(canonical_dumps(payload))
