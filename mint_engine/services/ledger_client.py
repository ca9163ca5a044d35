# mint_engine/services/ledger_client.py
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

import requests

from mint_engine.core.config import get_settings
from mint_engine.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class SignatureState:
    CONFIRMED = "confirmed"
    FAILED = "failed"
    UNKNOWN = "unknown"


class LedgerClient:
    """
    Thin Solana JSON-RPC client.

    Ledger-affecting flows call this explicitly; errors surface as
    UpstreamUnavailable and are never retried here.
    """

    def __init__(self, rpc_url: str, *, timeout_seconds: float = 5.0, session: Optional[requests.Session] = None):
        self.rpc_url = rpc_url
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def _call(self, method: str, params: Optional[List[Any]] = None) -> Dict[str, Any]:
        body = {"jsonrpc": "2.0", "id": "mint-engine", "method": method, "params": params or []}
        try:
            resp = self.session.post(self.rpc_url, json=body, timeout=self.timeout_seconds)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("ledger_rpc_failed", extra={"method": method, "error": str(e)})
            raise UpstreamUnavailable(f"Ledger RPC {method} failed: {e}") from e

        if payload.get("error"):
            raise UpstreamUnavailable(f"Ledger RPC {method} error: {payload['error']}")
        return payload.get("result") or {}

    def get_latest_blockhash(self) -> str:
        result = self._call("getLatestBlockhash", [{"commitment": "finalized"}])
        value = result.get("value") or {}
        blockhash = value.get("blockhash")
        if not blockhash:
            raise UpstreamUnavailable("Ledger RPC returned no blockhash.")
        return blockhash

    def get_signature_status(self, signature: str) -> str:
        result = self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        statuses = result.get("value") or [None]
        status = statuses[0]
        if not status:
            return SignatureState.UNKNOWN
        if status.get("err"):
            return SignatureState.FAILED
        if status.get("confirmationStatus") in ("confirmed", "finalized"):
            return SignatureState.CONFIRMED
        return SignatureState.UNKNOWN


@lru_cache(maxsize=1)
def get_ledger_client() -> LedgerClient:
    settings = get_settings()
    return LedgerClient(settings.solana_rpc_url, timeout_seconds=settings.upstream_timeout_seconds)
