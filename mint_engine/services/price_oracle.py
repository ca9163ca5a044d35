# mint_engine/services/price_oracle.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from mint_engine.core.config import Settings, get_settings
from mint_engine.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
SOL_MINT = "So11111111111111111111111111111111111111112"

# upstream failures that fall back to cache/default instead of reaching callers
_FETCH_ERRORS = (UpstreamUnavailable, requests.RequestException)


@dataclass(frozen=True)
class RateQuote:
    usd_per_sol: Decimal
    sol_per_usd: Decimal
    age_seconds: float
    source: str  # live | cache | stale_cache | default
    degraded: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usdPerSol": str(self.usd_per_sol),
            "solPerUsd": str(self.sol_per_usd),
            "ageSeconds": round(self.age_seconds, 3),
            "source": self.source,
            "degraded": self.degraded,
        }


@dataclass(frozen=True)
class PlatformFee:
    fee_usd: Decimal
    fee_sol: Decimal
    fee_lamports: int
    usd_per_sol: Decimal
    degraded: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feeUsd": str(self.fee_usd),
            "feeSol": str(self.fee_sol),
            "feeLamports": self.fee_lamports,
            "usdPerSol": str(self.usd_per_sol),
            "degraded": self.degraded,
        }


def parse_usd_per_sol(payload: Dict[str, Any]) -> Decimal:
    """
    Accepts the Jupiter price payload, keyed either by symbol ("SOL") or by mint.
    """
    try:
        data = payload.get("data") or {}
        entry = data.get("SOL") or data.get(SOL_MINT) or next(iter(data.values()), None)
        price = Decimal(str(entry["price"]))
    except (AttributeError, KeyError, TypeError, ArithmeticError) as e:
        raise UpstreamUnavailable(f"Unparseable price payload: {e}") from e
    if not price.is_finite() or price <= 0:
        raise UpstreamUnavailable(f"Price oracle returned non-positive price: {price}")
    return price


def fetch_usd_per_sol(url: str, timeout: float) -> Decimal:
    resp = requests.get(url, headers={"Accept": "application/json"}, timeout=timeout)
    if resp.status_code != 200:
        raise UpstreamUnavailable(f"Price oracle request failed: {resp.status_code}")
    return parse_usd_per_sol(resp.json())


class PriceOracleService:
    """
    Cached SOL/USD exchange rate plus the fixed USD platform fee in lamports.

    Failure policy:
    - upstream call retried once
    - then last cached rate if younger than the stale ceiling
    - then the configured default rate, flagged degraded
    - a failed fetch is not repeated until the TTL has elapsed
    get_rates() never raises.
    """

    def __init__(
        self,
        *,
        url: str,
        ttl_seconds: float = 60,
        stale_ceiling_seconds: float = 600,
        default_usd_per_sol: Decimal = Decimal("20"),
        platform_fee_usd: Decimal = Decimal("1.25"),
        timeout_seconds: float = 5.0,
        retry_wait_seconds: float = 0.25,
        fetcher: Optional[Callable[[], Decimal]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url
        self.ttl_seconds = float(ttl_seconds)
        self.stale_ceiling_seconds = float(stale_ceiling_seconds)
        self.default_usd_per_sol = Decimal(default_usd_per_sol)
        self.platform_fee_usd = Decimal(platform_fee_usd)
        self.timeout_seconds = timeout_seconds
        self.retry_wait_seconds = retry_wait_seconds
        self._fetcher = fetcher or (lambda: fetch_usd_per_sol(self.url, self.timeout_seconds))
        self._clock = clock

        self._lock = threading.Lock()
        self._fetch_lock = threading.Lock()
        self._cached: Optional[Decimal] = None
        self._cached_at: float = 0.0
        self._failed_at: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "PriceOracleService":
        return cls(
            url=settings.price_oracle_url,
            ttl_seconds=settings.price_cache_ttl_seconds,
            stale_ceiling_seconds=settings.price_stale_ceiling_seconds,
            default_usd_per_sol=settings.default_sol_price_usd,
            platform_fee_usd=settings.platform_fee_usd,
            timeout_seconds=settings.upstream_timeout_seconds,
        )

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _fetch_with_retry(self) -> Decimal:
        for attempt in Retrying(
            stop=stop_after_attempt(2),
            wait=wait_fixed(self.retry_wait_seconds),
            retry=retry_if_exception_type(_FETCH_ERRORS),
            reraise=True,
        ):
            with attempt:
                return self._fetcher()
        raise UpstreamUnavailable("Price oracle unreachable.")  # pragma: no cover

    @staticmethod
    def _quote(usd_per_sol: Decimal, age: float, source: str, degraded: bool) -> RateQuote:
        return RateQuote(
            usd_per_sol=usd_per_sol,
            sol_per_usd=Decimal(1) / usd_per_sol,
            age_seconds=age,
            source=source,
            degraded=degraded,
        )

    def _fallback(self, now: float) -> RateQuote:
        age = now - self._cached_at
        if self._cached is not None and age <= self.stale_ceiling_seconds:
            return self._quote(self._cached, age, "stale_cache", False)
        return self._quote(self.default_usd_per_sol, 0.0, "default", True)

    def _peek(self) -> Optional[RateQuote]:
        with self._lock:
            now = self._clock()
            age = now - self._cached_at
            if self._cached is not None and age < self.ttl_seconds:
                return self._quote(self._cached, age, "cache", False)
            if self._failed_at is not None and now - self._failed_at < self.ttl_seconds:
                return self._fallback(now)
            return None

    # ─────────────────────────────────────────────
    # PUBLIC API
    # ─────────────────────────────────────────────

    def get_rates(self) -> RateQuote:
        """
        At most one upstream fetch per TTL window, including failed ones.
        The HTTP call runs outside the state lock.
        """
        cached = self._peek()
        if cached is not None:
            return cached

        with self._fetch_lock:
            # another thread may have refreshed or failed while we waited
            cached = self._peek()
            if cached is not None:
                return cached

            try:
                price = self._fetch_with_retry()
            except _FETCH_ERRORS as e:
                with self._lock:
                    now = self._clock()
                    self._failed_at = now
                    logger.warning(
                        "price_oracle_fetch_failed",
                        extra={"error": str(e), "retry_after_seconds": self.ttl_seconds},
                    )
                    quote = self._fallback(now)
                if quote.degraded:
                    logger.error(
                        "price_oracle_degraded",
                        extra={"default_usd_per_sol": str(self.default_usd_per_sol)},
                    )
                return quote

            with self._lock:
                self._cached = price
                self._cached_at = self._clock()
                self._failed_at = None
            return self._quote(price, 0.0, "live", False)

    def usd_to_sol(self, usd_amount: Decimal) -> Decimal:
        return Decimal(usd_amount) * self.get_rates().sol_per_usd

    def sol_to_usd(self, sol_amount: Decimal) -> Decimal:
        return Decimal(sol_amount) * self.get_rates().usd_per_sol

    def calculate_platform_fee(self) -> PlatformFee:
        rates = self.get_rates()
        fee_sol = self.platform_fee_usd * rates.sol_per_usd
        fee_lamports = int((fee_sol * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_CEILING))
        return PlatformFee(
            fee_usd=self.platform_fee_usd,
            fee_sol=fee_sol.quantize(Decimal("0.000000001"), rounding=ROUND_CEILING),
            fee_lamports=fee_lamports,
            usd_per_sol=rates.usd_per_sol,
            degraded=rates.degraded,
        )

    # For testing and development
    def set_mock_rates(self, usd_per_sol: Decimal) -> None:
        with self._lock:
            self._cached = Decimal(usd_per_sol)
            self._cached_at = self._clock()

    def clear_cache(self) -> None:
        with self._lock:
            self._cached = None
            self._cached_at = 0.0
            self._failed_at = None


@lru_cache(maxsize=1)
def get_price_oracle() -> PriceOracleService:
    return PriceOracleService.from_settings(get_settings())
