from functools import lru_cache
from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Mint Reservation & Fulfillment Engine"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"
    max_quantity_per_request: int = 10

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── LEDGER ───────────
    solana_rpc_url: str = "https://api.devnet.solana.com"
    platform_wallet: str = "4mHpjYdrBDa5REkpCSnv9GsFNerXhDdTNG5pS8jhyxEe"
    verify_signatures: bool = False
    upstream_timeout_seconds: float = 5.0

    # ─────────── PRICING ───────────
    platform_fee_usd: Decimal = Decimal("1.25")
    price_oracle_url: str = "https://lite-api.jup.ag/price/v2?ids=So11111111111111111111111111111111111111112"
    price_cache_ttl_seconds: int = 60
    price_stale_ceiling_seconds: int = 600  # 10x the refresh interval
    default_sol_price_usd: Decimal = Decimal("20")

    # ─────────── RESERVATIONS ───────────
    reservation_ttl_seconds: int = 600
    sweep_interval_seconds: int = 60
    sweeper_enabled: bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
