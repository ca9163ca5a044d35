# mint_engine/core/deps.py
from typing import Optional

from fastapi import Depends, Request

from mint_engine.core.config import Settings, get_settings
from mint_engine.services.collection_service import CollectionService
from mint_engine.services.fulfillment_service import FulfillmentService
from mint_engine.services.ledger_client import LedgerClient, get_ledger_client
from mint_engine.services.price_oracle import PriceOracleService, get_price_oracle
from mint_engine.services.reservation_service import ReservationService


def request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def get_collection_service() -> CollectionService:
    return CollectionService()


def get_reservation_service(
    settings: Settings = Depends(get_settings),
    oracle: PriceOracleService = Depends(get_price_oracle),
    ledger: LedgerClient = Depends(get_ledger_client),
) -> ReservationService:
    return ReservationService(settings, oracle=oracle, ledger=ledger)


def get_fulfillment_service(
    settings: Settings = Depends(get_settings),
    ledger: LedgerClient = Depends(get_ledger_client),
) -> FulfillmentService:
    return FulfillmentService(settings, ledger=ledger)
