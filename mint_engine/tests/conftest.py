import os

# db.session builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import mint_engine.models  # noqa

from mint_engine.core.config import Settings
from mint_engine.db.base import Base
from mint_engine.services.fulfillment_service import FulfillmentService
from mint_engine.services.price_oracle import PriceOracleService
from mint_engine.services.reservation_service import ReservationService
from mint_engine.tests.factories import FakeLedger


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def settings():
    return Settings(
        database_url="sqlite://",
        max_quantity_per_request=10,
        reservation_ttl_seconds=600,
        platform_fee_usd=Decimal("1.25"),
        verify_signatures=False,
    )


@pytest.fixture()
def ledger():
    return FakeLedger()


@pytest.fixture()
def oracle():
    # 100 USD/SOL: the 1.25 USD fee is exactly 12_500_000 lamports
    return PriceOracleService(
        url="http://price-oracle.invalid",
        fetcher=lambda: Decimal("100"),
        retry_wait_seconds=0,
    )


@pytest.fixture()
def reservations(settings, oracle, ledger):
    return ReservationService(settings, oracle=oracle, ledger=ledger)


@pytest.fixture()
def fulfillment(settings, ledger):
    return FulfillmentService(settings, ledger=ledger)
