import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from mint_engine.core.clock import utcnow
from mint_engine.core.config import get_settings
from mint_engine.db.session import get_db
import mint_engine.main as main_module
from mint_engine.main import create_app
from mint_engine.services.ledger_client import get_ledger_client
from mint_engine.services.price_oracle import get_price_oracle
from mint_engine.tests.factories import create_collection, new_signature, new_wallet


@pytest.fixture()
def client(session_factory, settings, oracle, ledger):
    app = create_app()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_price_oracle] = lambda: oracle
    app.dependency_overrides[get_ledger_client] = lambda: ledger
    return TestClient(app)


def reserve(client, key, body):
    return client.post("/api/v1/mint/reserve", json=body, headers={"Idempotency-Key": key})


def test_health(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers["X-Request-Id"]


def test_reserve_complete_status_flow(client, db):
    coll = create_collection(db, supply=3)
    wallet = new_wallet()

    r = reserve(client, "flow-1", {"collectionId": str(coll.id), "quantity": 2, "wallet": wallet})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["replayed"] is False
    assert body["reservation"]["status"] == "transaction_ready"
    assert len(body["reservation"]["itemIds"]) == 2
    assert body["transaction"]["feePayer"] == wallet
    assert body["transaction"]["base64"]
    assert body["priceBreakdown"]["totalLamports"] == 2_012_500_000

    replay = reserve(client, "flow-1", {"collectionId": str(coll.id), "quantity": 2, "wallet": wallet})
    assert replay.json()["replayed"] is True
    assert replay.json()["reservation"]["itemIds"] == body["reservation"]["itemIds"]

    pending = client.get("/api/v1/mint/status/flow-1").json()
    assert pending["status"] == "transaction_ready"
    assert pending["transaction"]["base64"] == body["transaction"]["base64"]

    sig = new_signature()
    done = client.post(
        "/api/v1/mint/complete",
        json={"signature": sig, "wallet": wallet},
        headers={"Idempotency-Key": "flow-1"},
    )
    assert done.status_code == 200, done.text
    assert done.json()["transactionSignature"] == sig
    assert len(done.json()["mintedItems"]) == 2

    status = client.get("/api/v1/mint/status/flow-1")
    assert status.status_code == 200
    assert status.json()["status"] == "confirmed"
    assert status.json()["transaction"] is None

    stats = client.get(f"/api/v1/collections/{coll.id}/stats").json()
    assert stats["minted"] == 2
    assert stats["available"] == 1


def test_missing_idempotency_key(client, db):
    coll = create_collection(db, supply=1)
    r = client.post("/api/v1/mint/reserve", json={"collectionId": str(coll.id), "quantity": 1, "wallet": new_wallet()})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "VALIDATION_ERROR"


def test_body_validation_maps_to_400(client):
    r = reserve(client, "bad", {"quantity": 1, "wallet": new_wallet()})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "VALIDATION_ERROR"


def test_error_codes(client, db):
    coll = create_collection(db, supply=1)
    wallet = new_wallet()
    assert reserve(client, "a", {"collectionId": str(coll.id), "quantity": 1, "wallet": wallet}).status_code == 200

    sold_out = reserve(client, "b", {"collectionId": str(coll.id), "quantity": 1, "wallet": new_wallet()})
    assert sold_out.status_code == 409
    assert sold_out.json()["detail"]["code"] == "INSUFFICIENT_SUPPLY"

    conflict = reserve(client, "a", {"collectionId": str(coll.id), "quantity": 1, "wallet": new_wallet()})
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["code"] == "IDEMPOTENCY_CONFLICT"

    missing = reserve(client, "c", {"collectionAddress": new_wallet(), "quantity": 1, "wallet": wallet})
    assert missing.status_code == 404

    assert client.get("/api/v1/mint/status/nope").status_code == 404


def test_upstream_outage_is_retryable(client, db, ledger):
    coll = create_collection(db, supply=1)
    ledger.down = True

    r = reserve(client, "down", {"collectionId": str(coll.id), "quantity": 1, "wallet": new_wallet()})

    assert r.status_code == 503
    assert r.json()["detail"]["retryable"] is True
    assert r.headers["Retry-After"]


def test_phases_and_proof(client, db):
    now = utcnow()
    members = [new_wallet() for _ in range(5)]
    coll = create_collection(
        db,
        supply=4,
        phases=[
            dict(
                name="OG",
                price_sol=Decimal("0.5"),
                start_time=now - timedelta(hours=1),
                end_time=now + timedelta(hours=1),
                allow_list=members,
            ),
        ],
    )
    phases = client.get(f"/api/v1/collections/{coll.collection_mint_address}/phases").json()["phases"]
    assert [p["name"] for p in phases] == ["OG"]
    assert phases[0]["isActive"] is True
    og_id = phases[0]["id"]

    proof = client.get(f"/api/v1/phases/{og_id}/proof", params={"wallet": members[3]})
    assert proof.status_code == 200
    body = proof.json()
    assert body["merkleRoot"] == phases[0]["merkleRoot"]

    ok = reserve(
        client,
        "og",
        {"collectionId": str(coll.id), "quantity": 1, "wallet": members[3], "allowlistProof": body["proof"]},
    )
    assert ok.status_code == 200, ok.text
    assert Decimal(ok.json()["priceBreakdown"]["unitPriceSol"]) == Decimal("0.5")

    outsider = new_wallet()
    assert client.get(f"/api/v1/phases/{og_id}/proof", params={"wallet": outsider}).status_code == 403
    denied = reserve(client, "outsider", {"collectionId": str(coll.id), "quantity": 1, "wallet": outsider})
    assert denied.status_code == 403
    assert denied.json()["detail"]["code"] == "NOT_ALLOWLISTED"


def test_price_quote(client, db):
    coll = create_collection(db, supply=2)
    r = client.get("/api/v1/mint/price", params={"collection": str(coll.id), "quantity": 2})
    assert r.status_code == 200
    body = r.json()
    assert body["creatorPaymentLamports"] == 2_000_000_000
    assert body["rates"]["usdPerSol"] == "100"


def test_lifespan_runs_and_stops_sweeper(monkeypatch, settings, ledger):
    started = []

    def fake_start(session_factory, interval_seconds, *, fulfillment=None):
        stop = threading.Event()
        started.append((interval_seconds, fulfillment, stop))
        return stop

    monkeypatch.setattr(main_module, "get_settings", lambda: settings.model_copy(update={"sweeper_enabled": True}))
    monkeypatch.setattr(main_module, "get_ledger_client", lambda: ledger)
    monkeypatch.setattr(main_module, "start_background_sweeper", fake_start)

    with TestClient(main_module.create_app()):
        assert len(started) == 1
        interval, fulfillment, stop = started[0]
        assert interval == settings.sweep_interval_seconds
        assert fulfillment.ledger is ledger
        assert not stop.is_set()

    assert stop.is_set()
