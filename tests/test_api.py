"""
Tests for the HTTP API

The app runs against an in-memory cache and an in-memory ledger.
"""

import pytest
from fastapi.testclient import TestClient

from baseproofs.chain import ChainConfig, InMemoryLogSource
from baseproofs.core import Hasher, build_call_data, decode
from baseproofs.db.cache import InMemoryPromiseCache
from baseproofs.main import app
from baseproofs.runtime import create_runtime
from baseproofs.schemas import PayloadKind


ALICE = "0x" + "a1" * 20
MALLORY = "0x" + "bb" * 20
TX = "0x" + "7e" * 32
CONTENT = "I will ship by Friday"


@pytest.fixture
def runtime():
    return create_runtime(
        chain_config=ChainConfig(chain_id=84532),
        cache=InMemoryPromiseCache(),
        source=InMemoryLogSource(),
    )


@pytest.fixture
def client(runtime):
    app.state.runtime = runtime
    with TestClient(app) as test_client:
        yield test_client
    app.state.runtime = None


def record(client, content=CONTENT, **extra):
    body = {"content": content, "creator_address": ALICE, "tx_id": TX, **extra}
    response = client.post("/api/promises", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestSystem:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy", "service": "baseproofs"}

    def test_health_detailed(self, client):
        response = client.get("/health/detailed")
        assert response.status_code == 200
        assert response.json()["checks"]["cache"]["backend"] == "InMemoryPromiseCache"

    def test_api_info(self, client):
        data = client.get("/api").json()
        assert data["chain"]["chain_id"] == 84532
        assert data["chain"]["network"] == "Base Sepolia"

    def test_metrics(self, client):
        assert "verifications_total" in client.get("/metrics").json()

    def test_request_id_header(self, client):
        assert client.get("/health").headers.get("X-Request-ID")


class TestPayloads:

    def test_builds_creation_call_data(self, client):
        response = client.post("/api/payloads", json={"content": CONTENT, "display_name": "Ada"})
        assert response.status_code == 200
        data = response.json()
        assert data["digest"] == Hasher.digest(CONTENT)
        decoded = decode(bytes.fromhex(data["call_data"][2:]))
        assert decoded.kind == PayloadKind.METADATA
        assert decoded.metadata.display_name == "Ada"

    def test_blank_content_is_bad_request(self, client):
        assert client.post("/api/payloads", json={"content": "   "}).status_code == 400


class TestPromises:

    def test_record_and_list(self, client):
        created = record(client, display_name="Ada", category="Work")
        assert created["status"] == "active"
        assert created["creator_display_name"] == "Ada"

        response = client.get("/api/promises")
        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "public, max-age=30"
        data = response.json()
        assert data["count"] == 1
        assert data["promises"][0]["id"] == created["id"]

    def test_list_filters(self, client):
        record(client, "Run a marathon", category="Fitness")
        record(client, "Pay rent early", category="Financial")
        data = client.get("/api/promises", params={"category": "Fitness"}).json()
        assert [p["content"] for p in data["promises"]] == ["Run a marathon"]
        assert client.get("/api/promises", params={"search": "RENT"}).json()["count"] == 1

    def test_invalid_address(self, client):
        body = {"content": CONTENT, "creator_address": "0x123", "tx_id": TX}
        assert client.post("/api/promises", json=body).status_code == 400

    def test_get_by_id(self, client):
        created = record(client)
        data = client.get(f"/api/promises/{created['id']}").json()
        assert data["promise"]["content"] == CONTENT
        assert data["explorer_url"] == f"https://sepolia.basescan.org/tx/{TX}"

    def test_repeat_record_is_idempotent(self, client):
        first = record(client, display_name="Ada")
        again = record(client, display_name="Bob")
        assert again["id"] == first["id"]
        assert client.get("/api/promises").json()["count"] == 1

    def test_get_missing(self, client):
        assert client.get("/api/promises/nope").status_code == 404

    def test_get_by_digest(self, client):
        created = record(client)
        response = client.get(f"/api/promises/by-digest/{Hasher.digest(CONTENT)}")
        assert response.status_code == 200
        assert response.json()["promise"]["id"] == created["id"]

    def test_get_by_bad_digest(self, client):
        assert client.get("/api/promises/by-digest/0x1234").status_code == 400

    def test_get_by_unknown_digest(self, client):
        assert client.get(f"/api/promises/by-digest/{Hasher.digest('other')}").status_code == 404


class TestStatusChanges:

    def test_owner_fulfills(self, client):
        created = record(client)
        response = client.post(
            f"/api/promises/{created['id']}/status",
            json={"status": "fulfilled", "sender": ALICE, "claimed_at_ms": 1700000000000},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["promise"]["status"] == "fulfilled"

        decoded = decode(bytes.fromhex(data["call_data"][2:]))
        assert decoded.status_update.target_digest == Hasher.digest(CONTENT)

        stats = client.get("/api/stats").json()
        assert stats["fulfilled"] == 1
        assert stats["integrity"] == 100

    def test_non_owner_forbidden(self, client):
        created = record(client)
        response = client.post(f"/api/promises/{created['id']}/status", json={"status": "voided", "sender": MALLORY})
        assert response.status_code == 403

    def test_already_final(self, client):
        created = record(client)
        url = f"/api/promises/{created['id']}/status"
        client.post(url, json={"status": "voided", "sender": ALICE})
        assert client.post(url, json={"status": "fulfilled", "sender": ALICE}).status_code == 400

    def test_unknown_record(self, client):
        response = client.post("/api/promises/nope/status", json={"status": "voided", "sender": ALICE})
        assert response.status_code == 404

    def test_invalid_status_value(self, client):
        created = record(client)
        response = client.post(f"/api/promises/{created['id']}/status", json={"status": "done", "sender": ALICE})
        assert response.status_code == 422

    def test_reveal_toggle(self, client):
        created = record(client)
        response = client.post(f"/api/promises/{created['id']}/reveal")
        assert response.status_code == 200
        assert response.json()["revealed"] is False


class TestVerifyAndSync:

    def test_verify(self, client):
        record(client)
        assert client.post("/api/verify", json={"text": CONTENT}).json()["matched"] is True

        miss = client.post("/api/verify", json={"text": CONTENT + " "})
        assert miss.status_code == 200
        assert miss.json()["matched"] is False

    def test_sync_reads_chain(self, client, runtime):
        runtime.source.submit(build_call_data(Hasher.digest("On chain only"), b"On chain only"), ALICE)

        response = client.post("/api/sync")
        assert response.status_code == 200
        data = response.json()
        assert data["fresh"] is True
        assert data["chain_promise_count"] == 1

        listed = client.get("/api/promises").json()
        assert [p["content"] for p in listed["promises"]] == ["On chain only"]
        assert client.get("/api/sync").json()["last_fresh"] is True

    def test_local_record_wins_after_sync(self, client, runtime):
        # Wallet submits the prepared write, then the client records it
        write = runtime.promises.prepare_anchor(CONTENT)
        tx_id = runtime.source.submit(write.call_data, ALICE)
        record(client, tx_id=tx_id, display_name="Ada")

        client.post("/api/sync")

        promises = client.get("/api/promises").json()["promises"]
        assert len(promises) == 1
        assert promises[0]["origin"] == "local"
        assert promises[0]["creator_display_name"] == "Ada"

    def test_status_change_on_chain_only_promise(self, client, runtime):
        runtime.source.submit(build_call_data(Hasher.digest("On chain only"), b"On chain only"), ALICE)
        client.post("/api/sync")
        (listed,) = client.get("/api/promises").json()["promises"]

        response = client.post(
            f"/api/promises/{listed['id']}/status",
            json={"status": "fulfilled", "sender": ALICE},
        )
        assert response.status_code == 200, response.text

        promises = client.get("/api/promises").json()["promises"]
        assert len(promises) == 1
        assert promises[0]["id"] == listed["id"]
        assert promises[0]["status"] == "fulfilled"

    def test_stale_sync_is_reported(self, client, runtime):
        runtime.source.unreachable = True
        data = client.post("/api/sync").json()
        assert data["fresh"] is False
        assert data["error"]
        assert client.get("/health/detailed").json()["checks"]["chain_sync"]["status"] == "degraded"
