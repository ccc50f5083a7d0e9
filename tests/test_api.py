"""
HTTP tests for the drops service, run against a fresh stub chain per test.
"""
import pytest
from fastapi.testclient import TestClient

from drops.app.chain.adapter import StubChain
from drops.app.main import Service, app, get_service

from conftest import A, B, C, D, E, OPERATOR, SCENARIO

OP = {"X-Role": "operator"}
CLAIMANT = {"X-Role": "claimant"}
AUDITOR = {"X-Role": "auditor"}

BALANCES = [{"recipient": b.recipient, "amount": b.amount} for b in SCENARIO]


@pytest.fixture
def svc():
    service = Service(StubChain(start_block=1))
    app.dependency_overrides[get_service] = lambda: service
    yield service
    app.dependency_overrides.clear()


@pytest.fixture
def client(svc):
    return TestClient(app)


@pytest.fixture
def published(client):
    client.post("/payments", headers=OP,
                json={"group": "split", "payer": OPERATOR, "amount": 10_000})
    tree = client.post("/trees", headers=OP, json={"balances": BALANCES}).json()
    resp = client.post("/drops", headers=OP,
                       json={"root": tree["merkle_root"], "cutoff_block": 100,
                             "total": tree["token_total"]})
    assert resp.status_code == 201
    return tree


def _proof(client, root, recipient):
    return client.get(f"/trees/{root}/claims/{recipient}", headers=CLAIMANT).json()


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["block"] == 1


def test_payment_zero_rejected(client):
    resp = client.post("/payments", headers=OP,
                       json={"group": "split", "payer": OPERATOR, "amount": 0})
    assert resp.status_code == 400
    assert resp.json()["error"] == "zero_value"


def test_claimant_cannot_publish(client, published):
    resp = client.post("/drops", headers=CLAIMANT,
                       json={"root": published["merkle_root"], "cutoff_block": 100, "total": 1})
    assert resp.status_code == 403


def test_publish_too_large(client, published):
    resp = client.post("/drops", headers=OP,
                       json={"root": published["merkle_root"], "cutoff_block": 100, "total": 1})
    assert resp.status_code == 400
    assert resp.json()["reason"] == "Drop too large"


def test_publish_passed_cutoff(client):
    client.post("/payments", headers=OP,
                json={"group": "split", "payer": OPERATOR, "amount": 10})
    resp = client.post("/drops", headers=OP,
                       json={"root": "0x" + "ab" * 32, "cutoff_block": 1, "total": 10})
    assert resp.status_code == 400
    assert resp.json()["error"] == "drop_block_passed"


def test_empty_tree_rejected(client):
    resp = client.post("/trees", headers=OP, json={"balances": []})
    assert resp.status_code == 422
    assert resp.json()["error"] == "empty_tree"


def test_claim_flow(client, svc, published):
    root = published["merkle_root"]
    p = _proof(client, root, A)
    assert p["amount"] == 1000

    resp = client.post("/claims", headers=CLAIMANT,
                       json={"drop_index": 0, "recipient": A, "amount": 1000, "proof": p["proof"]})
    assert resp.status_code == 200
    assert resp.json()["used_fallback"] is False
    assert svc.chain.native[A] == 1000

    assert client.get(f"/drops/0/claimed/{A}").json()["claimed"] is True
    assert client.get("/liability").json()["unclaimed_liability"] == 9_000
    assert client.get("/drops/0").json()["remaining"] == 9_000

    again = client.post("/claims", headers=CLAIMANT,
                        json={"drop_index": 0, "recipient": A, "amount": 1000, "proof": p["proof"]})
    assert again.status_code == 409
    assert again.json()["error"] == "already_claimed"


def test_claim_unknown_drop(client, published):
    p = _proof(client, published["merkle_root"], A)
    resp = client.post("/claims", headers=CLAIMANT,
                       json={"drop_index": 3, "recipient": A, "amount": 1000, "proof": p["proof"]})
    assert resp.status_code == 404


def test_batch_claim_rejected_as_a_whole(client, published):
    p = _proof(client, published["merkle_root"], A)
    resp = client.post("/claims/batch", headers=CLAIMANT, json={
        "drop_indices": [0, 0], "recipients": [A, E],
        "amounts": [1000, 9000], "proofs": [p["proof"], p["proof"]],
    })
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_proof"
    assert client.get(f"/drops/0/claimed/{A}").json()["claimed"] is False


def test_batch_claim_length_mismatch(client, published):
    resp = client.post("/claims/batch", headers=CLAIMANT, json={
        "drop_indices": [0], "recipients": [A, B], "amounts": [1000], "proofs": [[]],
    })
    assert resp.status_code == 400
    assert resp.json()["error"] == "array_length_mismatch"


def test_batch_claim_success_and_index(client, svc, published):
    root = published["merkle_root"]
    pc, pd = _proof(client, root, C), _proof(client, root, D)
    svc.chain.refusing.add(D)
    resp = client.post("/claims/batch", headers=CLAIMANT, json={
        "drop_indices": [0, 0], "recipients": [C, D],
        "amounts": [3000, 4000], "proofs": [pc["proof"], pd["proof"]],
    })
    assert resp.status_code == 200
    assert [c["used_fallback"] for c in resp.json()] == [False, True]

    indexed = client.get("/index/drops/0", headers=AUDITOR).json()
    assert indexed["remaining"] == 3_000
    claims = client.get(f"/index/recipients/{D}", headers=AUDITOR).json()["claims"]
    assert claims[0]["used_fallback"] is True


def test_dispatch_failure_is_502_and_rolled_back(client, svc, published):
    p = _proof(client, published["merkle_root"], B)
    svc.chain.refusing.add(B)
    svc.chain.blocked.add(B)
    resp = client.post("/claims", headers=CLAIMANT,
                       json={"drop_index": 0, "recipient": B, "amount": 2000, "proof": p["proof"]})
    assert resp.status_code == 502
    assert client.get(f"/drops/0/claimed/{B}").json()["claimed"] is False


def test_unknown_tree_and_recipient(client, published):
    assert client.get(f"/trees/0x{'00' * 32}/claims/{A}").status_code == 404
    assert client.get(f"/trees/{published['merkle_root']}/claims/{E}").status_code == 404


def test_events_and_metrics(client, published):
    names = [e["name"] for e in client.get("/events", headers=AUDITOR).json()]
    assert names == ["PaymentRecorded", "DropPublished"]
    summary = client.get("/metrics", headers=AUDITOR).json()
    assert summary["by_operation"]["publish"]["success"] >= 1


@pytest.mark.parametrize("limit", [0, -1, 501])
def test_events_limit_is_bounded(client, limit):
    resp = client.get("/events", headers=AUDITOR, params={"limit": limit})
    assert resp.status_code == 422


def test_events_limit_returns_latest(client, published):
    events = client.get("/events", headers=AUDITOR, params={"limit": 1}).json()
    assert [e["name"] for e in events] == ["DropPublished"]
