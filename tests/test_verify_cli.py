"""
Tests for the standalone verifier: offline build/check/proof modes and the
remote check run against the service in-process.
"""
import json

import pytest
from fastapi.testclient import TestClient

from drops.app.chain.adapter import StubChain
from drops.app.main import Service, app, get_service
from drops.verifier import verify

from conftest import A, B, E, OPERATOR, SCENARIO


@pytest.fixture
def balances_csv(tmp_path):
    path = tmp_path / "balances.csv"
    rows = "".join(f"{b.recipient},{b.amount}\n" for b in SCENARIO)
    path.write_text("recipient,amount\n" + rows)
    return path


@pytest.fixture
def dist_file(tmp_path, balances_csv):
    out = tmp_path / "out"
    assert verify.main(["build", str(balances_csv), "--out", str(out)]) == 0
    files = list(out.glob("distribution_*.json"))
    assert len(files) == 1
    return files[0]


def test_build_writes_distribution(dist_file):
    doc = json.loads(dist_file.read_text())
    assert doc["tokenTotal"] == 10_000
    assert dist_file.name == f"distribution_{doc['merkleRoot'][2:10]}.json"


def test_check_passes(dist_file, tmp_path):
    assert verify.main(["check", str(dist_file), "--out", str(tmp_path / "res")]) == 0
    assert list((tmp_path / "res").glob("check_*.json"))


def test_check_fails_on_tampered_amount(dist_file, tmp_path):
    doc = json.loads(dist_file.read_text())
    doc["claims"][A]["amount"] = 5000
    dist_file.write_text(json.dumps(doc))
    assert verify.main(["check", str(dist_file), "--out", str(tmp_path / "res")]) == 2


def test_check_fails_on_wrong_total():
    doc = json.loads(verify.build_distribution(SCENARIO).to_json())
    doc["tokenTotal"] = 1
    results = verify.check_distribution(doc)
    assert results[-1]["recipient"] == "*"
    assert results[-1]["verdict"] == "FAIL"


def test_proof_mode_prints_claim(dist_file, capsys):
    assert verify.main(["proof", str(dist_file), B.lower()]) == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["recipient"] == B
    assert printed["amount"] == 2000


def test_proof_mode_unknown_recipient(dist_file):
    with pytest.raises(SystemExit):
        verify.main(["proof", str(dist_file), E])


@pytest.fixture
def service_client():
    service = Service(StubChain(start_block=1))
    app.dependency_overrides[get_service] = lambda: service
    client = TestClient(app)
    client.headers["X-Role"] = "auditor"
    yield service, client
    app.dependency_overrides.clear()


def test_remote_matches_published_root(service_client, dist_file):
    service, client = service_client
    doc = json.loads(dist_file.read_text())
    service.ledger.pay("split", OPERATOR, 10_000)
    service.ledger.publish(doc["merkleRoot"], 100, doc["tokenTotal"])

    result = verify.verify_remote(client, "", doc, 0, A)
    assert result["verdict"] == "PASS"
    assert result["roots_match"]
    assert result["claimed"] is False


def test_remote_root_mismatch_fails(service_client, dist_file):
    service, client = service_client
    doc = json.loads(dist_file.read_text())
    service.ledger.pay("split", OPERATOR, 10_000)
    service.ledger.publish("0x" + "22" * 32, 100, 10_000)

    result = verify.verify_remote(client, "", doc, 0, A)
    assert result["verdict"] == "FAIL"
    assert not result["roots_match"]


def test_remote_missing_drop(service_client, dist_file):
    _, client = service_client
    doc = json.loads(dist_file.read_text())
    assert verify.verify_remote(client, "", doc, 0, A)["reason"] == "Drop not found"
