"""
Pytest tests for the FastAPI surface. The GateService is injected with a fake
provider and in-memory store via conftest.
"""

from __future__ import annotations

from tests.conftest import MINT_TOKEN, PAUSE_TOKEN, STAKER_WALLET, WETH


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_gate_whitelisted(client):
    r = client.post("/api/v1/gate", json={"token": WETH, "actionType": "swap"})
    assert r.status_code == 200
    data = r.json()
    assert data["decision"] == "PASS"
    assert data["rpc_calls"] == 0
    assert data["action_type"] == "swap"
    assert data["rate_limit"]["tier"] == "FREE"


def test_gate_mint_blocks(client):
    r = client.post("/api/v1/gate", json={"token": MINT_TOKEN, "actionType": "swap", "chain": "ethereum"})
    assert r.status_code == 200
    assert r.json()["decision"] == "BLOCK"
    assert r.json()["checks"]["mintable"] is True


def test_gate_invalid_address_is_400_with_decision(client):
    r = client.post("/api/v1/gate", json={"token": "0x123", "actionType": "swap"})
    assert r.status_code == 400
    assert r.json()["decision"] == "BLOCK"
    assert r.json()["error_code"] == "INVALID_INPUT"


def test_malformed_body_is_400_with_decision(client):
    r = client.post("/api/v1/gate", json={"token": ["not", "a", "string"], "actionType": "swap"})
    assert r.status_code == 400
    assert r.json()["decision"] == "BLOCK"
    r = client.post("/api/v1/gate", content=b"not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json()["decision"] == "BLOCK"


def test_api_key_header_sets_tier(client):
    r = client.post(
        "/api/v1/gate",
        json={"token": WETH, "actionType": "stake"},
        headers={"X-API-Key": "ent-key"},
    )
    assert r.status_code == 200
    assert r.json()["rate_limit"]["tier"] == "ENTERPRISE"


def test_forged_stake_header_stays_free(client):
    """A client-claimed balance is ignored; only the stake resolver counts."""
    r = client.post(
        "/api/v1/gate",
        json={"token": WETH, "actionType": "stake"},
        headers={"X-Stake-Balance": "1000000"},
    )
    assert r.status_code == 200
    assert r.json()["rate_limit"]["tier"] == "FREE"
    assert r.json()["rate_limit"]["limit"] == 100


def test_staked_wallet_sets_tier(client):
    r = client.post(
        "/api/v1/gate",
        json={"token": WETH, "actionType": "stake", "wallet": STAKER_WALLET},
        headers={"X-Stake-Balance": "0"},
    )
    assert r.json()["rate_limit"]["tier"] == "PRO"


def test_scan_accepts_camel_case_address(client):
    r = client.post("/api/v1/scan", json={"contractAddress": PAUSE_TOKEN})
    assert r.status_code == 200
    data = r.json()
    assert data["decision"] == "PASS"
    assert data["checks"]["pausable"] is True
    assert "risk_schema" in data
    assert "evidence_bundle" in data


def test_portfolio(client):
    r = client.post("/api/v1/portfolio", json={"tokens": [WETH, MINT_TOKEN]})
    assert r.status_code == 200
    assert r.json()["decision"] == "BLOCK"
    assert len(r.json()["tokens"]) == 2


def test_report_counts_requests(client):
    client.post("/api/v1/gate", json={"token": WETH, "actionType": "swap"})
    client.post("/api/v1/gate", json={"token": MINT_TOKEN, "actionType": "swap"})
    r = client.get("/api/v1/report")
    assert r.status_code == 200
    data = r.json()
    assert data["total_requests"] == 2
    assert data["verdicts"]["PASS"] == 1
    assert data["verdicts"]["BLOCK"] == 1


def test_report_bad_date(client):
    r = client.get("/api/v1/report", params={"date": "not-a-date"})
    assert r.status_code == 400
    assert r.json()["decision"] == "BLOCK"


def test_stats(client):
    client.post("/api/v1/gate", json={"token": WETH, "actionType": "swap"})
    r = client.get("/stats")
    assert r.status_code == 200
    assert r.json()["gate_analyzer"]["total_requests"] == 1
