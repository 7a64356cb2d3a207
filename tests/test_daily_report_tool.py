"""
Pytest tests for the daily report CLI against a temporary SQLite ledger.
"""

from __future__ import annotations

import json

import pytest

DAY = "2026-03-14"


@pytest.fixture
def sql_env(tmp_path, monkeypatch):
    from backend_riskgate.config import reset_settings_for_test

    db_url = f"sqlite:///{tmp_path / 'ledger.db'}"
    monkeypatch.setenv("RISKGATE_STORE", "sql")
    monkeypatch.setenv("RISKGATE_DB_URL", db_url)
    reset_settings_for_test()
    yield db_url
    reset_settings_for_test()


def _seed(db_url):
    from backend_riskgate.database.sql_store import SqlStore
    from backend_riskgate.gateway.ledger import LogRecord, RequestLedger

    store = SqlStore(db_url)
    ledger = RequestLedger(store)
    for i, verdict in enumerate(["PASS", "BLOCK", "BLOCK"]):
        ledger.append(
            LogRecord(
                request_id=f"req_{i}",
                timestamp=f"{DAY}T08:00:0{i}+00:00",
                endpoint="gate",
                token="0xabc",
                verdict=verdict,
                latency_ms=12,
            )
        )
    store.close()


def test_daily_report_json(sql_env, capsys):
    from backend_riskgate.tools.daily_report import main

    _seed(sql_env)
    assert main(["--date", DAY, "--json"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["total_requests"] == 3
    assert report["verdicts"]["BLOCK"] == 2
    assert report["top_tokens"] == [{"token": "0xabc", "count": 3}]


def test_daily_report_text_and_bad_date(sql_env, capsys):
    from backend_riskgate.tools.daily_report import main

    _seed(sql_env)
    assert main(["--date", DAY]) == 0
    assert "Total requests: 3" in capsys.readouterr().out
    assert main(["--date", "March"]) == 2
