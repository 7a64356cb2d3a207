"""
Print the daily request report from the shared ledger.

Reads the store configured by RISKGATE_STORE / RISKGATE_DB_URL, so it is only
meaningful with the sql store (a memory store starts empty in a new process).

Usage:
    python -m backend_riskgate.tools.daily_report                 # yesterday (UTC), text
    python -m backend_riskgate.tools.daily_report --date 2026-01-31 --json
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone

from backend_riskgate.config import get_settings
from backend_riskgate.config.settings import STORE_SQL
from backend_riskgate.database import get_store
from backend_riskgate.gateway.ledger import DEFAULT_TOP_TOKENS, RequestLedger, format_report_text
from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)


def _yesterday() -> str:
    return (datetime.now(timezone.utc) - timedelta(days=1)).date().isoformat()


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Aggregate one UTC day of gate requests.")
    ap.add_argument("--date", default=None, help="UTC day YYYY-MM-DD (default: yesterday)")
    ap.add_argument("--top", type=int, default=DEFAULT_TOP_TOKENS, help="Number of top tokens to list")
    ap.add_argument("--json", dest="as_json", action="store_true", help="Print JSON instead of text")
    args = ap.parse_args(argv)

    settings = get_settings()
    if settings.store_backend != STORE_SQL:
        logger.warning("daily_report_memory_store", store=settings.store_backend)

    store = get_store(settings)
    try:
        report = RequestLedger(store).daily_report(args.date or _yesterday(), top_n=args.top)
    except ValueError as e:
        print(f"[daily_report] Invalid date: {e}", file=sys.stderr)
        return 2
    finally:
        store.close()

    if args.as_json:
        print(json.dumps(report, indent=2))
    else:
        print(format_report_text(report))
    return 0


if __name__ == "__main__":
    sys.exit(main())
