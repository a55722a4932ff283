#!/usr/bin/env python3
"""Schedule returns for overdue active rentals; safe to run from cron repeatedly."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import date
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Move overdue active rentals to return_scheduled.")
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to RENTAL_DB_URL env var.",
    )
    parser.add_argument(
        "--grace-days",
        type=int,
        default=int(os.environ.get("RETURN_SWEEP_GRACE_DAYS") or "0"),
        help="Days past the end date before a return is scheduled.",
    )
    parser.add_argument("--today", type=date.fromisoformat, default=None, help="Override today's date (YYYY-MM-DD).")
    return parser


def main() -> int:
    args = _build_parser().parse_args()
    if not args.db_url:
        print("RENTAL_DB_URL is not set. Provide --db-url or export env first.")
        return 2
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    # The session module reads its URL at import time.
    os.environ["RENTAL_DB_URL"] = args.db_url
    from db.session import SessionLocalRental
    from services.shipping_service import sweep_overdue_returns

    db = SessionLocalRental()
    try:
        result = sweep_overdue_returns(db, today=args.today, grace_days=args.grace_days)
    finally:
        db.close()
    print(f"checked={result['checked']} scheduled={len(result['scheduled'])} rentalIDs={result['scheduled']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
