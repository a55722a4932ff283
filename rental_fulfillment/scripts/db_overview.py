#!/usr/bin/env python3
"""Database overview and booking integrity checks for the camera rental store."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine


EXPECTED_TABLES = [
    "Customers",
    "Cameras",
    "CameraPricingTiers",
    "Rentals",
    "Payments",
    "RentalExtensions",
    "AuditLogs",
    "NotificationQueue",
]

EXPECTED_COLUMNS: dict[str, list[str]] = {
    "Cameras": ["UnitID", "ModelName", "SerialNumber", "CameraStatus"],
    "CameraPricingTiers": ["PricingTierID", "UnitID", "MinDays", "MaxDays", "PricePerDay"],
    "Rentals": [
        "RentalID",
        "UnitID",
        "CustomerID",
        "StartDate",
        "EndDate",
        "RentalStatus",
        "ShippingStatus",
        "PricePerDay",
        "TotalPrice",
        "BookingType",
    ],
    "Payments": ["PaymentID", "RentalID", "ExtensionID", "PaymentType", "Amount", "PaymentStatus"],
    "RentalExtensions": ["ExtensionID", "RentalID", "RequestedEndDate", "ExtensionStatus"],
}


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _scalar(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar()


def _rows(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).all()


def _run_existence_checks(engine: Engine, tables: set[str]) -> list[CheckResult]:
    return [
        CheckResult(f"table:{table}", table in tables, "present" if table in tables else "missing")
        for table in EXPECTED_TABLES
    ]


def _run_column_checks(engine: Engine, tables: set[str]) -> list[CheckResult]:
    results: list[CheckResult] = []
    inspector = inspect(engine)
    for table, expected in EXPECTED_COLUMNS.items():
        if table not in tables:
            results.append(CheckResult(f"columns:{table}", False, "table missing"))
            continue
        actual = {column["name"] for column in inspector.get_columns(table)}
        missing = [name for name in expected if name not in actual]
        results.append(
            CheckResult(
                f"columns:{table}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def double_booked_pairs(engine: Engine):
    """Pairs of confirmed/active rentals sharing a unit on at least one day."""
    return _rows(
        engine,
        """
        SELECT a.RentalID, b.RentalID, a.UnitID
        FROM Rentals a
        JOIN Rentals b
          ON b.UnitID = a.UnitID AND b.RentalID > a.RentalID
        WHERE a.RentalStatus IN ('confirmed', 'active')
          AND b.RentalStatus IN ('confirmed', 'active')
          AND a.StartDate <= b.EndDate
          AND b.StartDate <= a.EndDate
        ORDER BY a.UnitID, a.RentalID
        """,
    )


def _run_integrity_checks(engine: Engine, tables: set[str]) -> list[CheckResult]:
    checks: list[CheckResult] = []
    if "Rentals" not in tables:
        return checks

    pairs = double_booked_pairs(engine)
    checks.append(
        CheckResult(
            "rentals:double_booked_units",
            not pairs,
            f"count={len(pairs)}" + ("" if not pairs else f" pairs={[tuple(row) for row in pairs[:10]]}"),
        )
    )

    stray_shipping = _scalar(
        engine,
        """
        SELECT COUNT(*)
        FROM Rentals
        WHERE ShippingStatus IS NOT NULL
          AND RentalStatus NOT IN ('confirmed', 'active')
        """,
    )
    checks.append(
        CheckResult(
            "rentals:shipping_outside_confirmed_or_active",
            int(stray_shipping or 0) == 0,
            f"count={int(stray_shipping or 0)}",
        )
    )

    inverted = _scalar(engine, "SELECT COUNT(*) FROM Rentals WHERE EndDate < StartDate")
    checks.append(
        CheckResult("rentals:end_before_start", int(inverted or 0) == 0, f"count={int(inverted or 0)}")
    )

    if "Cameras" in tables:
        orphan_unit = _scalar(
            engine,
            """
            SELECT COUNT(*)
            FROM Rentals r
            LEFT JOIN Cameras c ON c.UnitID = r.UnitID
            WHERE c.UnitID IS NULL
            """,
        )
        checks.append(
            CheckResult("rentals:orphan_unitid", int(orphan_unit or 0) == 0, f"count={int(orphan_unit or 0)}")
        )

    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine, tables: set[str]) -> None:
    _print_section("Row Counts")
    for table in EXPECTED_TABLES:
        if table not in tables:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f"SELECT COUNT(*) FROM {table}")
        print(f"{table}: {int(count or 0)}")


def _print_status_breakdown(engine: Engine, tables: set[str]) -> None:
    _print_section("Rental Status Breakdown")
    if "Rentals" not in tables:
        print("Rentals: missing")
        return
    rows = _rows(
        engine,
        """
        SELECT RentalStatus, ShippingStatus, COUNT(*)
        FROM Rentals
        GROUP BY RentalStatus, ShippingStatus
        ORDER BY RentalStatus, ShippingStatus
        """,
    )
    for rental_status, shipping_status, count in rows:
        print(f"  - {rental_status} / {shipping_status or '-'}: {int(count)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Camera rental DB overview")
    parser.add_argument("--db-url", default=os.environ.get("RENTAL_DB_URL", ""))
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("RENTAL_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        # Force a quick connectivity check first.
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    tables = set(inspect(engine).get_table_names())
    integrity = _run_integrity_checks(engine, tables)
    _print_results("Table Existence", _run_existence_checks(engine, tables))
    _print_results("Column Checks", _run_column_checks(engine, tables))
    _print_results("Integrity Checks", integrity)
    _print_row_counts(engine, tables)
    _print_status_breakdown(engine, tables)
    return 0 if all(check.ok for check in integrity) else 1


if __name__ == "__main__":
    sys.exit(main())
