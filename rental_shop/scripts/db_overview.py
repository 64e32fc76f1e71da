#!/usr/bin/env python3
"""Database overview and integrity checks for the rental shop."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine


EXPECTED_TABLES = [
    "Merchants",
    "Outlets",
    "Products",
    "OutletStock",
    "Customers",
    "Orders",
    "OrderItems",
    "Plans",
    "Subscriptions",
    "Payments",
    "AuditLogs",
]

EXPECTED_COLUMNS: dict[str, list[str]] = {
    "OutletStock": ["OutletStockID", "ProductID", "OutletID", "Stock", "Renting", "UpdatedDate"],
    "Orders": [
        "OrderID",
        "OrderNumber",
        "OrderType",
        "Status",
        "OutletID",
        "CustomerID",
        "PickupPlanAt",
        "ReturnPlanAt",
        "PickedUpAt",
        "ReturnedAt",
        "TotalAmount",
    ],
    "OrderItems": ["OrderItemID", "OrderID", "ProductID", "Quantity", "UnitPrice", "TotalPrice"],
    "Subscriptions": [
        "SubscriptionID",
        "MerchantID",
        "PlanID",
        "Status",
        "Amount",
        "Currency",
        "BillingCycle",
        "CurrentPeriodStart",
        "CurrentPeriodEnd",
    ],
    "AuditLogs": ["AuditID", "EntityType", "EntityID", "Action", "Details", "UserID", "CreatedAt"],
}

# (name, table dependencies, SQL returning a violation count)
INTEGRITY_QUERIES: list[tuple[str, list[str], str]] = [
    (
        "outletstock:renting_exceeds_stock",
        ["OutletStock"],
        "SELECT COUNT(*) FROM OutletStock WHERE Renting > Stock",
    ),
    (
        "outletstock:negative_values",
        ["OutletStock"],
        "SELECT COUNT(*) FROM OutletStock WHERE Stock < 0 OR Renting < 0",
    ),
    (
        "outletstock:duplicate_product_outlet",
        ["OutletStock"],
        """
        SELECT COUNT(*)
        FROM (
            SELECT ProductID, OutletID
            FROM OutletStock
            GROUP BY ProductID, OutletID
            HAVING COUNT(*) > 1
        ) d
        """,
    ),
    (
        "orders:rental_window_inverted",
        ["Orders"],
        """
        SELECT COUNT(*)
        FROM Orders
        WHERE OrderType = 'RENT' AND ReturnPlanAt < PickupPlanAt
        """,
    ),
    (
        "orders:active_rental_without_window",
        ["Orders"],
        """
        SELECT COUNT(*)
        FROM Orders
        WHERE OrderType = 'RENT'
          AND Status IN ('RESERVED', 'PICKUPED')
          AND (PickupPlanAt IS NULL OR ReturnPlanAt IS NULL)
        """,
    ),
    (
        "orderitems:orphan_productid",
        ["OrderItems", "Products"],
        """
        SELECT COUNT(*)
        FROM OrderItems oi
        LEFT JOIN Products p ON p.ProductID = oi.ProductID
        WHERE p.ProductID IS NULL
        """,
    ),
    (
        "orderitems:non_positive_quantity",
        ["OrderItems"],
        "SELECT COUNT(*) FROM OrderItems WHERE Quantity < 1",
    ),
    (
        "subscriptions:inverted_period",
        ["Subscriptions"],
        "SELECT COUNT(*) FROM Subscriptions WHERE CurrentPeriodEnd < CurrentPeriodStart",
    ),
]


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


def _table_names(engine: Engine) -> set[str]:
    return set(inspect(engine).get_table_names())


def _column_names(engine: Engine, table_name: str) -> set[str]:
    return {str(column["name"]) for column in inspect(engine).get_columns(table_name)}


def _run_existence_checks(engine: Engine) -> list[CheckResult]:
    present = _table_names(engine)
    results: list[CheckResult] = []
    for table in EXPECTED_TABLES:
        exists = table in present
        results.append(CheckResult(f"table:{table}", exists, "present" if exists else "missing"))
    return results


def _run_column_checks(engine: Engine) -> list[CheckResult]:
    present = _table_names(engine)
    results: list[CheckResult] = []
    for table, expected in EXPECTED_COLUMNS.items():
        if table not in present:
            results.append(CheckResult(f"columns:{table}", False, "table missing"))
            continue
        actual = _column_names(engine, table)
        missing = [name for name in expected if name not in actual]
        results.append(
            CheckResult(
                f"columns:{table}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def _run_integrity_checks(engine: Engine) -> list[CheckResult]:
    present = _table_names(engine)
    checks: list[CheckResult] = []
    for name, tables, sql in INTEGRITY_QUERIES:
        if any(table not in present for table in tables):
            checks.append(CheckResult(name, False, "table missing"))
            continue
        count = int(_scalar(engine, sql) or 0)
        checks.append(CheckResult(name, count == 0, f"count={count}"))
    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    present = _table_names(engine)
    for table in EXPECTED_TABLES:
        if table not in present:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f"SELECT COUNT(*) FROM {table}")
        print(f"{table}: {int(count or 0)}")


def _print_samples(engine: Engine, sample_size: int) -> None:
    _print_section("Sample Values")
    sample_size = max(1, sample_size)
    present = _table_names(engine)

    if "Orders" in present:
        rows = _rows(
            engine,
            """
            SELECT OrderID, OrderNumber, OrderType, Status, PickupPlanAt, ReturnPlanAt
            FROM Orders
            ORDER BY OrderID DESC
            LIMIT :n
            """,
            {"n": sample_size},
        )
        print("Orders (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")

    if "AuditLogs" in present:
        rows = _rows(
            engine,
            """
            SELECT AuditID, EntityType, Action, UserID, CreatedAt
            FROM AuditLogs
            ORDER BY AuditID DESC
            LIMIT :n
            """,
            {"n": sample_size},
        )
        print("AuditLogs (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Rental shop DB overview")
    parser.add_argument("--db-url", default=os.environ.get("RENTAL_SHOP_DB_URL", ""))
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("RENTAL_SHOP_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    _print_results("Table Existence", _run_existence_checks(engine))
    _print_results("Column Checks", _run_column_checks(engine))
    _print_results("Integrity Checks", _run_integrity_checks(engine))
    _print_row_counts(engine)
    _print_samples(engine, args.samples)
    return 0


if __name__ == "__main__":
    sys.exit(main())
