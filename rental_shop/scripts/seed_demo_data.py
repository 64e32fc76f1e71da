#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
from models.rental_models import Merchant, Outlet, OutletStock, Plan, Product, Subscription


DEMO_PLANS = [
    ("Basic", 3000),
    ("Pro", 6000),
    ("Enterprise", 15000),
]

DEMO_PRODUCTS = [
    # name, barcode, rent price, sale price, deposit, stock
    ("Camera Body", "CAM-001", 2500, 90000, 20000, 4),
    ("Tripod", "TRI-001", 500, 8000, 2000, 10),
    ("Lighting Kit", "LGT-001", 1500, 40000, 10000, 3),
]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create the rental shop schema and insert one demo merchant.",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_SHOP_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to RENTAL_SHOP_DB_URL env var.",
    )
    parser.add_argument("--merchant-name", default="Demo Rentals", help="MerchantName of the demo merchant")
    parser.add_argument(
        "--plan",
        choices=[name for name, _ in DEMO_PLANS],
        default="Basic",
        help="Plan the demo merchant is subscribed to",
    )
    return parser


def _get_or_create_plan(db: Session, name: str, price: int) -> Plan:
    plan = db.execute(select(Plan).where(Plan.PlanName == name)).scalars().first()
    if plan:
        return plan
    plan = Plan(PlanName=name, BasePrice=price, Currency="USD", IsActive=True)
    db.add(plan)
    db.flush()
    return plan


def seed(db: Session, merchant_name: str, plan_name: str) -> dict:
    now = datetime.now(timezone.utc)
    plans = {name: _get_or_create_plan(db, name, price) for name, price in DEMO_PLANS}

    merchant = db.execute(select(Merchant).where(Merchant.MerchantName == merchant_name)).scalars().first()
    if merchant:
        return {"merchantID": merchant.MerchantID, "created": False}

    merchant = Merchant(MerchantName=merchant_name, Email="owner@example.com", IsActive=True)
    db.add(merchant)
    db.flush()

    outlet = Outlet(MerchantID=merchant.MerchantID, OutletName="Main Street", Address="1 Main Street")
    db.add(outlet)
    db.flush()

    for name, barcode, rent_price, sale_price, deposit, stock in DEMO_PRODUCTS:
        product = Product(
            MerchantID=merchant.MerchantID,
            ProductName=name,
            Barcode=barcode,
            RentPrice=rent_price,
            SalePrice=sale_price,
            Deposit=deposit,
        )
        db.add(product)
        db.flush()
        db.add(OutletStock(ProductID=product.ProductID, OutletID=outlet.OutletID, Stock=stock, Renting=0))

    plan = plans[plan_name]
    db.add(
        Subscription(
            MerchantID=merchant.MerchantID,
            PlanID=plan.PlanID,
            Status="ACTIVE",
            Amount=plan.BasePrice,
            Currency=plan.Currency,
            BillingCycle="monthly",
            CurrentPeriodStart=now,
            CurrentPeriodEnd=now + timedelta(days=30),
        )
    )
    return {"merchantID": merchant.MerchantID, "outletID": outlet.OutletID, "created": True}


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    if not args.db_url:
        parser.error("Missing DB URL. Set RENTAL_SHOP_DB_URL or pass --db-url.")

    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    Base.metadata.create_all(engine)

    with Session(engine) as db:
        try:
            result = seed(db, args.merchant_name.strip(), args.plan)
            db.commit()
        except Exception:
            db.rollback()
            raise

    if result["created"]:
        print(f"Seeded merchant {result['merchantID']} with outlet {result['outletID']}.")
    else:
        print(f"Merchant {result['merchantID']} already exists; nothing to do.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
