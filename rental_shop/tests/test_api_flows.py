import os
import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path

from fastapi.testclient import TestClient
from sqlalchemy import func, select


os.environ.setdefault("RENTAL_SHOP_DB_URL", "sqlite+pysqlite:///:memory:")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import RentalShop as app_module
from db.base import Base
from db.session import SessionLocalRental, engine_rental
from models.rental_models import (
    AuditLog,
    Customer,
    Merchant,
    Order,
    OrderItem,
    Outlet,
    OutletStock,
    Payment,
    Plan,
    Product,
    Subscription,
)


NOW = datetime(2024, 1, 16, tzinfo=timezone.utc)


def _utc(year, month, day, hour=0):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def _seed():
    with SessionLocalRental() as db:
        merchant = Merchant(MerchantID=1, MerchantName="Demo Rentals")
        db.add(merchant)
        db.add_all(
            [
                Outlet(OutletID=1, MerchantID=1, OutletName="Main Street"),
                Outlet(OutletID=2, MerchantID=1, OutletName="Harbour"),
                Product(ProductID=1, MerchantID=1, ProductName="Camera Body", Barcode="CAM-001", RentPrice=1000, SalePrice=5000),
                Product(ProductID=2, MerchantID=1, ProductName="Tripod", Barcode="TRI-001", RentPrice=200, SalePrice=900),
                Customer(CustomerID=1, MerchantID=1, FirstName="Ada", LastName="Lovelace"),
            ]
        )
        db.flush()
        db.add_all(
            [
                OutletStock(ProductID=1, OutletID=1, Stock=10, Renting=0),
                OutletStock(ProductID=1, OutletID=2, Stock=2, Renting=0),
            ]
        )
        order = Order(
            OrderID=1,
            OrderNumber="ORD-000001",
            OrderType="RENT",
            Status="RESERVED",
            OutletID=1,
            CustomerID=1,
            PickupPlanAt=_utc(2024, 1, 10),
            ReturnPlanAt=_utc(2024, 1, 15),
            TotalAmount=15000,
        )
        order.OrderItems.append(OrderItem(ProductID=1, Quantity=3, UnitPrice=1000, TotalPrice=15000))
        db.add(order)

        db.add_all(
            [
                Plan(PlanID=1, PlanName="Basic", BasePrice=3000, Currency="USD", IsActive=True),
                Plan(PlanID=2, PlanName="Pro", BasePrice=6000, Currency="USD", IsActive=True),
                Plan(PlanID=3, PlanName="Legacy", BasePrice=9000, Currency="USD", IsActive=False),
            ]
        )
        db.flush()
        db.add_all(
            [
                Subscription(
                    SubscriptionID=1,
                    MerchantID=1,
                    PlanID=1,
                    Status="ACTIVE",
                    Amount=3000,
                    Currency="USD",
                    BillingCycle="monthly",
                    CurrentPeriodStart=_utc(2024, 1, 1),
                    CurrentPeriodEnd=_utc(2024, 1, 31),
                ),
                Subscription(
                    SubscriptionID=2,
                    MerchantID=1,
                    PlanID=1,
                    Status="CANCELLED",
                    Amount=3000,
                    Currency="USD",
                    BillingCycle="monthly",
                    CurrentPeriodStart=_utc(2024, 1, 1),
                    CurrentPeriodEnd=_utc(2024, 1, 31),
                ),
            ]
        )
        db.commit()


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        Base.metadata.drop_all(engine_rental)
        Base.metadata.create_all(engine_rental)
        _seed()
        app_module.app.dependency_overrides[app_module.get_clock] = lambda: NOW
        self.client = TestClient(app_module.app)

    def tearDown(self):
        app_module.app.dependency_overrides.clear()

    def _stock(self, product_id=1, outlet_id=1):
        with SessionLocalRental() as db:
            row = db.execute(
                select(OutletStock)
                .where(OutletStock.ProductID == product_id)
                .where(OutletStock.OutletID == outlet_id)
            ).scalars().first()
            return int(row.Stock), int(row.Renting)

    def _count(self, model):
        with SessionLocalRental() as db:
            return int(db.execute(select(func.count()).select_from(model)).scalar())


class HealthTests(ApiTestCase):
    def test_health_endpoints(self):
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})
        response = self.client.get("/api/healthz")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})


class AvailabilityApiTests(ApiTestCase):
    def test_touching_window_reports_conflict_with_enough_stock(self):
        response = self.client.get(
            "/api/products/1/availability",
            params={
                "outletId": 1,
                "quantity": 5,
                "startDate": "2024-01-15T00:00:00Z",
                "endDate": "2024-01-20T00:00:00Z",
            },
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["productName"], "Camera Body")
        self.assertEqual(body["conflictingQuantity"], 3)
        self.assertEqual(body["effectivelyAvailable"], 7)
        self.assertTrue(body["canFulfillRequest"])
        self.assertTrue(body["windowChecked"])
        self.assertEqual(body["totalConflictsFound"], 1)
        conflict = body["conflicts"][0]
        self.assertEqual(conflict["orderNumber"], "ORD-000001")
        self.assertEqual(conflict["customerName"], "Ada Lovelace")
        self.assertEqual(conflict["conflictType"], "period_overlap")
        self.assertEqual(body["checkedAt"], "2024-01-16T00:00:00+00:00")

    def test_other_outlet_bookings_are_not_counted(self):
        response = self.client.get(
            "/api/products/1/availability",
            params={"outletId": 2, "quantity": 2, "startDate": "2024-01-11", "endDate": "2024-01-12"},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["conflictingQuantity"], 0)
        self.assertEqual(body["effectivelyAvailable"], 2)
        self.assertTrue(body["canFulfillRequest"])

    def test_without_window_uses_raw_stock(self):
        response = self.client.get("/api/products/1/availability", params={"outletId": 1, "quantity": 3})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertFalse(body["windowChecked"])
        self.assertEqual(body["conflicts"], [])
        self.assertEqual(body["message"], "In stock: 10 units available")

    def test_single_date_expands_to_whole_day(self):
        response = self.client.get(
            "/api/products/1/availability",
            params={"outletId": 1, "quantity": 8, "date": "2024-01-12"},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["rentalStart"], "2024-01-12T00:00:00+00:00")
        self.assertEqual(body["rentalEnd"], "2024-01-12T23:59:59+00:00")
        self.assertEqual(body["conflicts"][0]["conflictType"], "complete_overlap")
        self.assertFalse(body["canFulfillRequest"])
        self.assertIn("Only 7 units available", body["message"])

    def test_time_zone_changes_display_only(self):
        params = {"outletId": 1, "quantity": 1, "date": "2024-01-12"}
        utc_body = self.client.get("/api/products/1/availability", params=params).json()
        tokyo_body = self.client.get(
            "/api/products/1/availability",
            params={**params, "timeZone": "Asia/Tokyo", "precise": "true"},
        ).json()
        self.assertEqual(tokyo_body["rentalStart"], "2024-01-12T09:00:00.000+09:00")
        self.assertEqual(tokyo_body["timeZone"], "Asia/Tokyo")
        self.assertEqual(tokyo_body["effectivelyAvailable"], utc_body["effectivelyAvailable"])
        self.assertEqual(tokyo_body["conflictingQuantity"], utc_body["conflictingQuantity"])

    def test_invalid_requests_are_rejected(self):
        cases = [
            {"outletId": 1, "quantity": 0},
            {"outletId": 1, "quantity": -2},
            {"outletId": 1, "startDate": "2024-01-20", "endDate": "2024-01-10"},
            {"outletId": 1, "endDate": "2024-01-10"},
            {"outletId": 1, "startDate": "yesterday"},
            {"outletId": 1, "date": "2024-01-10", "startDate": "2024-01-10"},
            {"outletId": 1, "timeZone": "Nowhere/Special"},
        ]
        for params in cases:
            with self.subTest(params=params):
                response = self.client.get("/api/products/1/availability", params=params)
                self.assertEqual(response.status_code, 400)

    def test_missing_product_or_stock_row_is_404(self):
        self.assertEqual(self.client.get("/api/products/999/availability", params={"outletId": 1}).status_code, 404)
        self.assertEqual(self.client.get("/api/products/2/availability", params={"outletId": 1}).status_code, 404)

    def test_day_summary(self):
        response = self.client.get(
            "/api/products/availability",
            params={"productId": 1, "outletId": 1, "date": "2024-01-12"},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["date"], "2024-01-12")
        self.assertEqual(body["summary"]["totalStock"], 10)
        self.assertEqual(body["summary"]["totalReserved"], 3)
        self.assertEqual(body["summary"]["totalRented"], 0)
        self.assertEqual(body["summary"]["totalAvailable"], 7)
        self.assertTrue(body["summary"]["isAvailable"])
        self.assertEqual(body["meta"]["totalOrders"], 1)

    def test_day_summary_rejects_bad_date(self):
        response = self.client.get(
            "/api/products/availability",
            params={"productId": 1, "outletId": 1, "date": "2024-01-12T10:00:00"},
        )
        self.assertEqual(response.status_code, 400)

    def test_day_summary_counts_picked_up_order_once(self):
        self.assertEqual(self.client.post("/api/orders/1/pickup").status_code, 200)
        self.assertEqual(self._stock(), (10, 3))

        response = self.client.get(
            "/api/products/availability",
            params={"productId": 1, "outletId": 1, "date": "2024-01-12"},
        )
        self.assertEqual(response.status_code, 200)
        summary = response.json()["summary"]
        self.assertEqual(summary["totalRenting"], 3)
        self.assertEqual(summary["totalRented"], 3)
        self.assertEqual(summary["totalReserved"], 0)
        self.assertEqual(summary["totalAvailable"], 7)
        self.assertEqual(
            summary["totalAvailable"],
            summary["totalStock"] - summary["totalRented"] - summary["totalReserved"],
        )
        self.assertTrue(summary["isAvailable"])


class OrderFlowTests(ApiTestCase):
    def _rent(self, quantity, pickup="2024-01-12T00:00:00Z", ret="2024-01-13T00:00:00Z"):
        return self.client.post(
            "/api/orders",
            json={
                "outletID": 1,
                "customerID": 1,
                "orderType": "RENT",
                "pickupPlanAt": pickup,
                "returnPlanAt": ret,
                "items": [{"productID": 1, "quantity": quantity}],
            },
        )

    def test_order_beyond_availability_is_conflict(self):
        response = self._rent(8)
        self.assertEqual(response.status_code, 409)
        detail = response.json()["detail"]
        self.assertIn("Only 7 units available", detail["message"])
        self.assertEqual(detail["availability"]["effectivelyAvailable"], 7)
        self.assertEqual(self._count(Order), 1)

    def test_rental_lifecycle_updates_renting(self):
        created = self._rent(7)
        self.assertEqual(created.status_code, 200)
        order = created.json()
        self.assertEqual(order["status"], "RESERVED")
        self.assertEqual(order["orderNumber"], "ORD-000002")
        self.assertEqual(order["totalAmount"], 7000)
        self.assertEqual(order["customer"]["name"], "Ada Lovelace")

        # the remaining unit for that window is gone now
        self.assertEqual(self._rent(1).status_code, 409)

        order_id = order["orderID"]
        picked = self.client.post(f"/api/orders/{order_id}/pickup")
        self.assertEqual(picked.status_code, 200)
        self.assertEqual(picked.json()["status"], "PICKUPED")
        self.assertEqual(picked.json()["pickedUpAt"], "2024-01-16T00:00:00+00:00")
        self.assertEqual(self._stock(), (10, 7))

        returned = self.client.post(f"/api/orders/{order_id}/return", json={"notes": "lens cap missing"})
        self.assertEqual(returned.status_code, 200)
        self.assertEqual(returned.json()["status"], "RETURNED")
        self.assertIn("lens cap missing", returned.json()["notes"])
        self.assertEqual(self._stock(), (10, 0))

        self.assertEqual(self.client.post(f"/api/orders/{order_id}/cancel").status_code, 400)
        completed = self.client.post(f"/api/orders/{order_id}/complete")
        self.assertEqual(completed.status_code, 200)
        self.assertEqual(completed.json()["status"], "COMPLETED")

        with SessionLocalRental() as db:
            actions = db.execute(
                select(AuditLog.Action).where(AuditLog.EntityType == "Order").where(AuditLog.EntityID == order_id)
            ).scalars().all()
        self.assertEqual(sorted(actions), ["Complete", "CreateOrder", "Pickup", "Return"])

    def test_audit_rows_use_the_request_clock(self):
        created = self._rent(1)
        self.assertEqual(created.status_code, 200)
        order_id = created.json()["orderID"]
        self.assertEqual(self.client.post(f"/api/orders/{order_id}/cancel").status_code, 200)

        with SessionLocalRental() as db:
            stamps = db.execute(
                select(AuditLog.CreatedAt).where(AuditLog.EntityType == "Order").where(AuditLog.EntityID == order_id)
            ).scalars().all()
        self.assertEqual(len(stamps), 2)
        for stamp in stamps:
            self.assertEqual(stamp.replace(tzinfo=timezone.utc), NOW)

    def test_cancelled_order_frees_the_window(self):
        cancelled = self.client.post("/api/orders/1/cancel", json={"reason": "customer called"})
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.json()["status"], "CANCELLED")
        response = self.client.get(
            "/api/products/1/availability",
            params={"outletId": 1, "quantity": 10, "date": "2024-01-12"},
        )
        self.assertTrue(response.json()["canFulfillRequest"])

    def test_rental_needs_a_valid_window(self):
        missing = self.client.post(
            "/api/orders",
            json={"outletID": 1, "orderType": "RENT", "items": [{"productID": 1, "quantity": 1}]},
        )
        self.assertEqual(missing.status_code, 400)
        inverted = self._rent(1, pickup="2024-01-13T00:00:00Z", ret="2024-01-12T00:00:00Z")
        self.assertEqual(inverted.status_code, 400)
        zero = self._rent(0)
        self.assertEqual(zero.status_code, 400)

    def test_date_only_window_covers_whole_days(self):
        created = self._rent(2, pickup="2024-01-20", ret="2024-01-21")
        self.assertEqual(created.status_code, 200)
        order = created.json()
        self.assertEqual(order["pickupPlanAt"], "2024-01-20T00:00:00+00:00")
        self.assertEqual(order["returnPlanAt"], "2024-01-21T23:59:59+00:00")
        self.assertEqual(order["totalAmount"], 4000)

        # same bounds as the availability query resolves for those dates
        response = self.client.get(
            "/api/products/1/availability",
            params={"outletId": 1, "quantity": 1, "startDate": "2024-01-21T12:00:00Z"},
        )
        self.assertEqual(response.json()["conflictingQuantity"], 2)

    def test_sale_order_decrements_stock(self):
        response = self.client.post(
            "/api/orders",
            json={"outletID": 1, "orderType": "SALE", "items": [{"productID": 1, "quantity": 2}]},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "COMPLETED")
        self.assertEqual(body["totalAmount"], 10000)
        self.assertEqual(self._stock(), (8, 0))
        self.assertEqual(self.client.post(f"/api/orders/{body['orderID']}/pickup").status_code, 400)

    def test_unknown_rows_are_404(self):
        self.assertEqual(self.client.get("/api/orders/999").status_code, 404)
        self.assertEqual(self.client.post("/api/orders/999/pickup").status_code, 404)
        response = self.client.post(
            "/api/orders",
            json={"outletID": 9, "orderType": "SALE", "items": [{"productID": 1, "quantity": 1}]},
        )
        self.assertEqual(response.status_code, 404)


class SubscriptionFlowTests(ApiTestCase):
    def test_preview_does_not_write(self):
        response = self.client.post("/api/subscriptions/1/proration-preview", json={"planID": 2})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["proration"]["chargeAmount"], 1500)
        self.assertEqual(body["proration"]["summary"], "Charge USD 15.00 (upgrade mid-cycle)")
        self.assertEqual(body["effectiveDate"], "2024-01-16T00:00:00+00:00")
        self.assertEqual(self._count(Payment), 0)
        self.assertEqual(self.client.get("/api/subscriptions/1").json()["planID"], 1)

    def test_upgrade_creates_pending_payment(self):
        response = self.client.post("/api/subscriptions/1/change-plan", json={"planID": 2, "reason": "more outlets"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["subscription"]["planID"], 2)
        self.assertEqual(body["subscription"]["amount"], 6000)
        self.assertEqual(body["payment"]["amount"], 1500)
        self.assertEqual(body["payment"]["status"], "PENDING")
        self.assertEqual(self._count(Payment), 1)

        with SessionLocalRental() as db:
            audit = db.execute(
                select(AuditLog).where(AuditLog.EntityType == "Subscription").where(AuditLog.Action == "ChangePlan")
            ).scalars().first()
        self.assertIsNotNone(audit)
        self.assertIn("note=more outlets", audit.Details)
        self.assertEqual(audit.CreatedAt.replace(tzinfo=timezone.utc), NOW)

        with SessionLocalRental() as db:
            payment = db.execute(select(Payment)).scalars().first()
        self.assertEqual(payment.CreatedAt.replace(tzinfo=timezone.utc), NOW)

    def test_downgrade_has_no_payment(self):
        self.client.post("/api/subscriptions/1/change-plan", json={"planID": 2})
        response = self.client.post("/api/subscriptions/1/change-plan", json={"planID": 1})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertIsNone(body["payment"])
        self.assertEqual(body["proration"]["reason"], "downgrade: no charge")
        self.assertEqual(self._count(Payment), 1)

    def test_explicit_effective_date(self):
        response = self.client.post(
            "/api/subscriptions/1/proration-preview",
            json={"planID": 2, "effectiveDate": "2024-01-01T00:00:00Z"},
        )
        self.assertEqual(response.json()["proration"]["chargeAmount"], 3000)

    def test_plan_change_errors(self):
        self.assertEqual(self.client.post("/api/subscriptions/1/change-plan", json={"planID": 1}).status_code, 400)
        self.assertEqual(self.client.post("/api/subscriptions/2/change-plan", json={"planID": 2}).status_code, 400)
        self.assertEqual(self.client.post("/api/subscriptions/1/change-plan", json={"planID": 3}).status_code, 404)
        self.assertEqual(self.client.post("/api/subscriptions/99/change-plan", json={"planID": 2}).status_code, 404)
        self.assertEqual(self._count(Payment), 0)

    def test_extension_quote(self):
        response = self.client.post("/api/subscriptions/1/extension-quote", json={"periods": 2})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["extensionDays"], 60)
        self.assertEqual(body["extensionCost"], 6000)
        self.assertEqual(body["gapDays"], 0)
        self.assertEqual(body["extensionStart"], "2024-01-31T00:00:00+00:00")
        self.assertEqual(body["extensionEnd"], "2024-03-31T00:00:00+00:00")
        self.assertEqual(
            self.client.post("/api/subscriptions/1/extension-quote", json={"periods": 0}).status_code,
            400,
        )


if __name__ == "__main__":
    unittest.main()
