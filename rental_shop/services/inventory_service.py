from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Order, OrderItem, OutletStock, Product
from services.availability_service import (
    ACTIVE_RENTAL_STATES,
    ORDER_TYPE_RENT,
    RentalInterval,
    StockRecord,
    to_utc,
)


def get_product(db: Session, product_id: int) -> Product | None:
    return db.get(Product, product_id)


def get_stock_row(db: Session, product_id: int, outlet_id: int, for_update: bool = False) -> OutletStock | None:
    stmt = (
        select(OutletStock)
        .where(OutletStock.ProductID == product_id)
        .where(OutletStock.OutletID == outlet_id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalars().first()


def to_stock_record(row: OutletStock) -> StockRecord:
    return StockRecord(
        product_id=row.ProductID,
        outlet_id=row.OutletID,
        stock=int(row.Stock or 0),
        renting=int(row.Renting or 0),
    )


def get_stock_record(db: Session, product_id: int, outlet_id: int, for_update: bool = False) -> StockRecord | None:
    row = get_stock_row(db, product_id, outlet_id, for_update=for_update)
    if not row:
        return None
    return to_stock_record(row)


def _customer_name(order: Order) -> str | None:
    customer = order.Customer
    if not customer:
        return None
    return " ".join(part for part in [customer.FirstName, customer.LastName] if part) or None


def to_rental_interval(order: Order, product_id: int) -> RentalInterval:
    quantity = sum(int(item.Quantity or 0) for item in order.OrderItems if item.ProductID == product_id)
    return RentalInterval(
        order_id=order.OrderID,
        product_id=product_id,
        outlet_id=order.OutletID,
        quantity=quantity,
        pickup_at=to_utc(order.PickupPlanAt),
        return_at=to_utc(order.ReturnPlanAt),
        order_type=order.OrderType,
        status=order.Status,
        order_number=order.OrderNumber,
        customer_name=_customer_name(order),
    )


def get_candidate_orders(
    db: Session,
    product_id: int,
    outlet_id: int,
    window: tuple[datetime, datetime] | None = None,
) -> list[RentalInterval]:
    # Bookings at other outlets never count against this outlet's stock.
    stmt = (
        select(Order)
        .options(selectinload(Order.OrderItems), selectinload(Order.Customer))
        .join(OrderItem, OrderItem.OrderID == Order.OrderID)
        .where(OrderItem.ProductID == product_id)
        .where(Order.OutletID == outlet_id)
        .where(Order.OrderType == ORDER_TYPE_RENT)
        .where(Order.Status.in_(sorted(ACTIVE_RENTAL_STATES)))
        .where(Order.PickupPlanAt.is_not(None))
        .where(Order.ReturnPlanAt.is_not(None))
        .order_by(Order.PickupPlanAt, Order.OrderID)
    )
    if window is not None:
        start, end = window
        stmt = stmt.where(Order.PickupPlanAt <= end).where(Order.ReturnPlanAt >= start)

    orders = db.execute(stmt).scalars().unique().all()
    return [to_rental_interval(order, product_id) for order in orders]
