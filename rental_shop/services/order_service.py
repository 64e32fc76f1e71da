from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Customer, Order, OrderItem, Outlet
from schemas.orders import CreateOrderDto
from services.audit_service import log_audit
from services.availability_service import (
    ORDER_TYPE_RENT,
    AvailabilityRequest,
    check_availability,
    format_timestamp,
    resolve_rental_window,
    serialize_verdict,
    to_utc,
)
from services.inventory_service import get_candidate_orders, get_product, get_stock_row, to_stock_record


ORDER_LOGGER = logging.getLogger("rental_shop.orders")

ORDER_TRANSITIONS = {
    "RESERVED": {"PICKUPED", "CANCELLED"},
    "PICKUPED": {"RETURNED"},
    "RETURNED": {"COMPLETED"},
    "COMPLETED": set(),
    "CANCELLED": set(),
}


class OrderError(RuntimeError):
    pass


class OrderNotFoundError(OrderError):
    pass


class OrderValidationError(OrderError):
    pass


class OrderStateError(OrderError):
    pass


class AvailabilityConflictError(OrderError):
    def __init__(self, message: str, availability: dict | None = None):
        super().__init__(message)
        self.availability = availability


def generate_order_number(db: Session, prefix: str = "ORD") -> str:
    token = (prefix or "ORD").upper()
    last = db.execute(
        select(Order)
        .where(Order.OrderNumber.like(f"{token}-%"))
        .order_by(Order.OrderID.desc())
    ).scalars().first()
    next_number = 1
    if last and last.OrderNumber:
        raw = last.OrderNumber.replace(f"{token}-", "")
        try:
            next_number = int(raw) + 1
        except ValueError:
            next_number = 1
    return f"{token}-{next_number:06d}"


def rental_days(pickup_at: datetime, return_at: datetime) -> int:
    days = math.ceil((return_at - pickup_at) / timedelta(days=1))
    return max(1, days)


def recalc_order_total(order: Order) -> None:
    if not order.OrderItems:
        order.TotalAmount = 0
        return

    days = 1
    if order.OrderType == ORDER_TYPE_RENT and order.PickupPlanAt and order.ReturnPlanAt:
        days = rental_days(to_utc(order.PickupPlanAt), to_utc(order.ReturnPlanAt))

    total = 0
    for item in order.OrderItems:
        unit_price = int(item.UnitPrice or 0)
        quantity = int(item.Quantity or 0)
        line_total = unit_price * quantity * days
        item.TotalPrice = line_total
        total += line_total
    order.TotalAmount = total


def _merge_lines(payload: CreateOrderDto) -> dict[int, int]:
    merged: dict[int, int] = {}
    for item in payload.items:
        quantity = int(item.quantity)
        if quantity < 1:
            raise OrderValidationError(f"Quantity for product {item.productID} must be at least 1.")
        merged[item.productID] = merged.get(item.productID, 0) + quantity
    return merged


def create_order(db: Session, payload: CreateOrderDto, now: datetime) -> Order:
    """Place an order after re-checking availability under a stock row lock.

    Each stock row touched by the order is locked (``SELECT ... FOR UPDATE``)
    before its availability is recomputed, so two concurrent requests for the
    same product and outlet cannot both book the last units. Rows are locked
    in product order.
    """
    if not payload.items:
        raise OrderValidationError("No order items supplied.")
    order_type = payload.orderType
    lines = _merge_lines(payload)

    window = None
    if order_type == ORDER_TYPE_RENT:
        if payload.pickupPlanAt is None or payload.returnPlanAt is None:
            raise OrderValidationError("pickupPlanAt and returnPlanAt are required for rental orders.")
        try:
            window = resolve_rental_window(payload.pickupPlanAt, payload.returnPlanAt)
        except ValueError as exc:
            raise OrderValidationError(str(exc)) from exc

    try:
        outlet = db.get(Outlet, payload.outletID)
        if not outlet:
            raise OrderNotFoundError(f"Outlet {payload.outletID} not found.")
        if payload.customerID is not None and not db.get(Customer, payload.customerID):
            raise OrderNotFoundError(f"Customer {payload.customerID} not found.")

        products = {}
        for product_id in sorted(lines):
            quantity = lines[product_id]
            product = get_product(db, product_id)
            if not product:
                raise OrderNotFoundError(f"Product {product_id} not found.")
            products[product_id] = product
            stock_row = get_stock_row(db, product_id, payload.outletID, for_update=True)
            if not stock_row:
                raise OrderNotFoundError(f"Product {product_id} is not stocked at outlet {payload.outletID}.")

            if order_type == ORDER_TYPE_RENT:
                request = AvailabilityRequest(
                    product_id=product_id,
                    outlet_id=payload.outletID,
                    quantity=quantity,
                    rental_start=window[0],
                    rental_end=window[1],
                )
                verdict = check_availability(
                    request,
                    to_stock_record(stock_row),
                    get_candidate_orders(db, product_id, payload.outletID, window),
                )
                if not verdict.can_fulfill_request:
                    raise AvailabilityConflictError(verdict.message, serialize_verdict(verdict, request, now))
            else:
                on_hand = max(0, int(stock_row.Stock or 0) - int(stock_row.Renting or 0))
                if on_hand < quantity:
                    raise AvailabilityConflictError(f"Out of stock (need {quantity}, have {on_hand})")
                stock_row.Stock = int(stock_row.Stock or 0) - quantity
                stock_row.UpdatedDate = now

        order = Order(
            OrderNumber=generate_order_number(db),
            OrderType=order_type,
            Status="RESERVED" if order_type == ORDER_TYPE_RENT else "COMPLETED",
            OutletID=payload.outletID,
            CustomerID=payload.customerID,
            PickupPlanAt=window[0] if window else None,
            ReturnPlanAt=window[1] if window else None,
            DepositAmount=payload.depositAmount or 0,
            Notes=payload.notes,
            CreatedDate=now,
            UpdatedDate=now,
        )
        for item in payload.items:
            product = products[item.productID]
            default_price = product.RentPrice if order_type == ORDER_TYPE_RENT else product.SalePrice
            order.OrderItems.append(
                OrderItem(
                    ProductID=item.productID,
                    Quantity=int(item.quantity),
                    UnitPrice=int(item.unitPrice) if item.unitPrice is not None else int(default_price or 0),
                )
            )

        recalc_order_total(order)
        db.add(order)
        db.flush()
        log_audit(db, "Order", order.OrderID, "CreateOrder", now, f"{order_type} {order.OrderNumber} at outlet {order.OutletID}")
        db.commit()
    except AvailabilityConflictError as exc:
        db.rollback()
        ORDER_LOGGER.warning("Order rejected outlet=%s reason=%s", payload.outletID, exc)
        raise
    except Exception:
        db.rollback()
        raise

    ORDER_LOGGER.info("Order created id=%s number=%s type=%s", order.OrderID, order.OrderNumber, order_type)
    return load_order(db, order.OrderID)


def load_order(db: Session, order_id: int) -> Order:
    stmt = (
        select(Order)
        .options(selectinload(Order.OrderItems).selectinload(OrderItem.Product))
        .options(selectinload(Order.Customer))
        .where(Order.OrderID == order_id)
    )
    order = db.execute(stmt).scalars().first()
    if not order:
        raise OrderNotFoundError("Order not found")
    return order


def _transition_state(order: Order, target_state: str, now: datetime) -> None:
    current = order.Status
    if target_state == current:
        return
    if current not in ORDER_TRANSITIONS or target_state not in ORDER_TRANSITIONS[current]:
        raise OrderStateError(f"Invalid state transition: {current} -> {target_state}")
    order.Status = target_state
    order.UpdatedDate = now


def _adjust_renting(db: Session, order: Order, delta_sign: int, now: datetime) -> None:
    for product_id in sorted({item.ProductID for item in order.OrderItems}):
        quantity = sum(int(item.Quantity or 0) for item in order.OrderItems if item.ProductID == product_id)
        row = get_stock_row(db, product_id, order.OutletID, for_update=True)
        if not row:
            continue
        row.Renting = max(0, int(row.Renting or 0) + delta_sign * quantity)
        row.UpdatedDate = now


def pickup_order(db: Session, order_id: int, now: datetime) -> Order:
    try:
        order = load_order(db, order_id)
        if order.OrderType != ORDER_TYPE_RENT:
            raise OrderStateError("Only rental orders can be picked up.")
        _transition_state(order, "PICKUPED", now)
        order.PickedUpAt = now
        _adjust_renting(db, order, 1, now)
        log_audit(db, "Order", order.OrderID, "Pickup", now, f"Picked up {order.OrderNumber}")
        db.commit()
    except Exception:
        db.rollback()
        raise
    ORDER_LOGGER.info("Order picked up id=%s", order_id)
    return order


def return_order(db: Session, order_id: int, now: datetime, notes: str | None = None) -> Order:
    try:
        order = load_order(db, order_id)
        _transition_state(order, "RETURNED", now)
        order.ReturnedAt = now
        if notes:
            order.Notes = (order.Notes + "\n" if order.Notes else "") + notes
        _adjust_renting(db, order, -1, now)
        log_audit(db, "Order", order.OrderID, "Return", now, f"Returned {order.OrderNumber}")
        db.commit()
    except Exception:
        db.rollback()
        raise
    ORDER_LOGGER.info("Order returned id=%s", order_id)
    return order


def cancel_order(db: Session, order_id: int, now: datetime, reason: str | None = None) -> Order:
    try:
        order = load_order(db, order_id)
        _transition_state(order, "CANCELLED", now)
        if reason:
            order.Notes = (order.Notes + "\n" if order.Notes else "") + f"Cancelled: {reason}"
        log_audit(db, "Order", order.OrderID, "Cancel", now, reason or "Cancelled")
        db.commit()
    except Exception:
        db.rollback()
        raise
    ORDER_LOGGER.info("Order cancelled id=%s", order_id)
    return order


def complete_order(db: Session, order_id: int, now: datetime) -> Order:
    try:
        order = load_order(db, order_id)
        _transition_state(order, "COMPLETED", now)
        log_audit(db, "Order", order.OrderID, "Complete", now, f"Completed {order.OrderNumber}")
        db.commit()
    except Exception:
        db.rollback()
        raise
    return order


def serialize_order(order: Order, time_zone=timezone.utc) -> dict:
    order_items = []
    for item in order.OrderItems:
        order_items.append(
            {
                "orderItemID": item.OrderItemID,
                "productID": item.ProductID,
                "quantity": item.Quantity,
                "unitPrice": item.UnitPrice,
                "totalPrice": item.TotalPrice,
                "product": {
                    "productID": item.Product.ProductID,
                    "productName": item.Product.ProductName,
                    "barcode": item.Product.Barcode,
                } if item.Product else None,
            }
        )

    customer = order.Customer
    return {
        "orderID": order.OrderID,
        "orderNumber": order.OrderNumber,
        "orderType": order.OrderType,
        "status": order.Status,
        "outletID": order.OutletID,
        "customerID": order.CustomerID,
        "customer": {
            "customerID": customer.CustomerID,
            "name": " ".join(part for part in [customer.FirstName, customer.LastName] if part),
            "phone": customer.Phone,
            "email": customer.Email,
        } if customer else None,
        "pickupPlanAt": format_timestamp(order.PickupPlanAt, time_zone),
        "returnPlanAt": format_timestamp(order.ReturnPlanAt, time_zone),
        "pickedUpAt": format_timestamp(order.PickedUpAt, time_zone),
        "returnedAt": format_timestamp(order.ReturnedAt, time_zone),
        "totalAmount": order.TotalAmount,
        "depositAmount": order.DepositAmount,
        "notes": order.Notes,
        "orderItems": order_items,
    }
