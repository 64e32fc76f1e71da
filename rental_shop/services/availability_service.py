from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


ORDER_TYPE_RENT = "RENT"
ORDER_TYPE_SALE = "SALE"
ACTIVE_RENTAL_STATES = {"RESERVED", "PICKUPED"}

_END_OF_DAY = time(23, 59, 59, 999000)


class OverlapKind(str, enum.Enum):
    COMPLETE_OVERLAP = "complete_overlap"
    PERIOD_OVERLAP = "period_overlap"


@dataclass(frozen=True)
class StockRecord:
    product_id: int
    outlet_id: int
    stock: int
    renting: int

    @property
    def available(self) -> int:
        return max(0, self.stock - self.renting)


@dataclass(frozen=True)
class RentalInterval:
    order_id: int
    product_id: int
    outlet_id: int
    quantity: int
    pickup_at: datetime
    return_at: datetime
    order_type: str = ORDER_TYPE_RENT
    status: str = "RESERVED"
    order_number: Optional[str] = None
    customer_name: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.order_type == ORDER_TYPE_RENT and self.status in ACTIVE_RENTAL_STATES


@dataclass(frozen=True)
class AvailabilityRequest:
    product_id: int
    outlet_id: int
    quantity: int
    rental_start: Optional[datetime] = None
    rental_end: Optional[datetime] = None
    time_zone: str = "UTC"
    precise: bool = False

    @property
    def has_window(self) -> bool:
        return self.rental_start is not None and self.rental_end is not None


@dataclass(frozen=True)
class ConflictDetail:
    interval: RentalInterval
    overlap_kind: OverlapKind
    overlap_start: datetime
    overlap_end: datetime

    @property
    def overlap_duration(self) -> timedelta:
        return self.overlap_end - self.overlap_start


@dataclass(frozen=True)
class AvailabilityVerdict:
    product_id: int
    outlet_id: int
    requested_quantity: int
    total_stock: int
    total_renting: int
    total_available_stock: int
    stock_available: bool
    conflicting_quantity: int
    effectively_available: int
    can_fulfill_request: bool
    is_available: bool
    window_checked: bool
    conflicts: tuple[ConflictDetail, ...]
    message: str


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start <= b_end and a_end >= b_start


def _order_contains_request(order_start: datetime, order_end: datetime, start: datetime, end: datetime) -> bool:
    return order_start <= start and order_end >= end


def _request_contains_order(order_start: datetime, order_end: datetime, start: datetime, end: datetime) -> bool:
    return start <= order_start and end >= order_end


def _left_edge_overlap(order_start: datetime, order_end: datetime, start: datetime, end: datetime) -> bool:
    return order_start < start <= order_end


def _right_edge_overlap(order_start: datetime, order_end: datetime, start: datetime, end: datetime) -> bool:
    return order_start <= end < order_end


# Evaluated in order; containment in either direction wins over an edge overlap.
_OVERLAP_RULES: tuple[tuple[Callable[[datetime, datetime, datetime, datetime], bool], OverlapKind], ...] = (
    (_order_contains_request, OverlapKind.COMPLETE_OVERLAP),
    (_request_contains_order, OverlapKind.COMPLETE_OVERLAP),
    (_left_edge_overlap, OverlapKind.PERIOD_OVERLAP),
    (_right_edge_overlap, OverlapKind.PERIOD_OVERLAP),
)


def classify_overlap(interval: RentalInterval, start: datetime, end: datetime) -> OverlapKind:
    """Classify how an overlapping order window relates to the requested window.

    Only meaningful for windows that already overlap; the classification is
    informational and never changes the quantity math.
    """
    for predicate, kind in _OVERLAP_RULES:
        if predicate(interval.pickup_at, interval.return_at, start, end):
            return kind
    return OverlapKind.PERIOD_OVERLAP


def check_availability(
    request: AvailabilityRequest,
    stock: StockRecord,
    candidate_orders: Iterable[RentalInterval],
) -> AvailabilityVerdict:
    """Decide whether ``request.quantity`` units can be rented for the window.

    ``candidate_orders`` must already be scoped to the request's product and
    outlet. Without a rental window only raw stock is considered and the
    orders are ignored.
    """
    total_available = stock.available
    stock_available = total_available >= request.quantity

    if not request.has_window:
        return AvailabilityVerdict(
            product_id=request.product_id,
            outlet_id=request.outlet_id,
            requested_quantity=request.quantity,
            total_stock=stock.stock,
            total_renting=stock.renting,
            total_available_stock=total_available,
            stock_available=stock_available,
            conflicting_quantity=0,
            effectively_available=total_available,
            can_fulfill_request=stock_available,
            is_available=stock_available,
            window_checked=False,
            conflicts=(),
            message=_stock_only_message(request.quantity, total_available),
        )

    start = request.rental_start
    end = request.rental_end
    conflicts: list[ConflictDetail] = []
    for interval in candidate_orders:
        if not interval.is_active:
            continue
        if not intervals_overlap(interval.pickup_at, interval.return_at, start, end):
            continue
        conflicts.append(
            ConflictDetail(
                interval=interval,
                overlap_kind=classify_overlap(interval, start, end),
                overlap_start=max(interval.pickup_at, start),
                overlap_end=min(interval.return_at, end),
            )
        )

    conflicting_quantity = sum(conflict.interval.quantity for conflict in conflicts)
    effectively_available = max(0, total_available - conflicting_quantity)
    can_fulfill = effectively_available >= request.quantity

    return AvailabilityVerdict(
        product_id=request.product_id,
        outlet_id=request.outlet_id,
        requested_quantity=request.quantity,
        total_stock=stock.stock,
        total_renting=stock.renting,
        total_available_stock=total_available,
        stock_available=stock_available,
        conflicting_quantity=conflicting_quantity,
        effectively_available=effectively_available,
        can_fulfill_request=can_fulfill,
        is_available=can_fulfill,
        window_checked=True,
        conflicts=tuple(conflicts),
        message=_window_message(request.quantity, total_available, effectively_available, len(conflicts)),
    )


def _stock_only_message(quantity: int, total_available: int) -> str:
    if total_available >= quantity:
        return f"In stock: {total_available} units available"
    return f"Out of stock (need {quantity}, have {total_available})"


def _window_message(quantity: int, total_available: int, effectively_available: int, conflict_count: int) -> str:
    if effectively_available >= quantity:
        if conflict_count:
            return f"Available ({effectively_available} units) - {conflict_count} conflict(s) but sufficient stock"
        return f"Available ({effectively_available} units)"
    if total_available < quantity:
        return f"Out of stock (need {quantity}, have {total_available})"
    return (
        f"Only {effectively_available} units available (requested: {quantity}); "
        f"{conflict_count} conflicting order(s) booked for this period"
    )


def summarize_rental_load(intervals: Iterable[RentalInterval]) -> dict:
    rented = 0
    reserved = 0
    for interval in intervals:
        if not interval.is_active:
            continue
        if interval.status == "PICKUPED":
            rented += interval.quantity
        else:
            reserved += interval.quantity
    return {"totalRented": rented, "totalReserved": reserved}


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, _END_OF_DAY, tzinfo=timezone.utc)


def _window_start(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    return start_of_day(value)


def _window_end(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    return end_of_day(value)


def resolve_rental_window(
    start: date | datetime | None,
    end: date | datetime | None,
    single_date: date | None = None,
) -> tuple[datetime, datetime] | None:
    # Day boundaries are always UTC; the display time zone never moves them.
    if single_date is not None:
        if start is not None or end is not None:
            raise ValueError("Use either date or startDate/endDate, not both.")
        return start_of_day(single_date), end_of_day(single_date)

    if start is None and end is None:
        return None
    if start is None:
        raise ValueError("startDate is required when endDate is given.")
    if end is None:
        end = start

    window_start = _window_start(start)
    window_end = _window_end(end)
    if window_end < window_start:
        raise ValueError("endDate must be on or after startDate.")
    return window_start, window_end


def parse_query_timestamp(raw: str) -> date | datetime:
    value = (raw or "").strip()
    if not value:
        raise ValueError("Timestamp is empty.")
    if len(value) == 10:
        return date.fromisoformat(value)
    if value[-1] in {"Z", "z"}:
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def resolve_time_zone(name: str | None) -> ZoneInfo | timezone:
    key = (name or "UTC").strip()
    if key.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone: {key}") from exc


def format_timestamp(value: datetime | None, time_zone: ZoneInfo | timezone, precise: bool = False) -> str | None:
    if value is None:
        return None
    timespec = "milliseconds" if precise else "seconds"
    return to_utc(value).astimezone(time_zone).isoformat(timespec=timespec)


def serialize_conflict(conflict: ConflictDetail, time_zone: ZoneInfo | timezone, precise: bool = False) -> dict:
    interval = conflict.interval
    return {
        "orderId": interval.order_id,
        "orderNumber": interval.order_number,
        "customerName": interval.customer_name,
        "quantity": interval.quantity,
        "status": interval.status,
        "pickupPlanAt": format_timestamp(interval.pickup_at, time_zone, precise),
        "returnPlanAt": format_timestamp(interval.return_at, time_zone, precise),
        "conflictType": conflict.overlap_kind.value,
        "overlapStart": format_timestamp(conflict.overlap_start, time_zone, precise),
        "overlapEnd": format_timestamp(conflict.overlap_end, time_zone, precise),
        "overlapDurationMs": int(conflict.overlap_duration / timedelta(milliseconds=1)),
    }


def serialize_verdict(verdict: AvailabilityVerdict, request: AvailabilityRequest, now: datetime) -> dict:
    time_zone = resolve_time_zone(request.time_zone)
    precise = request.precise
    return {
        "productId": verdict.product_id,
        "outletId": verdict.outlet_id,
        "requestedQuantity": verdict.requested_quantity,
        "rentalStart": format_timestamp(request.rental_start, time_zone, precise),
        "rentalEnd": format_timestamp(request.rental_end, time_zone, precise),
        "timeZone": request.time_zone,
        "totalStock": verdict.total_stock,
        "totalRenting": verdict.total_renting,
        "totalAvailableStock": verdict.total_available_stock,
        "stockAvailable": verdict.stock_available,
        "conflictingQuantity": verdict.conflicting_quantity,
        "effectivelyAvailable": verdict.effectively_available,
        "canFulfillRequest": verdict.can_fulfill_request,
        "isAvailable": verdict.is_available,
        "windowChecked": verdict.window_checked,
        "totalConflictsFound": len(verdict.conflicts),
        "conflicts": [serialize_conflict(conflict, time_zone, precise) for conflict in verdict.conflicts],
        "message": verdict.message,
        "checkedAt": format_timestamp(now, time_zone, precise),
    }
