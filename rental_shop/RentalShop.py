import logging
import os
from datetime import date, datetime, timezone

from dotenv import load_dotenv

load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from db.deps import get_rental_db
from schemas.orders import CancelOrderRequest, CreateOrderDto, ReturnOrderRequest
from schemas.subscriptions import ExtensionQuoteRequest, PlanChangeRequest
from services.availability_service import (
    AvailabilityRequest,
    check_availability,
    format_timestamp,
    parse_query_timestamp,
    resolve_rental_window,
    resolve_time_zone,
    serialize_conflict,
    serialize_verdict,
    summarize_rental_load,
)
from services.inventory_service import get_candidate_orders, get_product, get_stock_record
from services.order_service import (
    AvailabilityConflictError,
    OrderError,
    OrderNotFoundError,
    OrderStateError,
    OrderValidationError,
    cancel_order,
    complete_order,
    create_order,
    load_order,
    pickup_order,
    return_order,
    serialize_order,
)
from services.subscription_service import (
    PlanNotFoundError,
    SubscriptionError,
    SubscriptionNotFoundError,
    change_plan,
    load_subscription,
    preview_plan_change,
    quote_extension,
    serialize_subscription,
)

app = FastAPI(title="Rental Shop API")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)

DEFAULT_TIME_ZONE = (os.environ.get("RENTAL_SHOP_DEFAULT_TIME_ZONE") or "UTC").strip()
LOG_LEVEL = (os.environ.get("RENTAL_SHOP_LOG_LEVEL") or "INFO").strip().upper()
logging.getLogger("rental_shop").setLevel(LOG_LEVEL)
AVAILABILITY_LOGGER = logging.getLogger("rental_shop.availability")


def get_clock() -> datetime:
    return datetime.now(timezone.utc)


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail=message)


def _order_http_error(exc: OrderError) -> HTTPException:
    if isinstance(exc, OrderNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, AvailabilityConflictError):
        detail = {"message": str(exc)}
        if exc.availability is not None:
            detail["availability"] = exc.availability
        return HTTPException(status_code=409, detail=detail)
    if isinstance(exc, (OrderStateError, OrderValidationError)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _subscription_http_error(exc: SubscriptionError) -> HTTPException:
    if isinstance(exc, (SubscriptionNotFoundError, PlanNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _parse_day(raw: str) -> date:
    value = parse_query_timestamp(raw)
    if isinstance(value, datetime):
        raise ValueError("date must be in YYYY-MM-DD format.")
    return value


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/products/availability")
def get_daily_availability(
    product_id: int = Query(..., alias="productId"),
    outlet_id: int = Query(..., alias="outletId"),
    day: str = Query(..., alias="date"),
    time_zone: str | None = Query(None, alias="timeZone"),
    db: Session = Depends(get_rental_db),
    now: datetime = Depends(get_clock),
):
    zone_name = time_zone or DEFAULT_TIME_ZONE
    try:
        target_day = _parse_day(day)
        window = resolve_rental_window(None, None, target_day)
        zone = resolve_time_zone(zone_name)
    except ValueError as exc:
        AVAILABILITY_LOGGER.warning("Day summary rejected product=%s outlet=%s reason=%s", product_id, outlet_id, exc)
        raise _bad_request(str(exc)) from exc

    product = get_product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    stock = get_stock_record(db, product_id, outlet_id)
    if not stock:
        raise HTTPException(status_code=404, detail="Product is not stocked at this outlet.")

    intervals = get_candidate_orders(db, product_id, outlet_id, window)
    request = AvailabilityRequest(
        product_id=product_id,
        outlet_id=outlet_id,
        quantity=1,
        rental_start=window[0],
        rental_end=window[1],
        time_zone=zone_name,
    )
    verdict = check_availability(request, stock, intervals)
    load = summarize_rental_load(intervals)
    # Renting already holds the picked-up orders; the day view counts bookings against raw stock.
    total_available = max(0, stock.stock - load["totalRented"] - load["totalReserved"])
    return {
        "product": {
            "productId": product.ProductID,
            "productName": product.ProductName,
            "barcode": product.Barcode,
            "outletId": outlet_id,
        },
        "date": target_day.isoformat(),
        "summary": {
            "totalStock": verdict.total_stock,
            "totalRenting": verdict.total_renting,
            "totalRented": load["totalRented"],
            "totalReserved": load["totalReserved"],
            "totalAvailable": total_available,
            "isAvailable": total_available > 0,
        },
        "orders": [serialize_conflict(conflict, zone) for conflict in verdict.conflicts],
        "meta": {
            "totalOrders": len(verdict.conflicts),
            "checkedAt": format_timestamp(now, zone),
        },
    }


@app.get("/api/products/{product_id}/availability")
def get_product_availability(
    product_id: int,
    outlet_id: int = Query(..., alias="outletId"),
    quantity: int = Query(1),
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    single_date: str | None = Query(None, alias="date"),
    time_zone: str | None = Query(None, alias="timeZone"),
    precise: bool = Query(False),
    db: Session = Depends(get_rental_db),
    now: datetime = Depends(get_clock),
):
    if quantity < 1:
        raise _bad_request("quantity must be at least 1.")
    zone_name = time_zone or DEFAULT_TIME_ZONE
    try:
        start = parse_query_timestamp(start_date) if start_date else None
        end = parse_query_timestamp(end_date) if end_date else None
        day = _parse_day(single_date) if single_date else None
        window = resolve_rental_window(start, end, day)
        resolve_time_zone(zone_name)
    except ValueError as exc:
        AVAILABILITY_LOGGER.warning("Availability rejected product=%s outlet=%s reason=%s", product_id, outlet_id, exc)
        raise _bad_request(str(exc)) from exc

    product = get_product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    stock = get_stock_record(db, product_id, outlet_id)
    if not stock:
        raise HTTPException(status_code=404, detail="Product is not stocked at this outlet.")

    request = AvailabilityRequest(
        product_id=product_id,
        outlet_id=outlet_id,
        quantity=quantity,
        rental_start=window[0] if window else None,
        rental_end=window[1] if window else None,
        time_zone=zone_name,
        precise=precise,
    )
    candidates = get_candidate_orders(db, product_id, outlet_id, window) if window else []
    verdict = check_availability(request, stock, candidates)
    AVAILABILITY_LOGGER.info(
        "Availability product=%s outlet=%s qty=%s window=%s conflicts=%s can_fulfill=%s",
        product_id,
        outlet_id,
        quantity,
        verdict.window_checked,
        len(verdict.conflicts),
        verdict.can_fulfill_request,
    )
    payload = serialize_verdict(verdict, request, now)
    payload["productName"] = product.ProductName
    return payload


@app.post("/api/orders")
def post_order(
    payload: CreateOrderDto,
    db: Session = Depends(get_rental_db),
    now: datetime = Depends(get_clock),
):
    try:
        order = create_order(db, payload, now)
    except OrderError as exc:
        raise _order_http_error(exc) from exc
    return serialize_order(order)


@app.get("/api/orders/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_rental_db)):
    try:
        order = load_order(db, order_id)
    except OrderError as exc:
        raise _order_http_error(exc) from exc
    return serialize_order(order)


@app.post("/api/orders/{order_id}/pickup")
def post_order_pickup(order_id: int, db: Session = Depends(get_rental_db), now: datetime = Depends(get_clock)):
    try:
        order = pickup_order(db, order_id, now)
    except OrderError as exc:
        raise _order_http_error(exc) from exc
    return serialize_order(order)


@app.post("/api/orders/{order_id}/return")
def post_order_return(
    order_id: int,
    payload: ReturnOrderRequest | None = None,
    db: Session = Depends(get_rental_db),
    now: datetime = Depends(get_clock),
):
    try:
        order = return_order(db, order_id, now, notes=payload.notes if payload else None)
    except OrderError as exc:
        raise _order_http_error(exc) from exc
    return serialize_order(order)


@app.post("/api/orders/{order_id}/cancel")
def post_order_cancel(
    order_id: int,
    payload: CancelOrderRequest | None = None,
    db: Session = Depends(get_rental_db),
    now: datetime = Depends(get_clock),
):
    try:
        order = cancel_order(db, order_id, now, reason=payload.reason if payload else None)
    except OrderError as exc:
        raise _order_http_error(exc) from exc
    return serialize_order(order)


@app.post("/api/orders/{order_id}/complete")
def post_order_complete(order_id: int, db: Session = Depends(get_rental_db), now: datetime = Depends(get_clock)):
    try:
        order = complete_order(db, order_id, now)
    except OrderError as exc:
        raise _order_http_error(exc) from exc
    return serialize_order(order)


@app.get("/api/subscriptions/{subscription_id}")
def get_subscription(subscription_id: int, db: Session = Depends(get_rental_db)):
    try:
        subscription = load_subscription(db, subscription_id)
    except SubscriptionError as exc:
        raise _subscription_http_error(exc) from exc
    return serialize_subscription(subscription)


@app.post("/api/subscriptions/{subscription_id}/proration-preview")
def post_proration_preview(
    subscription_id: int,
    payload: PlanChangeRequest,
    db: Session = Depends(get_rental_db),
    now: datetime = Depends(get_clock),
):
    try:
        return preview_plan_change(db, subscription_id, payload.planID, payload.effectiveDate or now)
    except SubscriptionError as exc:
        raise _subscription_http_error(exc) from exc


@app.post("/api/subscriptions/{subscription_id}/change-plan")
def post_change_plan(
    subscription_id: int,
    payload: PlanChangeRequest,
    db: Session = Depends(get_rental_db),
    now: datetime = Depends(get_clock),
):
    try:
        return change_plan(db, subscription_id, payload.planID, payload.effectiveDate or now, now, reason=payload.reason)
    except SubscriptionError as exc:
        raise _subscription_http_error(exc) from exc


@app.post("/api/subscriptions/{subscription_id}/extension-quote")
def post_extension_quote(
    subscription_id: int,
    payload: ExtensionQuoteRequest,
    db: Session = Depends(get_rental_db),
):
    try:
        return quote_extension(db, subscription_id, payload.periods, payload.extensionStart)
    except SubscriptionError as exc:
        raise _subscription_http_error(exc) from exc
