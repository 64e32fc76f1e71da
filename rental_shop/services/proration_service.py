from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal


BILLING_CYCLE_DAYS = {
    "monthly": 30,
    "quarterly": 90,
    "semi_annual": 180,
    "annual": 365,
    "yearly": 365,
}
DEFAULT_BILLING_CYCLE_DAYS = 30

_ONE_MICROSECOND = timedelta(microseconds=1)


@dataclass(frozen=True)
class ProrationInput:
    current_amount: int
    current_period_start: datetime
    current_period_end: datetime
    new_amount: int
    effective_date: datetime


@dataclass(frozen=True)
class ProrationResult:
    is_upgrade: bool
    is_downgrade: bool
    charge_amount: int
    unused_credit: int
    prorated_new_cost: int
    remaining: timedelta
    period_length: timedelta
    reason: str


@dataclass(frozen=True)
class ExtensionQuote:
    extension_days: int
    extension_cost: int
    daily_rate: int
    gap_days: int
    extension_start: datetime
    extension_end: datetime


def _prorate(amount: int, remaining: timedelta, period_length: timedelta) -> int:
    remaining_us = remaining // _ONE_MICROSECOND
    period_us = period_length // _ONE_MICROSECOND
    share = Decimal(amount * remaining_us) / Decimal(period_us)
    return int(share.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def calculate_proration(data: ProrationInput) -> ProrationResult:
    """Work out what a mid-period plan change costs right now.

    Amounts are integer minor units. Upgrades pay only the difference for the
    time left in the period; downgrades and lateral moves are never charged
    and never refunded here.
    """
    period_length = data.current_period_end - data.current_period_start
    is_upgrade = data.new_amount > data.current_amount
    is_downgrade = data.new_amount < data.current_amount

    if period_length <= timedelta(0):
        return ProrationResult(
            is_upgrade=is_upgrade,
            is_downgrade=is_downgrade,
            charge_amount=data.new_amount,
            unused_credit=0,
            prorated_new_cost=data.new_amount,
            remaining=timedelta(0),
            period_length=period_length,
            reason="degenerate period: full amount",
        )

    remaining = max(timedelta(0), data.current_period_end - data.effective_date)
    remaining = min(remaining, period_length)
    unused_credit = _prorate(data.current_amount, remaining, period_length)
    prorated_new_cost = _prorate(data.new_amount, remaining, period_length)

    if is_upgrade:
        charge_amount = max(0, prorated_new_cost - unused_credit)
        reason = "upgrade mid-cycle" if remaining > timedelta(0) else "upgrade at period end: nothing to prorate"
    elif is_downgrade:
        charge_amount = 0
        reason = "downgrade: no charge"
    else:
        charge_amount = 0
        reason = "lateral change: no charge"

    return ProrationResult(
        is_upgrade=is_upgrade,
        is_downgrade=is_downgrade,
        charge_amount=charge_amount,
        unused_credit=unused_credit,
        prorated_new_cost=prorated_new_cost,
        remaining=remaining,
        period_length=period_length,
        reason=reason,
    )


def should_apply_proration(current_amount: int, new_amount: int) -> bool:
    return new_amount > current_amount


def format_minor_units(amount: int) -> str:
    sign = "-" if amount < 0 else ""
    value = abs(int(amount))
    return f"{sign}{value // 100}.{value % 100:02d}"


def format_proration(result: ProrationResult, currency: str = "USD") -> str:
    if result.charge_amount > 0:
        return f"Charge {currency} {format_minor_units(result.charge_amount)} ({result.reason})"
    return f"No proration needed ({result.reason})"


def days_in_billing_cycle(billing_cycle: str | None) -> int:
    key = (billing_cycle or "").strip().lower()
    return BILLING_CYCLE_DAYS.get(key, DEFAULT_BILLING_CYCLE_DAYS)


def calculate_extension_cost(
    amount: int,
    billing_cycle: str | None,
    periods: int,
    current_end: datetime,
    extension_start: datetime,
) -> ExtensionQuote:
    cycle_days = days_in_billing_cycle(billing_cycle)
    periods = max(1, int(periods))
    extension_days = periods * cycle_days
    daily_rate = int((Decimal(amount) / Decimal(cycle_days)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    gap = max(timedelta(0), extension_start - current_end)
    gap_days = int((Decimal(gap // _ONE_MICROSECOND) / Decimal(86_400_000_000)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return ExtensionQuote(
        extension_days=extension_days,
        extension_cost=amount * periods,
        daily_rate=daily_rate,
        gap_days=gap_days,
        extension_start=extension_start,
        extension_end=extension_start + timedelta(days=extension_days),
    )


def serialize_proration(result: ProrationResult, currency: str = "USD") -> dict:
    return {
        "isUpgrade": result.is_upgrade,
        "isDowngrade": result.is_downgrade,
        "chargeAmount": result.charge_amount,
        "unusedCredit": result.unused_credit,
        "proratedNewCost": result.prorated_new_cost,
        "remainingSeconds": int(result.remaining.total_seconds()),
        "periodSeconds": int(result.period_length.total_seconds()),
        "currency": currency,
        "reason": result.reason,
        "summary": format_proration(result, currency),
    }
