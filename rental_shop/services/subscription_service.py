from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Payment, Plan, Subscription
from services.audit_service import log_audit
from services.availability_service import format_timestamp, to_utc
from services.proration_service import (
    ProrationInput,
    calculate_extension_cost,
    calculate_proration,
    format_minor_units,
    serialize_proration,
)


BILLING_LOGGER = logging.getLogger("rental_shop.billing")

CHANGEABLE_STATES = {"ACTIVE", "TRIAL"}


class SubscriptionError(RuntimeError):
    pass


class SubscriptionNotFoundError(SubscriptionError):
    pass


class PlanNotFoundError(SubscriptionError):
    pass


class SubscriptionStateError(SubscriptionError):
    pass


def load_subscription(db: Session, subscription_id: int, for_update: bool = False) -> Subscription:
    stmt = (
        select(Subscription)
        .options(selectinload(Subscription.Plan))
        .where(Subscription.SubscriptionID == subscription_id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    subscription = db.execute(stmt).scalars().first()
    if not subscription:
        raise SubscriptionNotFoundError("Subscription not found")
    return subscription


def _load_plan(db: Session, plan_id: int) -> Plan:
    plan = db.get(Plan, plan_id)
    if not plan or not plan.IsActive:
        raise PlanNotFoundError("Plan not found")
    return plan


def build_proration_input(subscription: Subscription, plan: Plan, effective_date: datetime) -> ProrationInput:
    return ProrationInput(
        current_amount=int(subscription.Amount or 0),
        current_period_start=to_utc(subscription.CurrentPeriodStart),
        current_period_end=to_utc(subscription.CurrentPeriodEnd),
        new_amount=int(plan.BasePrice or 0),
        effective_date=to_utc(effective_date),
    )


def _require_changeable(subscription: Subscription, plan: Plan) -> None:
    if subscription.Status not in CHANGEABLE_STATES:
        raise SubscriptionStateError(f"Subscription is {subscription.Status}; plan changes need an active subscription.")
    if subscription.PlanID == plan.PlanID:
        raise SubscriptionStateError("Subscription is already on this plan.")


def preview_plan_change(db: Session, subscription_id: int, plan_id: int, effective_date: datetime) -> dict:
    subscription = load_subscription(db, subscription_id)
    plan = _load_plan(db, plan_id)
    _require_changeable(subscription, plan)
    result = calculate_proration(build_proration_input(subscription, plan, effective_date))
    return {
        "subscriptionID": subscription.SubscriptionID,
        "currentPlanID": subscription.PlanID,
        "newPlanID": plan.PlanID,
        "effectiveDate": format_timestamp(effective_date, timezone.utc),
        "proration": serialize_proration(result, plan.Currency),
    }


def change_plan(
    db: Session,
    subscription_id: int,
    plan_id: int,
    effective_date: datetime,
    now: datetime,
    reason: str | None = None,
    user_id: int | None = None,
) -> dict:
    """Move a subscription to another plan in one transaction.

    The subscription update, the proration payment (upgrades only) and the
    audit entry are committed together or not at all.
    """
    try:
        subscription = load_subscription(db, subscription_id, for_update=True)
        plan = _load_plan(db, plan_id)
        _require_changeable(subscription, plan)
        result = calculate_proration(build_proration_input(subscription, plan, effective_date))

        previous_plan_id = subscription.PlanID
        previous_amount = int(subscription.Amount or 0)
        subscription.PlanID = plan.PlanID
        subscription.Plan = plan
        subscription.Amount = int(plan.BasePrice or 0)
        subscription.Currency = plan.Currency
        subscription.UpdatedDate = now

        payment = None
        if result.charge_amount > 0:
            payment = Payment(
                SubscriptionID=subscription.SubscriptionID,
                Amount=result.charge_amount,
                Currency=plan.Currency,
                Status="PENDING",
                Description=f"Plan change proration: {result.reason}",
                CreatedAt=now,
            )
            db.add(payment)

        details = (
            f"plan {previous_plan_id}->{plan.PlanID}; amount {format_minor_units(previous_amount)}->"
            f"{format_minor_units(subscription.Amount)}; charge={format_minor_units(result.charge_amount)}; "
            f"{result.reason}"
        )
        if reason:
            details = f"{details}; note={reason.strip()}"
        log_audit(db, "Subscription", subscription.SubscriptionID, "ChangePlan", now, details, user_id=user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    BILLING_LOGGER.info(
        "Plan changed subscription=%s plan=%s->%s charge=%s reason=%s",
        subscription_id,
        previous_plan_id,
        plan.PlanID,
        result.charge_amount,
        result.reason,
    )
    return {
        "subscription": serialize_subscription(subscription),
        "proration": serialize_proration(result, plan.Currency),
        "payment": serialize_payment(payment) if payment else None,
    }


def quote_extension(
    db: Session,
    subscription_id: int,
    periods: int,
    extension_start: datetime | None = None,
) -> dict:
    subscription = load_subscription(db, subscription_id)
    if periods < 1:
        raise SubscriptionStateError("periods must be at least 1.")
    current_end = to_utc(subscription.CurrentPeriodEnd)
    start = to_utc(extension_start) if extension_start else current_end
    quote = calculate_extension_cost(
        int(subscription.Amount or 0),
        subscription.BillingCycle,
        periods,
        current_end,
        start,
    )
    return {
        "subscriptionID": subscription.SubscriptionID,
        "billingCycle": subscription.BillingCycle,
        "periods": periods,
        "extensionDays": quote.extension_days,
        "extensionCost": quote.extension_cost,
        "dailyRate": quote.daily_rate,
        "gapDays": quote.gap_days,
        "extensionStart": format_timestamp(quote.extension_start, timezone.utc),
        "extensionEnd": format_timestamp(quote.extension_end, timezone.utc),
        "currency": subscription.Currency,
    }


def serialize_payment(payment: Payment) -> dict:
    return {
        "paymentID": payment.PaymentID,
        "subscriptionID": payment.SubscriptionID,
        "amount": payment.Amount,
        "currency": payment.Currency,
        "status": payment.Status,
        "description": payment.Description,
    }


def serialize_subscription(subscription: Subscription) -> dict:
    plan = subscription.Plan
    return {
        "subscriptionID": subscription.SubscriptionID,
        "merchantID": subscription.MerchantID,
        "planID": subscription.PlanID,
        "status": subscription.Status,
        "amount": subscription.Amount,
        "currency": subscription.Currency,
        "billingCycle": subscription.BillingCycle,
        "currentPeriodStart": format_timestamp(subscription.CurrentPeriodStart, timezone.utc),
        "currentPeriodEnd": format_timestamp(subscription.CurrentPeriodEnd, timezone.utc),
        "plan": {
            "planID": plan.PlanID,
            "planName": plan.PlanName,
            "basePrice": plan.BasePrice,
            "currency": plan.Currency,
        } if plan else None,
    }
