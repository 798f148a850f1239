"""Plan catalog and subscription status."""

from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, List
import math

from textbuilder.models.plans import (
    PLANS,
    CREDIT_PACKAGES,
    MONTHLY_PLAN_PERIOD_DAYS,
    POPULAR_PLAN_ID,
    CreditPackage,
    PlanDetails,
    SubscriptionPlan,
    SubscriptionPlanType,
)


def list_plans() -> List[Dict[str, Any]]:
    """Plans for the pricing page, with exactly one flagged popular."""
    plans = []
    for plan in PLANS.values():
        plans.append({
            "id": plan.id,
            "name": plan.name,
            "description": plan.description,
            "price": plan.price,
            "originalPrice": plan.original_price,
            "discount": plan.discount,
            "monthlyCredits": plan.monthly_credits,
            "features": list(plan.features),
            "popular": plan.id == POPULAR_PLAN_ID,
        })
    return plans


def get_plan(plan_id: Optional[str]) -> PlanDetails:
    try:
        return PLANS[SubscriptionPlanType(plan_id)]
    except ValueError:
        raise ValueError("Invalid plan ID")


def get_credit_package(package_id: Optional[str]) -> CreditPackage:
    package = CREDIT_PACKAGES.get(package_id or "")
    if not package:
        raise ValueError("Invalid credit package")
    return package


def build_subscription_plan(
    plan: PlanDetails,
    is_lifetime: bool,
    now: Optional[datetime] = None,
    stripe_subscription_id: Optional[str] = None,
) -> SubscriptionPlan:
    now = now or datetime.now(timezone.utc)
    return SubscriptionPlan(
        type=plan.id,
        monthly_credits=plan.monthly_credits,
        is_lifetime=is_lifetime,
        purchased_at=now,
        expires_at=None if is_lifetime else now + timedelta(days=MONTHLY_PLAN_PERIOD_DAYS),
        stripe_subscription_id=stripe_subscription_id,
    )


def _as_utc(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        # Mongo returns naive UTC datetimes
        value = value.replace(tzinfo=timezone.utc)
    return value


def subscription_status(
    plan_doc: Optional[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """Liveness of an account's plan.

    Active when lifetime, or when expires_at is strictly after now.
    daysRemaining is ceil(days until expiry) floored at 0, None without expiry.
    """
    if not plan_doc:
        return None

    now = _as_utc(now) or datetime.now(timezone.utc)
    is_lifetime = bool(plan_doc.get("is_lifetime"))
    expires_at = _as_utc(plan_doc.get("expires_at"))

    days_remaining = None
    if expires_at is not None:
        seconds_left = (expires_at - now).total_seconds()
        days_remaining = max(0, math.ceil(seconds_left / 86400))

    return {
        "isActive": is_lifetime or (expires_at is not None and expires_at > now),
        "isLifetime": is_lifetime,
        "daysRemaining": days_remaining,
        "expiryDate": expires_at,
        "type": plan_doc.get("type"),
    }
