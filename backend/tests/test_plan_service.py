"""
Plan catalog and subscription status.
"""
from datetime import datetime, timezone, timedelta

import pytest

from textbuilder.models.plans import PLANS, SubscriptionPlanType
from textbuilder.services.plan_service import (
    build_subscription_plan,
    get_credit_package,
    get_plan,
    list_plans,
    subscription_status,
)

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class TestCatalog:
    def test_exactly_one_plan_is_popular(self):
        plans = list_plans()
        assert [p["id"] for p in plans] == ["pro", "plus", "platinum", "agency"]
        assert [p["id"] for p in plans if p["popular"]] == ["plus"]

    def test_plan_fields(self):
        pro = list_plans()[0]
        assert pro["price"] == 99
        assert pro["monthlyCredits"] == 100000
        assert pro["originalPrice"] == 1404
        assert pro["discount"] == 93

    def test_invalid_plan(self):
        with pytest.raises(ValueError, match="Invalid plan ID"):
            get_plan("enterprise")

    def test_invalid_credit_package(self):
        with pytest.raises(ValueError, match="Invalid credit package"):
            get_credit_package("huge")
        assert get_credit_package("small").credits == 10000


class TestBuildSubscriptionPlan:
    def test_lifetime_plan_has_no_expiry(self):
        plan = build_subscription_plan(PLANS[SubscriptionPlanType.PRO], is_lifetime=True, now=NOW)
        assert plan.expires_at is None
        assert plan.type == "pro"

    def test_monthly_plan_expires_in_30_days(self):
        plan = build_subscription_plan(PLANS[SubscriptionPlanType.PLUS], is_lifetime=False, now=NOW)
        assert plan.expires_at == NOW + timedelta(days=30)
        assert plan.monthly_credits == 200000


class TestSubscriptionStatus:
    def test_no_plan(self):
        assert subscription_status(None, now=NOW) is None

    def test_lifetime_is_active_without_days_remaining(self):
        status = subscription_status({"type": "pro", "is_lifetime": True, "expires_at": None}, now=NOW)
        assert status["isActive"] is True
        assert status["isLifetime"] is True
        assert status["daysRemaining"] is None

    def test_expired_yesterday_is_inactive(self):
        status = subscription_status(
            {"type": "plus", "is_lifetime": False, "expires_at": NOW - timedelta(days=1)},
            now=NOW,
        )
        assert status["isActive"] is False
        assert status["daysRemaining"] == 0

    def test_days_remaining_rounds_up(self):
        status = subscription_status(
            {"type": "plus", "is_lifetime": False, "expires_at": NOW + timedelta(days=2, hours=1)},
            now=NOW,
        )
        assert status["isActive"] is True
        assert status["daysRemaining"] == 3

    def test_expiry_at_now_is_inactive(self):
        status = subscription_status(
            {"type": "plus", "is_lifetime": False, "expires_at": NOW},
            now=NOW,
        )
        assert status["isActive"] is False

    def test_naive_mongo_datetime_is_treated_as_utc(self):
        expires = (NOW + timedelta(days=1)).replace(tzinfo=None)
        status = subscription_status({"type": "plus", "is_lifetime": False, "expires_at": expires}, now=NOW)
        assert status["daysRemaining"] == 1
