"""TextBuilder Plans & Credit Packages

Plans are one-off (lifetime) or monthly purchases that grant their
monthly_credits on payment. Credit packages are one-off top-ups.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime, timezone
from enum import Enum


class SubscriptionPlanType(str, Enum):
    PRO = "pro"
    PLUS = "plus"
    PLATINUM = "platinum"
    AGENCY = "agency"


class PlanDetails(BaseModel):
    """Static plan definition."""
    id: SubscriptionPlanType
    name: str
    description: str
    price: int              # USD
    original_price: int     # USD, list price shown struck through
    discount: int           # Percent
    monthly_credits: int
    features: List[str]

    model_config = {"use_enum_values": True}


class SubscriptionPlan(BaseModel):
    """Plan embedded on the account document."""
    type: SubscriptionPlanType
    monthly_credits: int
    is_lifetime: bool = True
    purchased_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = None
    stripe_subscription_id: Optional[str] = None

    model_config = {"extra": "ignore", "use_enum_values": True}


class CreditPackage(BaseModel):
    """One-off credit top-up."""
    package_id: str
    credits: int
    price: float  # USD


_BASE_FEATURES = [
    "Generate 100+ articles with 1-click",
    "AI Image Generation",
    "Auto Post to WordPress",
    "Long-form Writer",
    "AI Templates",
    "TOP 10 Listicle Builder",
    "1000+ ChatGPT prompts",
]

PLANS: Dict[SubscriptionPlanType, PlanDetails] = {
    SubscriptionPlanType.PRO: PlanDetails(
        id=SubscriptionPlanType.PRO,
        name="Lifetime PRO",
        description="Perfect for bloggers and content creators",
        price=99,
        original_price=1404,
        discount=93,
        monthly_credits=100000,
        features=list(_BASE_FEATURES),
    ),
    SubscriptionPlanType.PLUS: PlanDetails(
        id=SubscriptionPlanType.PLUS,
        name="Lifetime PLUS",
        description="Best for professional bloggers",
        price=179,
        original_price=2124,
        discount=92,
        monthly_credits=200000,
        features=_BASE_FEATURES + ["Priority Support"],
    ),
    SubscriptionPlanType.PLATINUM: PlanDetails(
        id=SubscriptionPlanType.PLATINUM,
        name="Lifetime PLATINUM",
        description="Advanced features for power users",
        price=279,
        original_price=2844,
        discount=90,
        monthly_credits=300000,
        features=_BASE_FEATURES + ["Priority Support", "Advanced AI Models"],
    ),
    SubscriptionPlanType.AGENCY: PlanDetails(
        id=SubscriptionPlanType.AGENCY,
        name="Lifetime AGENCY+",
        description="Maximum power for agencies and teams",
        price=495,
        original_price=6444,
        discount=92,
        monthly_credits=600000,
        features=_BASE_FEATURES + [
            "Priority Support",
            "Advanced AI Models",
            "Team Collaboration",
            "White-label Reports",
        ],
    ),
}

# Highlighted on the pricing page. Presentation only, never stored.
POPULAR_PLAN_ID = SubscriptionPlanType.PLUS.value

CREDIT_PACKAGES: Dict[str, CreditPackage] = {
    "small": CreditPackage(package_id="small", credits=10000, price=9.99),
    "medium": CreditPackage(package_id="medium", credits=50000, price=39.99),
    "large": CreditPackage(package_id="large", credits=100000, price=69.99),
}

MONTHLY_PLAN_PERIOD_DAYS = 30
