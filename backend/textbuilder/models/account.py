"""TextBuilder Account Models"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid


class AccountStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class ApiKey(BaseModel):
    name: str
    key: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Account(BaseModel):
    """Account document.

    credits is the spendable balance and never drops below zero.
    reserved_credits holds credits taken for in-flight generations;
    pending_holds lists the hold ids already applied to the balance
    but not yet finalized (see CreditService).
    """
    account_id: str = Field(default_factory=lambda: f"ACC-{uuid.uuid4().hex[:12].upper()}")
    email: str
    name: str = ""
    status: AccountStatus = AccountStatus.ACTIVE

    # Balance
    credits: int = 0
    reserved_credits: int = 0
    pending_holds: List[str] = Field(default_factory=list)

    # Billing
    subscription_plan: Optional[Dict[str, Any]] = None
    stripe_customer_id: Optional[str] = None

    # Settings
    preferences: Dict[str, Any] = Field(default_factory=dict)
    notification_settings: Dict[str, Any] = Field(default_factory=dict)
    api_keys: List[ApiKey] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True, "validate_default": True}


DEFAULT_NOTIFICATION_SETTINGS: Dict[str, bool] = {
    "email": True,
    "browser": True,
    "articles": True,
    "promotions": True,
    "credits": True,
}

API_KEY_PREFIX = "tb"
