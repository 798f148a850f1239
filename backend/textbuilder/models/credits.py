"""TextBuilder Credit Models

Balance lives on the account document (credits + reserved_credits).
Every balance change is described by a CreditHold before it touches the
account, and produces exactly one CreditTransaction once it completes.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid


class CreditTransactionType(str, Enum):
    """Types of ledger entries"""
    USAGE = "usage"                                  # Paid feature invocation
    PURCHASE = "purchase"                            # Plan or credit package payment
    SUBSCRIPTION_RENEWAL = "subscription_renewal"    # Monthly plan renewal grant
    REFUND = "refund"
    ADJUSTMENT = "adjustment"                        # Operator grant / correction


class CreditFeature(str, Enum):
    """Feature tag on usage entries"""
    IMAGE_GENERATION = "image_generation"
    ARTICLE_GENERATION = "article_generation"
    TITLE_GENERATION = "title_generation"
    OTHER = "other"


class CreditTransaction(BaseModel):
    """Ledger entry. Immutable once written."""
    transaction_id: str = Field(default_factory=lambda: f"CTX-{uuid.uuid4().hex[:12].upper()}")
    account_id: str

    amount: int  # Negative for usage, positive for grants
    transaction_type: CreditTransactionType
    feature: Optional[CreditFeature] = None
    description: str

    reference_id: Optional[str] = None  # e.g. payment intent, invoice, article id
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True}


class CreditHoldDirection(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class CreditHoldStatus(str, Enum):
    """Hold lifecycle.

    RESERVED -> COMMITTING -> SETTLED
    RESERVED -> RELEASING -> RELEASED
    RESERVED -> REJECTED (reservation never applied)
    """
    RESERVED = "reserved"
    COMMITTING = "committing"
    RELEASING = "releasing"
    SETTLED = "settled"
    RELEASED = "released"
    REJECTED = "rejected"


class CreditHold(BaseModel):
    """Write-ahead record of a balance change.

    The hold_id doubles as the transaction_id of the ledger entry it
    produces, so the entry can be written at most once.
    """
    hold_id: str = Field(default_factory=lambda: f"CHD-{uuid.uuid4().hex[:12].upper()}")
    account_id: str

    direction: CreditHoldDirection
    status: CreditHoldStatus = CreditHoldStatus.RESERVED

    reserved: int = 0                  # Credits moved into reserved_credits (debits only)
    amount: Optional[int] = None       # Final signed ledger amount, set on commit
    settlement_delta: int = 0          # Credits returned to the balance on finalize
    applied: bool = False              # Credit holds: claimed for applying to the balance

    transaction_type: CreditTransactionType
    feature: Optional[CreditFeature] = None
    description: str
    reference_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    release_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True, "validate_default": True}

    def to_transaction(self) -> CreditTransaction:
        return CreditTransaction(
            transaction_id=self.hold_id,
            account_id=self.account_id,
            amount=self.amount,
            transaction_type=self.transaction_type,
            feature=self.feature,
            description=self.description,
            reference_id=self.reference_id,
            metadata=self.metadata,
        )


# ============================================================================
# Credit Pricing Configuration
# ============================================================================

IMAGE_CREDIT_COST = 50          # Per generated image
TITLE_IDEAS_CREDIT_COST = 50    # Flat, per title-ideas request

ARTICLE_LENGTH_CREDITS = {
    "short": 800,
    "medium": 1500,
    "long": 2500,
}
ARTICLE_DEFAULT_LENGTH_CREDITS = 1500
ARTICLE_TAKEAWAY_CREDITS = 10
ARTICLE_FAQ_CREDITS = 20
ARTICLE_BUFFER_RATIO = 0.1
