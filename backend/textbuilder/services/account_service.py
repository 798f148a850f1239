"""TextBuilder Account Service

Account documents carry the balance fields, the current plan, and
per-account settings. Balance fields are only changed through
CreditService.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
import logging

from pymongo.errors import DuplicateKeyError

from database import database
from textbuilder.errors import AccountNotFoundError
from textbuilder.models.account import Account
from textbuilder.models.credits import CreditTransactionType
from textbuilder.models.plans import SubscriptionPlan
from textbuilder.services.credit_service import credit_service

logger = logging.getLogger(__name__)


class AccountService:
    """Account lookup and non-balance updates."""

    def _get_db(self):
        return database.get_db()

    async def create_account(self, email: str, name: str = "", initial_credits: int = 0) -> Dict[str, Any]:
        """Create an account. Initial credits are granted as an adjustment."""
        db = self._get_db()
        email = email.strip().lower()

        if await db.accounts.find_one({"email": email}, {"_id": 0, "account_id": 1}):
            raise ValueError("An account with this email already exists")

        account = Account(email=email, name=name)
        try:
            await db.accounts.insert_one(account.model_dump())
        except DuplicateKeyError:
            raise ValueError("An account with this email already exists")

        logger.info(f"Created account {account.account_id} ({email})")

        if initial_credits > 0:
            await credit_service.add_credits(
                account_id=account.account_id,
                amount=initial_credits,
                transaction_type=CreditTransactionType.ADJUSTMENT,
                description=f"Opening balance: {initial_credits} credits",
            )

        return await self.get_account(account.account_id)

    async def get_account(self, account_id: str) -> Dict[str, Any]:
        db = self._get_db()
        account = await db.accounts.find_one({"account_id": account_id}, {"_id": 0})
        if not account:
            raise AccountNotFoundError(account_id)
        return account

    async def get_credits(self, account_id: str) -> Dict[str, Any]:
        account = await self.get_account(account_id)
        return {
            "credits": account.get("credits", 0),
            "reservedCredits": account.get("reserved_credits", 0),
            "subscriptionPlan": account.get("subscription_plan"),
        }

    async def find_by_stripe_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        db = self._get_db()
        return await db.accounts.find_one({"stripe_customer_id": customer_id}, {"_id": 0})

    async def set_stripe_customer(self, account_id: str, customer_id: str) -> None:
        db = self._get_db()
        await db.accounts.update_one(
            {"account_id": account_id},
            {"$set": {"stripe_customer_id": customer_id, "updated_at": datetime.now(timezone.utc)}},
        )

    async def update_subscription_plan(self, account_id: str, plan: SubscriptionPlan) -> Dict[str, Any]:
        db = self._get_db()
        plan_doc = plan.model_dump()
        await db.accounts.update_one(
            {"account_id": account_id},
            {"$set": {"subscription_plan": plan_doc, "updated_at": datetime.now(timezone.utc)}},
        )
        logger.info(f"Account {account_id} plan set to {plan_doc['type']} (lifetime={plan_doc['is_lifetime']})")
        return plan_doc

    async def set_subscription_expiry(self, account_id: str, expires_at: datetime) -> None:
        """Move expires_at on a monthly plan. Lifetime plans are left alone."""
        db = self._get_db()
        await db.accounts.update_one(
            {"account_id": account_id, "subscription_plan.is_lifetime": False},
            {"$set": {
                "subscription_plan.expires_at": expires_at,
                "updated_at": datetime.now(timezone.utc),
            }},
        )

    async def expire_subscription(self, account_id: str) -> None:
        await self.set_subscription_expiry(account_id, datetime.now(timezone.utc))
        logger.info(f"Subscription expired for account {account_id}")


# Global service instance
account_service = AccountService()
