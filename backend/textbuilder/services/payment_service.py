"""TextBuilder Payment Service - Stripe plans, credit packages and webhooks.

Every grant goes through credit_service.add_credits with the Stripe object id
as reference_id, so a retried request or a replayed webhook never grants the
same payment twice.

Webhook events handled:
- payment_intent.succeeded / payment_intent.payment_failed (logged)
- customer.subscription.created / customer.subscription.updated
- customer.subscription.deleted
- invoice.paid (subscription_cycle renewals)

The plan expiry is always written as an absolute timestamp taken from
Stripe (current_period_end or the invoice period end), never as an offset
from the stored value.
"""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, Any, Optional

import stripe
from pymongo.errors import DuplicateKeyError

from database import database
from textbuilder.errors import PaymentError
from textbuilder.models.credits import CreditTransactionType
from textbuilder.models.plans import PLANS, SubscriptionPlanType
from textbuilder.services.account_service import account_service
from textbuilder.services.credit_service import credit_service
from textbuilder.services.plan_service import (
    build_subscription_plan,
    get_credit_package,
    get_plan,
    subscription_status,
)

logger = logging.getLogger(__name__)

# Prefer STRIPE_SECRET_KEY; fallback STRIPE_API_KEY
stripe.api_key = (os.getenv("STRIPE_SECRET_KEY") or os.getenv("STRIPE_API_KEY") or "").strip()
STRIPE_WEBHOOK_SECRET = (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip()
CURRENCY = "usd"
# Subscription states in which the first invoice has been paid
ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")


def to_cents(price: float) -> int:
    return int(round(price * 100))


def invoice_period_end(invoice: Dict[str, Any]) -> Optional[datetime]:
    """End of the billing period an invoice pays for (first line item)."""
    lines = (invoice.get("lines") or {}).get("data") or []
    end = (lines[0].get("period") or {}).get("end") if lines else None
    return datetime.fromtimestamp(end, tz=timezone.utc) if end else None


class PaymentService:
    """Stripe-backed purchases of plans and credit packages."""

    def _get_db(self):
        return database.get_db()

    async def _get_or_create_customer(self, account: Dict[str, Any]) -> str:
        customer_id = account.get("stripe_customer_id")
        if customer_id:
            return customer_id

        customer = stripe.Customer.create(
            email=account.get("email"),
            name=account.get("name") or None,
            metadata={"accountId": account["account_id"]},
        )
        await account_service.set_stripe_customer(account["account_id"], customer.id)
        logger.info(f"Created Stripe customer {customer.id} for account {account['account_id']}")
        return customer.id

    async def get_subscription(self, account_id: str) -> Dict[str, Any]:
        account = await account_service.get_account(account_id)
        plan_doc = account.get("subscription_plan")
        return {
            "subscription": plan_doc,
            "status": subscription_status(plan_doc),
            "credits": account.get("credits", 0),
        }

    async def create_payment_intent(
        self,
        account_id: str,
        plan_id: str,
        is_lifetime: bool = True,
    ) -> Dict[str, Any]:
        plan = get_plan(plan_id)
        intent = stripe.PaymentIntent.create(
            amount=to_cents(plan.price),
            currency=CURRENCY,
            metadata={
                "accountId": account_id,
                "planId": plan.id,
                "isLifetime": str(bool(is_lifetime)).lower(),
            },
        )
        return {"clientSecret": intent.client_secret}

    async def process_payment(
        self,
        account_id: str,
        plan_id: str,
        payment_method_id: str,
        is_lifetime: bool = True,
    ) -> Dict[str, Any]:
        """Charge for a plan, switch the account to it and grant its credits."""
        plan = get_plan(plan_id)
        account = await account_service.get_account(account_id)
        customer_id = await self._get_or_create_customer(account)

        stripe_subscription_id = None
        if is_lifetime:
            intent = stripe.PaymentIntent.create(
                amount=to_cents(plan.price),
                currency=CURRENCY,
                customer=customer_id,
                payment_method=payment_method_id,
                off_session=True,
                confirm=True,
                metadata={"accountId": account_id, "planId": plan.id, "isLifetime": "true"},
            )
            if intent.status != "succeeded":
                logger.warning(f"Plan payment {intent.id} for {account_id} ended in status {intent.status}")
                raise PaymentError("Payment failed")
            payment_id = intent.id
        else:
            stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)
            stripe.Customer.modify(
                customer_id,
                invoice_settings={"default_payment_method": payment_method_id},
            )
            product = stripe.Product.create(
                name=f"TextBuilder {plan.name}",
                metadata={"planId": plan.id},
            )
            price = stripe.Price.create(
                product=product.id,
                unit_amount=to_cents(plan.price),
                currency=CURRENCY,
                recurring={"interval": "month"},
            )
            subscription = stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": price.id}],
                default_payment_method=payment_method_id,
                metadata={"accountId": account_id, "planId": plan.id},
            )
            if subscription.status not in ACTIVE_SUBSCRIPTION_STATUSES:
                # First invoice was not paid; do not leave a dangling subscription behind
                logger.warning(
                    f"Subscription {subscription.id} for {account_id} ended in status {subscription.status}"
                )
                try:
                    stripe.Subscription.cancel(subscription.id)
                except stripe.StripeError as e:
                    logger.error(f"Failed to cancel unpaid subscription {subscription.id}: {e}")
                raise PaymentError("Payment failed")
            stripe_subscription_id = subscription.id
            payment_id = subscription.id

        plan_doc = await account_service.update_subscription_plan(
            account_id,
            build_subscription_plan(plan, is_lifetime, stripe_subscription_id=stripe_subscription_id),
        )
        await credit_service.add_credits(
            account_id=account_id,
            amount=plan.monthly_credits,
            transaction_type=CreditTransactionType.PURCHASE,
            description=f"{plan.name} plan purchase: {plan.monthly_credits} credits",
            reference_id=payment_id,
            metadata={"planId": plan.id, "isLifetime": is_lifetime},
        )

        credits, _ = await credit_service.get_balance(account_id)
        logger.info(f"Account {account_id} purchased {plan.id} (lifetime={is_lifetime}) via {payment_id}")
        return {"subscription": plan_doc, "paymentId": payment_id, "credits": credits}

    async def buy_credits(
        self,
        account_id: str,
        package_id: str,
        payment_method_id: str,
    ) -> Dict[str, Any]:
        package = get_credit_package(package_id)
        account = await account_service.get_account(account_id)
        customer_id = await self._get_or_create_customer(account)

        intent = stripe.PaymentIntent.create(
            amount=to_cents(package.price),
            currency=CURRENCY,
            customer=customer_id,
            payment_method=payment_method_id,
            off_session=True,
            confirm=True,
            metadata={"accountId": account_id, "creditPackage": package.package_id},
        )
        if intent.status != "succeeded":
            logger.warning(f"Credit purchase {intent.id} for {account_id} ended in status {intent.status}")
            raise PaymentError("Payment failed")

        await credit_service.add_credits(
            account_id=account_id,
            amount=package.credits,
            transaction_type=CreditTransactionType.PURCHASE,
            description=f"Purchased {package.credits} credits",
            reference_id=intent.id,
            metadata={"creditPackage": package.package_id},
        )

        credits, _ = await credit_service.get_balance(account_id)
        return {"credits": credits, "added": package.credits, "paymentIntent": intent.id}

    # =========================================================================
    # Webhooks
    # =========================================================================

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify the Stripe signature and return the event as a plain dict."""
        if not signature:
            raise ValueError("Missing stripe-signature header")
        if not STRIPE_WEBHOOK_SECRET:
            logger.error("STRIPE_WEBHOOK_SECRET is not set - rejecting webhook")
            raise ValueError("Webhook secret is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
        except stripe.SignatureVerificationError as e:
            logger.error(f"Webhook signature verification failed: {e}")
            raise ValueError("Invalid signature")
        return json.loads(payload)

    async def handle_webhook_event(self, event: Dict[str, Any]) -> bool:
        """Process a verified event once. Returns False for a duplicate."""
        event_id = event.get("id")
        event_type = event.get("type")
        db = self._get_db()

        try:
            await db.stripe_events.insert_one({
                "event_id": event_id,
                "type": event_type,
                "status": "PROCESSING",
                "received_at": datetime.now(timezone.utc),
            })
        except DuplicateKeyError:
            # A failed event may be retried by Stripe; anything else is a duplicate
            retry = await db.stripe_events.update_one(
                {"event_id": event_id, "status": "FAILED"},
                {"$set": {"status": "PROCESSING", "retried_at": datetime.now(timezone.utc)}},
            )
            if retry.modified_count == 0:
                logger.info(f"Event {event_id} already processed - skipping")
                return False

        obj = (event.get("data") or {}).get("object") or {}
        logger.info(f"WEBHOOK_RECEIVED event_id={event_id} event_type={event_type}")

        try:
            if event_type == "payment_intent.succeeded":
                logger.info(f"PaymentIntent {obj.get('id')} succeeded")
            elif event_type == "payment_intent.payment_failed":
                error = (obj.get("last_payment_error") or {}).get("message")
                logger.warning(f"PaymentIntent {obj.get('id')} failed: {error}")
            elif event_type == "customer.subscription.created":
                logger.info(f"Subscription {obj.get('id')} created for customer {obj.get('customer')}")
            elif event_type == "customer.subscription.updated":
                await self._handle_subscription_updated(obj)
            elif event_type == "customer.subscription.deleted":
                await self._handle_subscription_deleted(obj)
            elif event_type == "invoice.paid":
                await self._handle_invoice_paid(obj)
            else:
                logger.info(f"Unhandled webhook event type: {event_type}")
        except Exception as e:
            await db.stripe_events.update_one(
                {"event_id": event_id},
                {"$set": {"status": "FAILED", "error": str(e)}},
            )
            raise

        await db.stripe_events.update_one(
            {"event_id": event_id},
            {"$set": {"status": "PROCESSED", "processed_at": datetime.now(timezone.utc)}},
        )
        return True

    async def _account_for_customer(self, customer_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not customer_id:
            return None
        account = await account_service.find_by_stripe_customer(customer_id)
        if not account:
            logger.warning(f"No account for Stripe customer {customer_id}")
        return account

    async def _handle_subscription_updated(self, subscription: Dict[str, Any]) -> None:
        account = await self._account_for_customer(subscription.get("customer"))
        if not account:
            return
        period_end = subscription.get("current_period_end")
        if period_end:
            expires_at = datetime.fromtimestamp(period_end, tz=timezone.utc)
            await account_service.set_subscription_expiry(account["account_id"], expires_at)
            logger.info(f"Subscription {subscription.get('id')} for {account['account_id']} now ends {expires_at.isoformat()}")

    async def _handle_subscription_deleted(self, subscription: Dict[str, Any]) -> None:
        account = await self._account_for_customer(subscription.get("customer"))
        if not account:
            return
        await account_service.expire_subscription(account["account_id"])

    async def _handle_invoice_paid(self, invoice: Dict[str, Any]) -> None:
        """Monthly renewal: grant the plan's credits.

        Expiry is set to the end of the period the invoice pays for. It is an
        absolute value shared with customer.subscription.updated, so the two
        events can arrive in either order without extending the plan twice.
        """
        if invoice.get("billing_reason") != "subscription_cycle":
            return

        account = await self._account_for_customer(invoice.get("customer"))
        if not account:
            return

        plan_doc = account.get("subscription_plan") or {}
        if not plan_doc or plan_doc.get("is_lifetime"):
            return

        monthly_credits = plan_doc.get("monthly_credits")
        if not monthly_credits:
            plan = PLANS.get(SubscriptionPlanType(plan_doc["type"]))
            monthly_credits = plan.monthly_credits

        await credit_service.add_credits(
            account_id=account["account_id"],
            amount=monthly_credits,
            transaction_type=CreditTransactionType.SUBSCRIPTION_RENEWAL,
            description=f"Monthly renewal: {monthly_credits} credits",
            reference_id=invoice.get("id"),
        )

        period_end = invoice_period_end(invoice)
        if period_end:
            await account_service.set_subscription_expiry(account["account_id"], period_end)
        logger.info(f"Renewed subscription for {account['account_id']} ({monthly_credits} credits)")


# Global service instance
payment_service = PaymentService()
