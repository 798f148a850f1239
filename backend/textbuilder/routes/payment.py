"""TextBuilder Payment Routes

Endpoints:
- GET /api/payment/plans - Available plans (public)
- GET /api/payment/subscription - Current plan and its status
- POST /api/payment/create-payment-intent - PaymentIntent for client-side confirmation
- POST /api/payment/process-payment - Buy a plan (lifetime or monthly)
- POST /api/payment/buy-credits - Buy a credit package
- POST /api/payment/webhook - Stripe webhook (public, signature-verified)
"""

from fastapi import APIRouter, HTTPException, Depends, Request
from typing import Optional
from pydantic import BaseModel, Field
import logging

import stripe

from middleware import require_auth
from textbuilder.errors import TextBuilderError
from textbuilder.services.payment_service import payment_service
from textbuilder.services.plan_service import list_plans

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["Payment"])


class PaymentIntentRequest(BaseModel):
    plan_id: Optional[str] = Field(None, alias="planId")
    is_lifetime: bool = Field(True, alias="isLifetime")

    model_config = {"populate_by_name": True}


class ProcessPaymentRequest(BaseModel):
    plan_id: Optional[str] = Field(None, alias="planId")
    payment_method_id: Optional[str] = Field(None, alias="paymentMethodId")
    is_lifetime: bool = Field(True, alias="isLifetime")

    model_config = {"populate_by_name": True}


class BuyCreditsRequest(BaseModel):
    credit_amount: Optional[str] = Field(None, alias="creditAmount")
    payment_method_id: Optional[str] = Field(None, alias="paymentMethodId")

    model_config = {"populate_by_name": True}


def _card_message(e: stripe.StripeError) -> str:
    return getattr(e, "user_message", None) or "Payment was declined"


@router.get("/plans")
async def get_plans():
    """No auth required - for display on pricing page."""
    return {"success": True, "data": list_plans()}


@router.get("/subscription")
async def get_subscription(user: dict = Depends(require_auth)):
    return {"success": True, "data": await payment_service.get_subscription(user["account_id"])}


@router.post("/create-payment-intent")
async def create_payment_intent(request: PaymentIntentRequest, user: dict = Depends(require_auth)):
    if not request.plan_id:
        raise HTTPException(status_code=400, detail="Plan ID is required")

    try:
        result = await payment_service.create_payment_intent(
            account_id=user["account_id"],
            plan_id=request.plan_id,
            is_lifetime=request.is_lifetime,
        )
        return {"success": True, "data": result}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except stripe.StripeError as e:
        logger.error(f"Stripe error creating payment intent: {e}")
        raise HTTPException(status_code=400, detail=_card_message(e))
    except Exception as e:
        logger.error(f"Payment intent error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating payment intent")


@router.post("/process-payment")
async def process_payment(request: ProcessPaymentRequest, user: dict = Depends(require_auth)):
    if not request.plan_id or not request.payment_method_id:
        raise HTTPException(status_code=400, detail="Plan ID and payment method ID are required")

    try:
        result = await payment_service.process_payment(
            account_id=user["account_id"],
            plan_id=request.plan_id,
            payment_method_id=request.payment_method_id,
            is_lifetime=request.is_lifetime,
        )
        return {"success": True, "data": result}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except stripe.StripeError as e:
        logger.error(f"Stripe error processing payment for {user['account_id']}: {e}")
        raise HTTPException(status_code=400, detail=_card_message(e))
    except TextBuilderError:
        raise
    except Exception as e:
        logger.error(f"Payment processing error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Payment processing error")


@router.post("/buy-credits")
async def buy_credits(request: BuyCreditsRequest, user: dict = Depends(require_auth)):
    if not request.credit_amount or not request.payment_method_id:
        raise HTTPException(status_code=400, detail="Credit amount and payment method ID are required")

    try:
        result = await payment_service.buy_credits(
            account_id=user["account_id"],
            package_id=request.credit_amount,
            payment_method_id=request.payment_method_id,
        )
        return {"success": True, "data": result}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except stripe.StripeError as e:
        logger.error(f"Stripe error buying credits for {user['account_id']}: {e}")
        raise HTTPException(status_code=400, detail=_card_message(e))
    except TextBuilderError:
        raise
    except Exception as e:
        logger.error(f"Credit purchase error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Payment processing error")


@router.post("/webhook")
async def stripe_webhook(request: Request):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = payment_service.construct_event(payload, signature)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        await payment_service.handle_webhook_event(event)
    except Exception as e:
        logger.error(f"Webhook processing error for {event.get('id')}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook processing error")

    return {"received": True}
