"""TextBuilder Credit Routes

Endpoints:
- GET /api/credits - Balance and current plan
- GET /api/credits/transactions - Paginated ledger
- GET /api/credits/stats - Usage summary
"""

from fastapi import APIRouter, HTTPException, Depends, Query
import logging

from middleware import require_auth
from textbuilder.errors import TextBuilderError
from textbuilder.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from textbuilder.services.account_service import account_service
from textbuilder.services.credit_service import credit_service
from textbuilder.services.ledger_stats import credit_stats, usage_by_feature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credits", tags=["Credits"])


@router.get("")
@router.get("/")
async def get_credits(user: dict = Depends(require_auth)):
    return {"success": True, "data": await account_service.get_credits(user["account_id"])}


@router.get("/transactions")
async def get_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: dict = Depends(require_auth),
):
    """Ledger entries, newest first."""
    try:
        entries, pagination = await credit_service.get_transaction_history(
            user["account_id"], page=page, limit=limit
        )
        return {"success": True, "data": entries, "pagination": pagination}
    except Exception as e:
        logger.error(f"Failed to get transactions: {e}")
        raise HTTPException(status_code=500, detail="Failed to get transactions")


@router.get("/stats")
async def get_stats(user: dict = Depends(require_auth)):
    try:
        account = await account_service.get_account(user["account_id"])
        entries = await credit_service.get_entries(user["account_id"])
        return {
            "success": True,
            "data": {
                "stats": credit_stats(account, entries),
                "usageByFeature": usage_by_feature(entries),
            },
        }
    except TextBuilderError:
        raise
    except Exception as e:
        logger.error(f"Failed to get credit stats: {e}")
        raise HTTPException(status_code=500, detail="Failed to get credit stats")
