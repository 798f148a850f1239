"""TextBuilder Credit Service

Every balance change is written as a CreditHold before it touches the
account document:

  debit:  reserve -> (provider call) -> commit | release
  credit: claim -> apply -> finalize

reserve() is a single conditional update (credits >= cost), so concurrent
debits on one account can never overdraw it. The ledger entry produced by
a hold is keyed by the hold id, and the account only drops the hold from
pending_holds after that entry exists. Status changes on the hold are
conditional, so commit and release cannot both win. reconcile_holds()
finishes whatever a crash or timeout left half-done.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, List, Tuple, Callable, Awaitable
import logging
import os

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import database
from textbuilder.errors import AccountNotFoundError, InsufficientCreditsError
from textbuilder.models.credits import (
    CreditFeature,
    CreditHold,
    CreditHoldDirection,
    CreditHoldStatus,
    CreditTransaction,
    CreditTransactionType,
)
from textbuilder.pagination import build_pagination, page_window

logger = logging.getLogger(__name__)

CREDIT_HOLD_TIMEOUT_MINUTES = int(os.getenv("CREDIT_HOLD_TIMEOUT_MINUTES", "30"))
RECONCILE_BATCH_SIZE = 500


@dataclass
class ChargeOutcome:
    """What a charged operation produced and what it should cost.

    credits_used defaults to the full reserved cost; it may be lower
    (e.g. fewer images delivered than requested) but never higher.
    """
    result: Any
    credits_used: Optional[int] = None
    description: Optional[str] = None
    reference_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class CreditService:
    """Credit balance and ledger service."""

    def _get_db(self):
        return database.get_db()

    # ------------------------------------------------------------------
    # Hold bookkeeping
    # ------------------------------------------------------------------

    async def _transition(
        self,
        hold: CreditHold,
        status: CreditHoldStatus,
        expected: Optional[List[CreditHoldStatus]] = None,
        **fields,
    ) -> bool:
        """Move a hold to a new status.

        With expected set, the move only happens if the stored status is one
        of those; returns False when another writer got there first.
        """
        db = self._get_db()
        now = datetime.now(timezone.utc)
        query = {"hold_id": hold.hold_id}
        if expected:
            query["status"] = {"$in": [s.value for s in expected]}

        result = await db.credit_holds.update_one(
            query,
            {"$set": {"status": status.value, "updated_at": now, **fields}},
        )
        if expected and result.modified_count == 0:
            return False

        hold.status = status.value
        hold.updated_at = now
        for key, value in fields.items():
            setattr(hold, key, value)
        return True

    async def _is_applied(self, hold: CreditHold) -> bool:
        """True if the hold's balance change is on the account but not finalized."""
        db = self._get_db()
        account = await db.accounts.find_one(
            {"account_id": hold.account_id, "pending_holds": hold.hold_id},
            {"_id": 0, "account_id": 1},
        )
        return account is not None

    async def _claim_credit(self, hold: CreditHold) -> bool:
        """Claim the right to apply a credit hold. Only one caller ever wins."""
        db = self._get_db()
        result = await db.credit_holds.update_one(
            {"hold_id": hold.hold_id, "applied": {"$ne": True}},
            {"$set": {"applied": True, "updated_at": datetime.now(timezone.utc)}},
        )
        if result.modified_count == 0:
            return False
        hold.applied = True
        return True

    async def _apply_credit(self, hold: CreditHold) -> bool:
        """Add a credit hold's amount to the balance.

        Callers must hold the claim (_claim_credit). Returns False when the
        account does not exist.
        """
        db = self._get_db()
        result = await db.accounts.update_one(
            {"account_id": hold.account_id, "pending_holds": {"$ne": hold.hold_id}},
            {
                "$inc": {"credits": hold.amount},
                "$push": {"pending_holds": hold.hold_id},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
        )
        return result.matched_count == 1

    async def _finalize(self, hold: CreditHold) -> CreditTransaction:
        """Write the ledger entry, then clear the hold from the account.

        Safe to repeat: the entry is keyed by hold_id and the account update
        only matches while the hold is still pending.
        """
        db = self._get_db()
        transaction = hold.to_transaction()
        try:
            await db.credit_transactions.insert_one(transaction.model_dump())
        except DuplicateKeyError:
            existing = await db.credit_transactions.find_one(
                {"transaction_id": hold.hold_id}, {"_id": 0}
            )
            if existing:
                transaction = CreditTransaction(**existing)
            logger.info(f"Ledger entry {hold.hold_id} already recorded")

        await db.accounts.update_one(
            {"account_id": hold.account_id, "pending_holds": hold.hold_id},
            {
                "$inc": {
                    "reserved_credits": -hold.reserved,
                    "credits": hold.settlement_delta,
                },
                "$pull": {"pending_holds": hold.hold_id},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
        )
        await self._transition(hold, CreditHoldStatus.SETTLED)

        logger.info(
            f"Settled hold {hold.hold_id} for account {hold.account_id}: {transaction.amount} credits"
        )
        return transaction

    # ------------------------------------------------------------------
    # Debit protocol
    # ------------------------------------------------------------------

    async def reserve(
        self,
        account_id: str,
        cost: int,
        feature: Optional[CreditFeature],
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditHold:
        """Move cost from credits to reserved_credits, or fail without change.

        Raises InsufficientCreditsError (with required/available) when the
        balance does not cover cost, AccountNotFoundError for unknown accounts.
        """
        if isinstance(cost, bool) or not isinstance(cost, int) or cost < 0:
            raise ValueError("Cost must be a non-negative integer")

        db = self._get_db()
        hold = CreditHold(
            account_id=account_id,
            direction=CreditHoldDirection.DEBIT,
            status=CreditHoldStatus.RESERVED,
            reserved=cost,
            transaction_type=CreditTransactionType.USAGE,
            feature=feature,
            description=description,
            metadata=metadata or {},
        )
        await db.credit_holds.insert_one(hold.model_dump())

        account = await db.accounts.find_one_and_update(
            {"account_id": account_id, "credits": {"$gte": cost}},
            {
                "$inc": {"credits": -cost, "reserved_credits": cost},
                "$push": {"pending_holds": hold.hold_id},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
            projection={"_id": 0, "credits": 1},
            return_document=ReturnDocument.AFTER,
        )

        if account is None:
            await self._transition(hold, CreditHoldStatus.REJECTED)
            current = await db.accounts.find_one(
                {"account_id": account_id}, {"_id": 0, "credits": 1}
            )
            if not current:
                raise AccountNotFoundError(account_id)
            available = current.get("credits", 0)
            logger.warning(
                f"Insufficient credits for account {account_id}. Has {available}, needs {cost}"
            )
            raise InsufficientCreditsError(required=cost, available=available)

        logger.info(
            f"Reserved {cost} credits for account {account_id} (hold {hold.hold_id}). "
            f"Available now: {account.get('credits')}"
        )
        return hold

    async def commit(
        self,
        hold: CreditHold,
        actual_cost: Optional[int] = None,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditTransaction:
        """Settle a reserved debit for actual_cost (default: the full reservation).

        Writes exactly one usage entry of -actual_cost and returns the unused
        part of the reservation to the balance.
        """
        if hold.direction != CreditHoldDirection.DEBIT.value:
            raise ValueError("Only debit holds can be committed")

        actual = hold.reserved if actual_cost is None else actual_cost
        if actual < 0 or actual > hold.reserved:
            raise ValueError(
                f"Actual cost {actual} must be between 0 and the reserved {hold.reserved}"
            )

        fields = {
            "amount": -actual,
            "settlement_delta": hold.reserved - actual,
        }
        if description:
            fields["description"] = description
        if reference_id:
            fields["reference_id"] = reference_id
        if metadata:
            fields["metadata"] = {**hold.metadata, **metadata}

        claimed = await self._transition(
            hold,
            CreditHoldStatus.COMMITTING,
            expected=[CreditHoldStatus.RESERVED],
            **fields,
        )
        if not claimed:
            raise ValueError(f"Hold {hold.hold_id} is no longer reserved")

        return await self._finalize(hold)

    async def release(self, hold: CreditHold, reason: str = "") -> None:
        """Return a reservation to the balance. No ledger entry is written."""
        if hold.status in (
            CreditHoldStatus.RELEASED.value,
            CreditHoldStatus.REJECTED.value,
            CreditHoldStatus.SETTLED.value,
        ):
            return

        claimed = await self._transition(
            hold,
            CreditHoldStatus.RELEASING,
            expected=[CreditHoldStatus.RESERVED, CreditHoldStatus.RELEASING],
            release_reason=reason or None,
        )
        if not claimed:
            logger.warning(f"Hold {hold.hold_id} could not be released; it is being committed")
            return

        db = self._get_db()
        await db.accounts.update_one(
            {"account_id": hold.account_id, "pending_holds": hold.hold_id},
            {
                "$inc": {"credits": hold.reserved, "reserved_credits": -hold.reserved},
                "$pull": {"pending_holds": hold.hold_id},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
        )
        await self._transition(hold, CreditHoldStatus.RELEASED)
        logger.info(
            f"Released {hold.reserved} credits for account {hold.account_id} "
            f"(hold {hold.hold_id}): {reason}"
        )

    async def get_hold(self, hold_id: str) -> Optional[CreditHold]:
        db = self._get_db()
        doc = await db.credit_holds.find_one({"hold_id": hold_id}, {"_id": 0})
        return CreditHold(**doc) if doc else None

    async def extend_hold(self, hold: CreditHold) -> bool:
        """Refresh a reservation that backs long-running work.

        The reconciler only picks up holds untouched for the timeout, so
        queued jobs call this between steps. Returns False once the hold is
        no longer reserved.
        """
        return await self._transition(
            hold,
            CreditHoldStatus.RESERVED,
            expected=[CreditHoldStatus.RESERVED],
        )

    async def charge(
        self,
        account_id: str,
        cost: int,
        feature: CreditFeature,
        description: str,
        operation: Callable[[], Awaitable[ChargeOutcome]],
    ) -> Tuple[Any, Optional[CreditTransaction]]:
        """Run a paid operation under a credit hold.

        The hold is taken before operation() runs. If operation() raises, the
        hold is released and the error propagates; no credits are spent.
        Returns (result, ledger entry). The entry is None only when the
        operation succeeded but settlement was interrupted after the commit
        was claimed; the reconciler finishes it.
        """
        hold = await self.reserve(account_id, cost, feature, description)

        try:
            outcome = await operation()
        except Exception as e:
            try:
                await self.release(hold, reason=f"{e.__class__.__name__}: {e}")
            except Exception as release_error:
                logger.error(
                    f"Failed to release hold {hold.hold_id}, left for reconciliation: {release_error}"
                )
            raise

        try:
            transaction = await self.commit(
                hold,
                actual_cost=outcome.credits_used,
                description=outcome.description,
                reference_id=outcome.reference_id,
                metadata=outcome.metadata,
            )
        except Exception as e:
            if hold.status != CreditHoldStatus.COMMITTING.value:
                raise
            logger.error(f"Settlement of hold {hold.hold_id} interrupted, left for reconciliation: {e}")
            transaction = None

        return outcome.result, transaction

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    async def add_credits(
        self,
        account_id: str,
        amount: int,
        transaction_type: CreditTransactionType,
        description: str,
        feature: Optional[CreditFeature] = None,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditTransaction:
        """Add credits to an account and record the grant.

        With a reference_id (payment intent, invoice) the grant is applied at
        most once per (reference_id, transaction_type).
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError("Amount must be positive for adding credits")

        db = self._get_db()
        transaction_type = CreditTransactionType(transaction_type)

        hold_kwargs = {}
        if reference_id:
            existing = await self.find_by_reference(reference_id, transaction_type)
            if existing:
                logger.info(f"Credits for {transaction_type.value} {reference_id} already granted")
                return CreditTransaction(**existing)
            hold_kwargs["hold_id"] = f"CHD-{transaction_type.value.upper()}-{reference_id}"

        hold = CreditHold(
            account_id=account_id,
            direction=CreditHoldDirection.CREDIT,
            status=CreditHoldStatus.COMMITTING,
            amount=amount,
            transaction_type=transaction_type,
            feature=feature,
            description=description,
            reference_id=reference_id,
            metadata=metadata or {},
            **hold_kwargs,
        )
        try:
            await db.credit_holds.insert_one(hold.model_dump())
        except DuplicateKeyError:
            return await self._resume_grant(hold.hold_id)

        if not await self._claim_credit(hold):
            # A retry of the same grant picked it up between insert and claim
            logger.info(f"Grant {hold.hold_id} is being completed by another request")
            return hold.to_transaction()

        if not await self._apply_credit(hold):
            await self._transition(hold, CreditHoldStatus.REJECTED)
            raise AccountNotFoundError(account_id)

        return await self._finalize(hold)

    async def _resume_grant(self, hold_id: str) -> CreditTransaction:
        """Finish a grant whose hold already exists.

        This is the retry of a grant that crashed part way (or a concurrent
        duplicate). Whatever step is missing is done inline, so the caller
        sees the credits without waiting for the reconciler.
        """
        db = self._get_db()
        doc = await db.credit_holds.find_one({"hold_id": hold_id}, {"_id": 0})
        hold = CreditHold(**doc)
        entry = await db.credit_transactions.find_one({"transaction_id": hold_id}, {"_id": 0})

        if hold.status == CreditHoldStatus.REJECTED.value:
            raise AccountNotFoundError(hold.account_id)
        if hold.status == CreditHoldStatus.SETTLED.value:
            return CreditTransaction(**entry) if entry else hold.to_transaction()

        if await self._claim_credit(hold):
            logger.info(f"Resuming grant {hold_id}: applying credits")
            if not await self._apply_credit(hold):
                await self._transition(hold, CreditHoldStatus.REJECTED)
                raise AccountNotFoundError(hold.account_id)
            return await self._finalize(hold)

        if await self._is_applied(hold):
            logger.info(f"Resuming grant {hold_id}: finalizing")
            return await self._finalize(hold)

        # Claimed by a request that is still applying it (or died doing so;
        # the reconciler finishes that case)
        logger.info(f"Grant {hold_id} already in progress")
        return CreditTransaction(**entry) if entry else hold.to_transaction()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _reconcile_hold(self, hold: CreditHold) -> str:
        db = self._get_db()
        applied = await self._is_applied(hold)

        if hold.status in (CreditHoldStatus.RESERVED.value, CreditHoldStatus.RELEASING.value):
            if applied:
                await self.release(hold, reason=hold.release_reason or "hold timed out")
            else:
                await self._transition(
                    hold,
                    CreditHoldStatus.RELEASED,
                    release_reason=hold.release_reason or "never applied",
                )
            return "released"

        # COMMITTING
        if applied:
            await self._finalize(hold)
            return "settled"

        entry = await db.credit_transactions.find_one(
            {"transaction_id": hold.hold_id}, {"_id": 0, "transaction_id": 1}
        )
        if entry:
            await self._transition(hold, CreditHoldStatus.SETTLED)
            return "settled"

        if hold.direction == CreditHoldDirection.CREDIT.value:
            # Stale, so a claim taken by a crashed request is ours to finish
            await self._claim_credit(hold)
            if await self._apply_credit(hold):
                await self._finalize(hold)
                return "settled"

        logger.warning(f"Hold {hold.hold_id} has no balance change to settle; rejecting")
        await self._transition(hold, CreditHoldStatus.REJECTED)
        return "rejected"

    async def reconcile_holds(self, older_than: Optional[timedelta] = None) -> Dict[str, int]:
        """Resolve holds left unfinished for longer than older_than (scheduled job).

        Returns counts of released, settled and rejected holds.
        """
        db = self._get_db()
        cutoff = datetime.now(timezone.utc) - (
            older_than if older_than is not None else timedelta(minutes=CREDIT_HOLD_TIMEOUT_MINUTES)
        )
        stale = await db.credit_holds.find(
            {
                "status": {"$in": [
                    CreditHoldStatus.RESERVED.value,
                    CreditHoldStatus.COMMITTING.value,
                    CreditHoldStatus.RELEASING.value,
                ]},
                "updated_at": {"$lt": cutoff},
            },
            {"_id": 0},
        ).to_list(RECONCILE_BATCH_SIZE)

        counts = {"released": 0, "settled": 0, "rejected": 0}
        for doc in stale:
            hold = CreditHold(**doc)
            try:
                outcome = await self._reconcile_hold(hold)
                counts[outcome] += 1
                logger.warning(f"Reconciled stale hold {hold.hold_id} ({doc['status']} -> {outcome})")
            except Exception as e:
                logger.error(f"Failed to reconcile hold {hold.hold_id}: {e}")

        return counts

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, account_id: str) -> Tuple[int, int]:
        """Return (credits, reserved_credits)."""
        db = self._get_db()
        account = await db.accounts.find_one(
            {"account_id": account_id},
            {"_id": 0, "credits": 1, "reserved_credits": 1},
        )
        if not account:
            raise AccountNotFoundError(account_id)
        return account.get("credits", 0), account.get("reserved_credits", 0)

    async def get_transaction_history(
        self,
        account_id: str,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        """Ledger entries, newest first, with pagination info."""
        db = self._get_db()
        skip, limit = page_window(page, limit)

        total = await db.credit_transactions.count_documents({"account_id": account_id})
        cursor = db.credit_transactions.find(
            {"account_id": account_id},
            {"_id": 0},
        ).sort("created_at", -1).skip(skip).limit(limit)

        entries = await cursor.to_list(limit)
        return entries, build_pagination(total, page, limit)

    async def find_by_reference(
        self,
        reference_id: str,
        transaction_type: CreditTransactionType,
    ) -> Optional[Dict[str, Any]]:
        db = self._get_db()
        return await db.credit_transactions.find_one(
            {"reference_id": reference_id, "transaction_type": CreditTransactionType(transaction_type).value},
            {"_id": 0},
        )

    async def get_entries(self, account_id: str) -> List[Dict[str, Any]]:
        """All ledger entries for an account (reporting)."""
        db = self._get_db()
        cursor = db.credit_transactions.find(
            {"account_id": account_id},
            {"_id": 0},
        ).sort("created_at", -1)
        return await cursor.to_list(None)


# Global service instance
credit_service = CreditService()
