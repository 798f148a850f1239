"""Ledger aggregation.

Pure functions over ledger entry dicts (as stored in credit_transactions).
Nothing here touches the database.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from textbuilder.models.credits import CreditFeature, CreditTransactionType

UNTAGGED_FEATURE = CreditFeature.OTHER.value


def _entry_type(entry: Dict[str, Any]) -> str:
    value = entry.get("transaction_type")
    return value.value if isinstance(value, CreditTransactionType) else value


def _created_at(entry: Dict[str, Any]) -> Optional[datetime]:
    value = entry.get("created_at")
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value


def _usage(entries: Iterable[Dict[str, Any]]):
    return (e for e in entries if _entry_type(e) == CreditTransactionType.USAGE.value)


def used_this_month(entries: Iterable[Dict[str, Any]], now: Optional[datetime] = None) -> int:
    """Usage in the current calendar month. Not a rolling window.

    "Month" is the server's month, and the server keeps time in UTC: all
    timestamps are stored as UTC, and aware values in other zones are
    converted before comparing. An entry written at 23:30 on Jan 31 in
    UTC-5 therefore counts toward February.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    total = 0
    for entry in _usage(entries):
        created = _created_at(entry)
        if created and created.year == now.year and created.month == now.month:
            total += abs(entry.get("amount", 0))
    return total


def used_total(entries: Iterable[Dict[str, Any]]) -> int:
    return sum(abs(e.get("amount", 0)) for e in _usage(entries))


def purchased_total(entries: Iterable[Dict[str, Any]]) -> int:
    return sum(
        e.get("amount", 0)
        for e in entries
        if _entry_type(e) == CreditTransactionType.PURCHASE.value
    )


def usage_by_feature(entries: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    """Summed usage per feature tag; untagged usage goes under "other"."""
    totals: Dict[str, int] = {}
    for entry in _usage(entries):
        feature = entry.get("feature") or UNTAGGED_FEATURE
        if isinstance(feature, CreditFeature):
            feature = feature.value
        totals[feature] = totals.get(feature, 0) + abs(entry.get("amount", 0))
    return totals


def credit_stats(
    account: Dict[str, Any],
    entries: Iterable[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """Balance summary shown on the credits dashboard."""
    entries = list(entries)
    available = account.get("credits", 0)
    reserved = account.get("reserved_credits", 0)
    plan = account.get("subscription_plan") or {}
    return {
        "available": available,
        "reserved": reserved,
        "total": available + reserved,
        "monthlyAllocation": plan.get("monthly_credits", 0),
        "usedThisMonth": used_this_month(entries, now),
        "usedTotal": used_total(entries),
        "purchasedTotal": purchased_total(entries),
    }
