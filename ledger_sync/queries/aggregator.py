"""
Ledger Aggregator

Totals are ALWAYS computed over the full, unfiltered entry set, never
from the paginated list. The list may be filtered to a single category
while the totals still have to describe the whole ledger.

The fetch is bounded (aggregate_limit, 1000 by default) to keep the
operation finite; `LedgerSnapshot.truncated` tells callers when the cap
was hit.
"""

from collections import defaultdict
from typing import Optional

from ledger_sync.models.entry import (
    AggregateTotals,
    CategorySummary,
    EntryKind,
    LedgerEntry,
    LedgerSnapshot,
    MonthSummary,
)
from ledger_sync.models.result import Ok, Result
from ledger_sync.queries.accessor import DEFAULT_FETCH_LIMIT, RemoteCollectionAccessor


def calculate_totals(entries: list[LedgerEntry]) -> AggregateTotals:
    """Sum income and expense; balance is derived by the model."""
    income = 0
    expense = 0
    for entry in entries:
        if entry.kind == EntryKind.INCOME:
            income += entry.amount
        else:
            expense += entry.amount
    return AggregateTotals(income=income, expense=expense)


def group_by_category(
    entries: list[LedgerEntry],
    kind: Optional[EntryKind] = EntryKind.EXPENSE,
) -> list[CategorySummary]:
    """
    Per-category totals, largest first.

    Args:
        kind: only entries of this kind are grouped; None groups everything
    """
    totals: dict[str, int] = defaultdict(int)
    counts: dict[str, int] = defaultdict(int)
    for entry in entries:
        if kind is not None and entry.kind != kind:
            continue
        totals[entry.category_id] += entry.amount
        counts[entry.category_id] += 1

    grand_total = sum(totals.values())
    summaries = [
        CategorySummary(
            category_id=category_id,
            total=total,
            count=counts[category_id],
            percentage=round(total / grand_total * 100, 2) if grand_total else 0.0,
        )
        for category_id, total in totals.items()
    ]
    summaries.sort(key=lambda s: (-s.total, s.category_id))
    return summaries


def group_by_month(entries: list[LedgerEntry]) -> list[MonthSummary]:
    """Income/expense per calendar month (YYYY-MM), oldest first."""
    months: dict[str, MonthSummary] = {}
    for entry in entries:
        key = entry.occurred_on.strftime("%Y-%m")
        summary = months.setdefault(key, MonthSummary(month=key))
        if entry.kind == EntryKind.INCOME:
            summary.income += entry.amount
        else:
            summary.expense += entry.amount
        summary.count += 1
    return [months[key] for key in sorted(months)]


class LedgerAggregator:
    """
    Derives totals from a full-collection fetch.

    No caching here; every call goes to the backend.
    """

    def __init__(
        self,
        accessor: RemoteCollectionAccessor,
        limit: int = DEFAULT_FETCH_LIMIT,
    ):
        self._accessor = accessor
        self._limit = limit

    async def snapshot(self, user_id: Optional[str]) -> Result[LedgerSnapshot]:
        """Fetch the full entry set and the totals derived from it."""
        result = await self._accessor.fetch_all(user_id, self._limit)
        if not result.is_ok:
            return result

        entries = result.value
        return Ok(LedgerSnapshot(
            entries=entries,
            totals=calculate_totals(entries),
            truncated=len(entries) >= self._limit,
        ))

    async def compute_totals(self, user_id: Optional[str]) -> Result[AggregateTotals]:
        result = await self.snapshot(user_id)
        if not result.is_ok:
            return result
        return Ok(result.value.totals)
