"""Query package: feed access and aggregation."""

from ledger_sync.queries.accessor import RemoteCollectionAccessor
from ledger_sync.queries.aggregator import (
    LedgerAggregator,
    calculate_totals,
    group_by_category,
    group_by_month,
)

__all__ = [
    "LedgerAggregator",
    "RemoteCollectionAccessor",
    "calculate_totals",
    "group_by_category",
    "group_by_month",
]
