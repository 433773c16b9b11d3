"""
Ledger Sync - Source Package

The synchronization and attachment-staging core of a personal finance
tracker whose ledger entries live in a remote, per-user collection.

DESIGN PRINCIPLES:
1. Totals come from the full collection, never from the filtered list
2. Boundaries return results, they don't throw
3. A temporary attachment never survives as a committed entry's final state
4. Every mutation is auditable
5. Backends are swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Sync Team"
