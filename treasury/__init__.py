"""
Vandehoeken Treasury Ledger

This package provides:
- One treasury account per citizen, opened lazily with a zero balance
- Transfers, marketplace purchases, payroll runs and admin credits
- All-or-nothing settlement with optimistic balance checks and bounded retry
- Append-only transaction log, one record per balance change
- Idempotent (at-most-once) settlement keyed by idempotency key
"""

from .models import (
    Account,
    AssignmentStatus,
    JobAssignment,
    MarketplaceItem,
    PayrollOutcome,
    PayrollReport,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from .service import LedgerService

__all__ = [
    "Account",
    "AssignmentStatus",
    "JobAssignment",
    "MarketplaceItem",
    "PayrollOutcome",
    "PayrollReport",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "LedgerService",
]
