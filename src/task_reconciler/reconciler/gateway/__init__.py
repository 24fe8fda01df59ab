"""Ledger gateway implementations."""

from task_reconciler.reconciler.gateway.base import (
    EventCallback,
    LedgerError,
    LedgerGateway,
    SubmissionRejectedError,
)

__all__ = [
    "EventCallback",
    "LedgerError",
    "LedgerGateway",
    "SubmissionRejectedError",
]
