"""Gateway interface for the remote task ledger."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from task_reconciler.reconciler.models import EventKind, RawEvent, TaskRecord, TxReceipt

EventCallback = Callable[[RawEvent], None]


class LedgerError(RuntimeError):
    """Remote ledger call failed."""


class SubmissionRejectedError(LedgerError):
    """Submission transaction was mined but reverted."""


class LedgerGateway(Protocol):
    """Protocol implemented by ledger adapters."""

    def fetch_task(self, task_id: int) -> TaskRecord | None:
        """Return the current task record, or None when the task does not exist."""

    def submit_result(self, task_id: int, result: str) -> TxReceipt:
        """Submit a result and return once the ledger confirmed acceptance."""

    def query_events(
        self,
        kind: EventKind,
        agent: str,
        from_block: int,
        to_block: int,
    ) -> list[RawEvent]:
        """Return assignment events for ``agent`` in ``[from_block, to_block]``."""

    def current_height(self) -> int:
        """Return the latest block height."""

    def on_event(self, kind: EventKind, agent: str, callback: EventCallback) -> None:
        """Register a callback for new events of ``kind`` assigned to ``agent``."""

    def start(self, from_block: int) -> None:
        """Begin delivering events from ``from_block`` onward to registered callbacks."""

    def stop(self) -> None:
        """Stop event delivery."""
