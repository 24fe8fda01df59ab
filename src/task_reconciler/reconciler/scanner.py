"""Startup catch-up over assignment events missed while offline."""

from __future__ import annotations

import logging

from task_reconciler.reconciler.gateway import LedgerGateway
from task_reconciler.reconciler.ledger import IdempotencyLedger
from task_reconciler.reconciler.models import CatchUpSummary, EventKind, RawEvent
from task_reconciler.reconciler.processor import TaskProcessor

logger = logging.getLogger(__name__)


class ReconciliationScanner:
    """Replays events from the persisted watermark up to the current height."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        gateway: LedgerGateway,
        ledger: IdempotencyLedger,
        processor: TaskProcessor,
        agent_address: str,
        deployment_block: int = 0,
    ) -> None:
        self.gateway = gateway
        self.ledger = ledger
        self.processor = processor
        self.agent_address = agent_address
        self.deployment_block = deployment_block

    def start_block(self) -> int:
        watermark = self.ledger.watermark
        return watermark + 1 if watermark > 0 else self.deployment_block

    def catch_up(self) -> CatchUpSummary:
        """Process every missed event in chain order. Never raises."""

        summary = CatchUpSummary(from_block=self.start_block())
        try:
            summary.to_block = self.gateway.current_height()
            if summary.to_block < summary.from_block:
                summary.noop = True
                logger.info(
                    "Nothing to catch up (watermark %d, chain height %d)",
                    self.ledger.watermark,
                    summary.to_block,
                )
                return summary

            logger.info(
                "Catching up events from block %d to %d...",
                summary.from_block,
                summary.to_block,
            )
            events = self._collect_events(summary.from_block, summary.to_block)
            summary.events = len(events)
            for event in events:
                logger.info(
                    "Processing past %s event for task %s (block %d)",
                    event.source_kind.value,
                    event.task_id,
                    event.block_height,
                )
                summary.outcomes.record(self.processor.process_event(event))
                self._advance(event.block_height)

            self._advance(summary.to_block)
        except Exception as error:
            logger.exception("Error during past events catch-up")
            summary.error = f"{type(error).__name__}: {error}"
            return summary

        logger.info(
            "Past events catch-up complete: events=%d completed=%d skipped=%d failed=%d",
            summary.events,
            summary.outcomes.completed,
            summary.outcomes.skipped,
            summary.outcomes.failed,
        )
        return summary

    def _collect_events(self, from_block: int, to_block: int) -> list[RawEvent]:
        events: list[RawEvent] = []
        for kind in EventKind:
            events.extend(
                self.gateway.query_events(kind, self.agent_address, from_block, to_block),
            )
        events.sort(key=lambda event: event.sort_key)
        return events

    def _advance(self, block: int) -> None:
        with self.ledger.transaction():
            self.ledger.advance_watermark(block)
            self.ledger.persist()
