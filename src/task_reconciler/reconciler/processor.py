"""Idempotent processing of a single task assignment."""

from __future__ import annotations

import json
import logging
import threading

from task_reconciler.reconciler.gateway import LedgerGateway
from task_reconciler.reconciler.handlers import HandlerRegistry
from task_reconciler.reconciler.ledger import IdempotencyLedger
from task_reconciler.reconciler.models import (
    AttemptState,
    OutcomeReason,
    ProcessingResult,
    RawEvent,
    TaskRecord,
)
from task_reconciler.reconciler.submitter import RetryingSubmitter

logger = logging.getLogger(__name__)

TOPIC_WIDTH = 32


class TaskProcessor:
    """Single entry point shared by the catch-up scan and the live subscriber.

    RECEIVED -> FETCHED -> VALIDATED -> HANDLED -> SUBMITTED -> COMPLETED,
    with SKIPPED for policy decisions and FAILED for anything worth a
    retry on the next delivery. A task id is written to the ledger only
    after the submission was confirmed on chain.
    """

    def __init__(
        self,
        *,
        gateway: LedgerGateway,
        ledger: IdempotencyLedger,
        registry: HandlerRegistry,
        submitter: RetryingSubmitter,
        agent_address: str,
    ) -> None:
        self.gateway = gateway
        self.ledger = ledger
        self.registry = registry
        self.submitter = submitter
        self.agent_address = agent_address
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    def process_event(self, event: RawEvent) -> ProcessingResult:
        logger.debug(
            "Received %s for task %s (block %d, log %d)",
            event.source_kind.value,
            event.task_id,
            event.block_height,
            event.log_index,
        )
        return self.process_task(event.task_id)

    def process_task(self, task_id: int) -> ProcessingResult:
        """Run one attempt to a terminal state. Never raises."""

        key = str(task_id)
        if self.ledger.is_processed(key):
            logger.info("Task %s already processed. Skipping.", key)
            return ProcessingResult(
                task_id=key,
                state=AttemptState.SKIPPED,
                reason=OutcomeReason.ALREADY_PROCESSED,
            )
        if not self._claim(key):
            logger.info("Task %s is already being processed. Skipping duplicate delivery.", key)
            return ProcessingResult(
                task_id=key,
                state=AttemptState.SKIPPED,
                reason=OutcomeReason.IN_FLIGHT,
            )

        try:
            return self._run_attempt(task_id=int(task_id), key=key)
        except Exception as error:
            logger.exception("Unexpected failure processing task %s", key)
            return ProcessingResult(
                task_id=key,
                state=AttemptState.FAILED,
                reason=OutcomeReason.UNEXPECTED_ERROR,
                detail=f"{type(error).__name__}: {error}",
            )
        finally:
            self._release(key)

    def _run_attempt(self, *, task_id: int, key: str) -> ProcessingResult:
        task = self.gateway.fetch_task(task_id)
        if task is None:
            logger.warning("Task %s not found on ledger. Skipping.", key)
            return _skipped(key, OutcomeReason.TASK_NOT_FOUND)

        rejection = self._validate(task)
        if rejection is not None:
            return _skipped(key, rejection)

        topic = decode_topic(task.topic)
        logger.info("New task assigned: id=%s topic=%s", key, topic)
        handler = self.registry.get(topic)
        if handler is None:
            logger.error('No handler available for topic "%s" (task %s).', topic, key)
            return _skipped(key, OutcomeReason.NO_HANDLER, topic=topic)

        try:
            result = normalize_result(handler.handle(task.payload))
        except Exception as error:
            logger.exception("Handler for topic %s failed on task %s", topic, key)
            return ProcessingResult(
                task_id=key,
                state=AttemptState.FAILED,
                reason=OutcomeReason.HANDLER_FAILED,
                topic=topic,
                detail=f"{type(error).__name__}: {error}",
            )

        logger.info("Task %s handled. Submitting result...", key)
        submission = self.submitter.submit(task_id, result)
        if not submission.accepted or submission.receipt is None:
            return ProcessingResult(
                task_id=key,
                state=AttemptState.FAILED,
                reason=OutcomeReason.SUBMISSION_EXHAUSTED,
                topic=topic,
                detail=submission.error,
            )

        detail: str | None = None
        with self.ledger.transaction():
            self.ledger.mark_processed(key)
            try:
                self.ledger.persist()
            except OSError as error:
                # The submission is final on chain; the mark stays in memory
                # and reaches the store with the next successful persist.
                logger.exception("Task %s submitted but the store could not be written", key)
                detail = f"Store not written: {type(error).__name__}: {error}"
        if detail is None:
            logger.info("Task %s result submitted and recorded as processed.", key)
        return ProcessingResult(
            task_id=key,
            state=AttemptState.COMPLETED,
            topic=topic,
            tx_hash=submission.receipt.tx_hash,
            detail=detail,
        )

    def _validate(self, task: TaskRecord) -> OutcomeReason | None:
        if task.assigned_agent.lower() != self.agent_address.lower():
            logger.warning("Task %s is not assigned to this agent. Ignoring.", task.id)
            return OutcomeReason.NOT_ASSIGNED_TO_AGENT
        if not task.is_assigned:
            logger.warning(
                "Task %s is not in ASSIGNED state (state=%s). Skipping.",
                task.id,
                task.state,
            )
            return OutcomeReason.NOT_IN_ASSIGNED_STATE
        return None

    def _claim(self, key: str) -> bool:
        with self._in_flight_lock:
            if key in self._in_flight:
                return False
            self._in_flight.add(key)
            return True

    def _release(self, key: str) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(key)


def decode_topic(raw: bytes | str) -> str:
    """Decode a NUL-padded 32-byte topic; fall back to its ``0x`` hex form."""

    if isinstance(raw, str):
        text = raw[2:] if raw.startswith(("0x", "0X")) else raw
        try:
            data = bytes.fromhex(text)
        except ValueError:
            return raw
    else:
        data = bytes(raw)

    fallback = "0x" + data.hex()
    if len(data) != TOPIC_WIDTH or data[-1] != 0:
        return fallback
    try:
        return data[: data.index(0)].decode("utf-8")
    except UnicodeDecodeError:
        return fallback


def normalize_result(value: object) -> str:
    """Text passes through unchanged; other values become compact JSON."""

    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _skipped(key: str, reason: OutcomeReason, *, topic: str | None = None) -> ProcessingResult:
    return ProcessingResult(task_id=key, state=AttemptState.SKIPPED, reason=reason, topic=topic)
