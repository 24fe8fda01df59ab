"""Domain models for task reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class TaskState(IntEnum):
    """Task lifecycle states as stored by the marketplace contract."""

    NULL = 0
    CREATED = 1
    ASSIGNED = 2
    SUBMITTED = 3
    VALIDATED = 4


class EventKind(str, Enum):
    """Assignment events the agent listens to, keyed by contract event name."""

    ASSIGNED_BY_CLIENT = "AssignTaskByClient"
    ASSIGNED_BY_AGENT = "AssignTaskByAgent"


class AttemptState(str, Enum):
    """States of a single task-processing attempt."""

    RECEIVED = "received"
    FETCHED = "fetched"
    VALIDATED = "validated"
    HANDLED = "handled"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class OutcomeReason(str, Enum):
    """Why an attempt ended in SKIPPED or FAILED."""

    ALREADY_PROCESSED = "already_processed"
    IN_FLIGHT = "in_flight"
    TASK_NOT_FOUND = "task_not_found"
    NOT_ASSIGNED_TO_AGENT = "not_assigned_to_agent"
    NOT_IN_ASSIGNED_STATE = "not_in_assigned_state"
    NO_HANDLER = "no_handler"
    HANDLER_FAILED = "handler_failed"
    SUBMISSION_EXHAUSTED = "submission_exhausted"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass(slots=True, frozen=True)
class TaskRecord:
    """Read-only snapshot of a task, fetched fresh for every attempt."""

    id: int
    assigned_agent: str
    topic: bytes
    payload: str
    state: int

    @property
    def is_assigned(self) -> bool:
        return self.state == TaskState.ASSIGNED


@dataclass(slots=True, frozen=True)
class RawEvent:
    """One assignment log entry as returned by the ledger."""

    task_id: int
    emitting_agent: str
    block_height: int
    log_index: int
    source_kind: EventKind

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_height, self.log_index)


@dataclass(slots=True, frozen=True)
class TxReceipt:
    """Confirmed submission transaction."""

    tx_hash: str
    block_number: int | None = None


@dataclass(slots=True)
class ProcessingResult:
    """Terminal outcome of one processing attempt."""

    task_id: str
    state: AttemptState
    reason: OutcomeReason | None = None
    topic: str | None = None
    tx_hash: str | None = None
    detail: str | None = None

    @property
    def completed(self) -> bool:
        return self.state == AttemptState.COMPLETED


@dataclass(slots=True)
class OutcomeCounters:
    """Aggregate attempt counters for CLI reporting."""

    completed: int = 0
    skipped: int = 0
    failed: int = 0
    reasons: dict[str, int] = field(default_factory=dict)

    def record(self, result: ProcessingResult) -> None:
        if result.state == AttemptState.COMPLETED:
            self.completed += 1
        elif result.state == AttemptState.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
        if result.reason is not None:
            key = result.reason.value
            self.reasons[key] = self.reasons.get(key, 0) + 1


@dataclass(slots=True)
class CatchUpSummary:
    """Result of one reconciliation scan."""

    from_block: int
    to_block: int | None = None
    events: int = 0
    noop: bool = False
    error: str | None = None
    outcomes: OutcomeCounters = field(default_factory=OutcomeCounters)
