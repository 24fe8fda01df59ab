"""Fixed-delay retry around result submission."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from task_reconciler.reconciler.gateway import LedgerGateway
from task_reconciler.reconciler.models import TxReceipt

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 10.0


class SubmissionStatus(str, Enum):
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


@dataclass(slots=True)
class SubmitResult:
    """Submission outcome after all attempts."""

    status: SubmissionStatus
    attempts: int
    receipt: TxReceipt | None = None
    error: str | None = None

    @property
    def accepted(self) -> bool:
        return self.status == SubmissionStatus.ACCEPTED


class RetryingSubmitter:
    """Submits a result, waiting a fixed delay between failed attempts.

    The delay does not grow and carries no jitter; there is also no
    overall deadline. A task whose submission is exhausted stays
    unprocessed and is picked up again on its next delivery.
    """

    def __init__(
        self,
        *,
        gateway: LedgerGateway,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def submit(self, task_id: int, result: str) -> SubmitResult:
        last_error: str | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                receipt = self.gateway.submit_result(task_id, result)
            except Exception as error:  # noqa: BLE001
                last_error = f"{type(error).__name__}: {error}"
                if attempt < self.max_attempts:
                    logger.warning(
                        "submitTask failed for task %s (attempt %d/%d). Retrying in %.0fs: %s",
                        task_id,
                        attempt,
                        self.max_attempts,
                        self.retry_delay_seconds,
                        last_error,
                    )
                    self._sleep(self.retry_delay_seconds)
                continue
            return SubmitResult(
                status=SubmissionStatus.ACCEPTED,
                attempts=attempt,
                receipt=receipt,
            )

        logger.error(
            "Failed to submit result for task %s after %d attempts: %s",
            task_id,
            self.max_attempts,
            last_error,
        )
        return SubmitResult(
            status=SubmissionStatus.EXHAUSTED,
            attempts=self.max_attempts,
            error=last_error,
        )
