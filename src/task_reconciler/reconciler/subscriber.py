"""Live assignment events fed through bounded per-worker queues."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field

from task_reconciler.reconciler.gateway import LedgerGateway
from task_reconciler.reconciler.models import EventKind, OutcomeCounters, RawEvent
from task_reconciler.reconciler.processor import TaskProcessor

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(slots=True)
class SubscriberStats:
    """Live delivery counters."""

    delivered: int = 0
    outcomes: OutcomeCounters = field(default_factory=OutcomeCounters)


class LiveSubscriber:
    """Routes pushed events to worker threads by task id.

    ``task_id % workers`` picks the queue, so all deliveries of one task
    are handled one after another on the same worker while different
    tasks proceed in parallel. Queues are bounded: a full queue blocks the
    delivering thread instead of dropping the event.
    """

    def __init__(
        self,
        *,
        gateway: LedgerGateway,
        processor: TaskProcessor,
        agent_address: str,
        workers: int = 4,
        queue_size: int = 100,
    ) -> None:
        if workers <= 0:
            raise ValueError("workers must be > 0")
        self.gateway = gateway
        self.processor = processor
        self.agent_address = agent_address
        self._queues: list[queue.Queue[object]] = [
            queue.Queue(maxsize=queue_size) for _ in range(workers)
        ]
        self._threads: list[threading.Thread] = []
        self._stats_lock = threading.Lock()
        self._delivered = 0
        self._outcomes = OutcomeCounters()
        self._registered = False

    def start(self) -> None:
        if self._threads:
            return
        for index, work_queue in enumerate(self._queues):
            thread = threading.Thread(
                target=self._worker_loop,
                args=(work_queue,),
                daemon=True,
                name=f"live-worker-{index}",
            )
            thread.start()
            self._threads.append(thread)
        if not self._registered:
            for kind in EventKind:
                self.gateway.on_event(kind, self.agent_address, self.deliver)
            self._registered = True
        logger.info(
            "Event listeners subscribed for %s with %d workers.",
            ", ".join(kind.value for kind in EventKind),
            len(self._threads),
        )

    def deliver(self, event: RawEvent) -> None:
        """Callback handed to the gateway; enqueues without processing."""

        with self._stats_lock:
            self._delivered += 1
        self._queues[event.task_id % len(self._queues)].put(event)

    def stop(self, *, drain: bool = True, timeout: float | None = None) -> None:
        """Stop workers; with ``drain`` every queued event is processed first."""

        if not self._threads:
            return
        for work_queue in self._queues:
            if not drain:
                _clear(work_queue)
            work_queue.put(_STOP)
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Live subscriber stopped")

    @property
    def stats(self) -> SubscriberStats:
        with self._stats_lock:
            outcomes = OutcomeCounters(
                completed=self._outcomes.completed,
                skipped=self._outcomes.skipped,
                failed=self._outcomes.failed,
                reasons=dict(self._outcomes.reasons),
            )
            return SubscriberStats(delivered=self._delivered, outcomes=outcomes)

    def _worker_loop(self, work_queue: queue.Queue[object]) -> None:
        while True:
            item = work_queue.get()
            try:
                if item is _STOP:
                    return
                if not isinstance(item, RawEvent):
                    logger.warning("Dropping unexpected queue item %r", item)
                    continue
                try:
                    result = self.processor.process_event(item)
                except Exception:
                    logger.exception("Live processing error for task %s", item.task_id)
                    continue
                with self._stats_lock:
                    self._outcomes.record(result)
            finally:
                work_queue.task_done()


def _clear(work_queue: queue.Queue[object]) -> None:
    while True:
        try:
            work_queue.get_nowait()
        except queue.Empty:
            return
        work_queue.task_done()
