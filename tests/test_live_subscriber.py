from __future__ import annotations

import threading

import allure
import pytest
from fakes import AGENT, FakeLedgerGateway, RecordingHandler, make_event, make_task

from task_reconciler.reconciler.handlers import HandlerRegistry
from task_reconciler.reconciler.ledger import IdempotencyLedger
from task_reconciler.reconciler.models import EventKind, OutcomeCounters
from task_reconciler.reconciler.processor import TaskProcessor
from task_reconciler.reconciler.subscriber import LiveSubscriber, SubscriberStats

pytestmark = [
    allure.epic("Task Reconciliation"),
    allure.feature("Live Delivery"),
]


def _subscriber(
    gateway: FakeLedgerGateway,
    processor: TaskProcessor,
    *,
    workers: int = 4,
    queue_size: int = 100,
) -> LiveSubscriber:
    return LiveSubscriber(
        gateway=gateway,
        processor=processor,
        agent_address=AGENT,
        workers=workers,
        queue_size=queue_size,
    )


def test_start_subscribes_to_both_assignment_events_once(
    gateway: FakeLedgerGateway,
    processor: TaskProcessor,
) -> None:
    subscriber = _subscriber(gateway, processor)
    subscriber.start()
    subscriber.stop()
    subscriber.start()
    subscriber.stop()

    assert sorted(kind.value for kind, _, _ in gateway.subscriptions) == sorted(
        kind.value for kind in EventKind
    )
    assert {agent for _, agent, _ in gateway.subscriptions} == {AGENT}


def test_queued_events_are_drained_on_stop(
    gateway: FakeLedgerGateway,
    processor: TaskProcessor,
    ledger: IdempotencyLedger,
) -> None:
    for task_id in range(1, 7):
        gateway.add_task(make_task(task_id))
    subscriber = _subscriber(gateway, processor, workers=3, queue_size=2)
    subscriber.start()

    for task_id in range(1, 7):
        gateway.emit(make_event(task_id, block=20 + task_id))
    subscriber.stop(drain=True, timeout=10)

    stats = subscriber.stats
    assert stats.delivered == 6
    assert stats.outcomes.completed == 6
    assert sorted(ledger.processed_task_ids) == [str(task_id) for task_id in range(1, 7)]


def test_duplicate_deliveries_submit_once(
    gateway: FakeLedgerGateway,
    processor: TaskProcessor,
) -> None:
    gateway.add_task(make_task(5))
    subscriber = _subscriber(gateway, processor)
    subscriber.start()

    gateway.emit(make_event(5, block=11, kind=EventKind.ASSIGNED_BY_CLIENT))
    gateway.emit(make_event(5, block=12, kind=EventKind.ASSIGNED_BY_AGENT))
    subscriber.stop(timeout=10)

    stats = subscriber.stats
    assert stats.outcomes.completed == 1
    assert stats.outcomes.reasons == {"already_processed": 1}
    assert [task_id for task_id, _ in gateway.submissions] == [5]


def test_different_tasks_are_processed_concurrently(
    gateway: FakeLedgerGateway,
    processor: TaskProcessor,
    registry: HandlerRegistry,
) -> None:
    rendezvous = threading.Barrier(2, timeout=5)

    class RendezvousHandler:
        def handle(self, payload: str) -> object:
            rendezvous.wait()
            return payload

    registry.register("echo", RendezvousHandler())
    gateway.add_task(make_task(1))
    gateway.add_task(make_task(2))
    subscriber = _subscriber(gateway, processor, workers=2)
    subscriber.start()

    gateway.emit(make_event(1, block=11))
    gateway.emit(make_event(2, block=11, log_index=1))
    subscriber.stop(timeout=10)

    stats = subscriber.stats
    assert stats.outcomes.completed == 2


def test_stop_without_drain_discards_queued_events(
    gateway: FakeLedgerGateway,
    processor: TaskProcessor,
    registry: HandlerRegistry,
) -> None:
    release = threading.Event()
    entered = threading.Event()

    class BlockingHandler:
        def handle(self, payload: str) -> object:
            entered.set()
            release.wait(timeout=5)
            return payload

    registry.register("echo", BlockingHandler())
    for task_id in (2, 4, 6):
        gateway.add_task(make_task(task_id))
    subscriber = _subscriber(gateway, processor, workers=1)
    subscriber.start()

    gateway.emit(make_event(2, block=11))
    assert entered.wait(timeout=5)
    gateway.emit(make_event(4, block=12))
    gateway.emit(make_event(6, block=13))

    releaser = threading.Timer(0.2, release.set)
    releaser.start()
    subscriber.stop(drain=False, timeout=10)
    releaser.join()

    assert [task_id for task_id, _ in gateway.submissions] == [2]


def test_processing_errors_do_not_kill_the_worker(
    gateway: FakeLedgerGateway,
    processor: TaskProcessor,
    registry: HandlerRegistry,
) -> None:
    registry.register("broken", RecordingHandler(error=ValueError("bad payload")))
    gateway.add_task(make_task(1, topic="broken"))
    gateway.add_task(make_task(2))
    subscriber = _subscriber(gateway, processor, workers=1)
    subscriber.start()

    gateway.emit(make_event(1, block=11))
    gateway.emit(make_event(2, block=12))
    subscriber.stop(timeout=10)

    stats = subscriber.stats
    assert stats.outcomes.failed == 1
    assert stats.outcomes.completed == 1


def test_rejects_non_positive_worker_count(
    gateway: FakeLedgerGateway,
    processor: TaskProcessor,
) -> None:
    with pytest.raises(ValueError, match="workers must be > 0"):
        _subscriber(gateway, processor, workers=0)


def test_stats_start_with_empty_counters(
    gateway: FakeLedgerGateway,
    processor: TaskProcessor,
) -> None:
    stats = _subscriber(gateway, processor).stats

    assert stats == SubscriberStats(delivered=0, outcomes=OutcomeCounters())
    assert SubscriberStats().outcomes.completed == 0
