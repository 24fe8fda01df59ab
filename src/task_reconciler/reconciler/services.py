"""Wiring of the reconciliation components and the long-running agent loop."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from task_reconciler.config import Settings
from task_reconciler.reconciler.gateway import LedgerGateway
from task_reconciler.reconciler.handlers import HandlerRegistry
from task_reconciler.reconciler.ledger import IdempotencyLedger
from task_reconciler.reconciler.models import CatchUpSummary
from task_reconciler.reconciler.processor import TaskProcessor
from task_reconciler.reconciler.scanner import ReconciliationScanner
from task_reconciler.reconciler.submitter import RetryingSubmitter
from task_reconciler.reconciler.subscriber import LiveSubscriber, SubscriberStats

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AgentRunSummary:
    """Catch-up result plus live delivery counters for CLI reporting."""

    catch_up: CatchUpSummary
    live: SubscriberStats
    stop_signal: str | None = None


class ReconcilerRuntime:
    """Owns one instance of every component, built from a single Settings object."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        gateway: LedgerGateway,
        registry: HandlerRegistry | None = None,
        ledger: IdempotencyLedger | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        chain = settings.chain
        self.settings = settings
        self.gateway = gateway
        self.registry = registry or HandlerRegistry.from_specs(settings.handler_specs)
        self.ledger = ledger or IdempotencyLedger(
            settings.store_path,
            initial_watermark=chain.last_processed_block,
        )
        submitter_kwargs = {} if sleep is None else {"sleep": sleep}
        self.submitter = RetryingSubmitter(
            gateway=gateway,
            max_attempts=settings.submit.max_attempts,
            retry_delay_seconds=settings.submit.retry_delay_seconds,
            **submitter_kwargs,
        )
        self.processor = TaskProcessor(
            gateway=gateway,
            ledger=self.ledger,
            registry=self.registry,
            submitter=self.submitter,
            agent_address=chain.agent_address,
        )
        self.scanner = ReconciliationScanner(
            gateway=gateway,
            ledger=self.ledger,
            processor=self.processor,
            agent_address=chain.agent_address,
            deployment_block=chain.deployment_block,
        )
        self.subscriber = LiveSubscriber(
            gateway=gateway,
            processor=self.processor,
            agent_address=chain.agent_address,
            workers=settings.subscriber.workers,
            queue_size=settings.subscriber.queue_size,
        )
        self._stop = threading.Event()
        self._stop_signal_name: str | None = None

    def run(self, *, stop_event: threading.Event | None = None) -> AgentRunSummary:
        """Catch up, then listen until a stop signal arrives.

        In-flight and already queued events are processed to a terminal
        state before returning.
        """

        stop = stop_event or self._stop
        logger.info("Starting task reconciler for agent %s", self.settings.chain.agent_address)
        logger.info("Handlers registered for topics: %s", ", ".join(self.registry.topics()))
        self.ledger.load()
        summary = self.scanner.catch_up()

        self.subscriber.start()
        self.gateway.start(self.scanner.start_block())
        logger.info("Initialization complete. Waiting for task assignments...")
        try:
            with self._signal_handlers(stop):
                while not stop.wait(timeout=0.5):
                    pass
        finally:
            self.gateway.stop()
            self.subscriber.stop(drain=True)
        return AgentRunSummary(
            catch_up=summary,
            live=self.subscriber.stats,
            stop_signal=self._stop_signal_name,
        )

    def request_stop(self, *, signal_name: str | None = None) -> None:
        if signal_name is not None and self._stop_signal_name is None:
            self._stop_signal_name = signal_name
            logger.info("Received %s, shutting down after queued events", signal_name)
        self._stop.set()

    @contextmanager
    def _signal_handlers(self, stop: threading.Event) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)
            stop.set()

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
