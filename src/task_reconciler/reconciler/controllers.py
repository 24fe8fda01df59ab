"""Controllers for reconciler CLI commands."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from task_reconciler.config import Settings
from task_reconciler.reconciler.gateway import LedgerGateway
from task_reconciler.reconciler.gateway.web3_gateway import Web3LedgerGateway
from task_reconciler.reconciler.ledger import IdempotencyLedger
from task_reconciler.reconciler.models import (
    AttemptState,
    CatchUpSummary,
    ProcessingResult,
)
from task_reconciler.reconciler.services import ReconcilerRuntime

GatewayFactory = Callable[[Settings], LedgerGateway]


@dataclass(slots=True)
class RunCommand:
    """CLI input for the long-running agent."""

    store_path: Path | None


@dataclass(slots=True)
class CatchUpCommand:
    """CLI input for a one-off reconciliation scan."""

    store_path: Path | None


@dataclass(slots=True)
class ProcessTaskCommand:
    """CLI input for a manual single-task attempt."""

    store_path: Path | None
    task_id: int


@dataclass(slots=True)
class StatusCommand:
    """CLI input for local store inspection."""

    store_path: Path | None
    recent: int = 10


@dataclass(slots=True)
class CatchUpResult:
    """Catch-up summary to render in CLI."""

    lines: list[str]
    success: bool


@dataclass(slots=True)
class ProcessTaskResult:
    """Single-task outcome to render in CLI."""

    lines: list[str]
    success: bool


class ReconcilerCliController:
    """Builds the runtime from environment settings for each CLI command."""

    def __init__(self, gateway_factory: GatewayFactory = Web3LedgerGateway.from_settings) -> None:
        self.gateway_factory = gateway_factory

    def run(self, command: RunCommand) -> list[str]:
        settings = Settings.from_env(store_path=command.store_path)
        settings.validate_for_run()
        runtime = ReconcilerRuntime(settings=settings, gateway=self.gateway_factory(settings))
        summary = runtime.run()
        live = summary.live.outcomes
        lines = _catch_up_lines(summary.catch_up)
        lines.append(
            "Live summary: "
            f"delivered={summary.live.delivered} completed={live.completed} "
            f"skipped={live.skipped} failed={live.failed}",
        )
        if summary.stop_signal:
            lines.append(f"Stopped by {summary.stop_signal}.")
        return lines

    def catch_up(self, command: CatchUpCommand) -> CatchUpResult:
        settings = Settings.from_env(store_path=command.store_path)
        settings.validate_for_run()
        runtime = ReconcilerRuntime(settings=settings, gateway=self.gateway_factory(settings))
        runtime.ledger.load()
        summary = runtime.scanner.catch_up()
        return CatchUpResult(lines=_catch_up_lines(summary), success=summary.error is None)

    def process_task(self, command: ProcessTaskCommand) -> ProcessTaskResult:
        settings = Settings.from_env(store_path=command.store_path)
        settings.validate_for_run()
        runtime = ReconcilerRuntime(settings=settings, gateway=self.gateway_factory(settings))
        runtime.ledger.load()
        result = runtime.processor.process_task(command.task_id)
        return ProcessTaskResult(lines=_result_lines(result), success=not _is_failure(result))

    def status(self, command: StatusCommand) -> list[str]:
        settings = Settings.from_env(store_path=command.store_path)
        ledger = IdempotencyLedger(
            settings.store_path,
            initial_watermark=settings.chain.last_processed_block,
        )
        ledger.load()
        processed = ledger.processed_task_ids
        recent = processed[-command.recent :] if command.recent > 0 else []
        lines = [
            f"Store: {settings.store_path}",
            f"Last processed block: {ledger.watermark}",
            f"Processed tasks: {len(processed)}",
        ]
        if recent:
            lines.append(f"Most recent: {', '.join(recent)}")
        return lines


def _catch_up_lines(summary: CatchUpSummary) -> list[str]:
    if summary.error is not None:
        return [
            f"Catch-up failed from block {summary.from_block}: {summary.error}",
        ]
    if summary.noop:
        return [
            "Catch-up: nothing to do "
            f"(from_block={summary.from_block} chain_height={summary.to_block})",
        ]
    outcomes = summary.outcomes
    lines = [
        "Catch-up summary: "
        f"blocks={summary.from_block}..{summary.to_block} events={summary.events} "
        f"completed={outcomes.completed} skipped={outcomes.skipped} failed={outcomes.failed}",
    ]
    if outcomes.reasons:
        reasons = ", ".join(f"{key}={value}" for key, value in sorted(outcomes.reasons.items()))
        lines.append(f"Outcome reasons: {reasons}")
    return lines


def _result_lines(result: ProcessingResult) -> list[str]:
    line = f"Task {result.task_id}: {result.state.value}"
    if result.reason is not None:
        line += f" ({result.reason.value})"
    lines = [line]
    if result.topic is not None:
        lines.append(f"Topic: {result.topic}")
    if result.tx_hash is not None:
        lines.append(f"Transaction: {result.tx_hash}")
    if result.detail:
        lines.append(f"Detail: {result.detail}")
    return lines


def _is_failure(result: ProcessingResult) -> bool:
    return result.state == AttemptState.FAILED
