"""Shared test fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from fakes import AGENT, CONTRACT, SIGNER_KEY, FakeLedgerGateway, RecordingSleep

from task_reconciler.config import ChainSettings, Settings, SubmitSettings, SubscriberSettings
from task_reconciler.reconciler.handlers import HandlerRegistry
from task_reconciler.reconciler.ledger import IdempotencyLedger
from task_reconciler.reconciler.processor import TaskProcessor
from task_reconciler.reconciler.submitter import RetryingSubmitter

_ENV_NAMES = (
    "RPC_URL",
    "CONTRACT_ADDRESS",
    "PUBLIC_KEY",
    "PRIVATE_KEY",
    "CONTRACT_DEPLOYMENT_BLOCK",
    "LAST_PROCESSED_BLOCK",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer shells and .env files from leaking into settings."""
    for name in list(os.environ):
        if name.startswith("TASK_RECONCILER_") or name in _ENV_NAMES:
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "processed_tasks.json"


@pytest.fixture()
def gateway() -> FakeLedgerGateway:
    return FakeLedgerGateway(height=10)


@pytest.fixture()
def ledger(store_path: Path) -> IdempotencyLedger:
    return IdempotencyLedger(store_path)


@pytest.fixture()
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def registry() -> HandlerRegistry:
    return HandlerRegistry.from_specs({})


@pytest.fixture()
def processor(gateway, ledger, registry, sleep) -> TaskProcessor:
    return TaskProcessor(
        gateway=gateway,
        ledger=ledger,
        registry=registry,
        submitter=RetryingSubmitter(gateway=gateway, sleep=sleep),
        agent_address=AGENT,
    )


@pytest.fixture()
def settings(store_path: Path) -> Settings:
    return Settings(
        store_path=store_path,
        chain=ChainSettings(
            rpc_url="http://127.0.0.1:8545",
            contract_address=CONTRACT,
            agent_address=AGENT,
            private_key=SIGNER_KEY,
        ),
        submit=SubmitSettings(retry_delay_seconds=0.0),
        subscriber=SubscriberSettings(workers=2, queue_size=10),
    )
