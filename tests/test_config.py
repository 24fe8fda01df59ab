from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import allure
import pytest
from fakes import AGENT, CONTRACT, OTHER_AGENT, SIGNER_KEY

from task_reconciler.config import Settings, SubmitSettings, SubscriberSettings

pytestmark = [
    allure.epic("Task Reconciliation"),
    allure.feature("Configuration"),
]


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.store_path == Path("processed_tasks.json")
    assert settings.chain.deployment_block == 0
    assert settings.chain.last_processed_block == 0
    assert settings.submit == SubmitSettings(max_attempts=3, retry_delay_seconds=10.0)
    assert settings.subscriber.workers == 4
    assert settings.handler_specs == {}


def test_from_env_reads_marketplace_variable_names(monkeypatch) -> None:
    monkeypatch.setenv("RPC_URL", "https://rpc.example.com")
    monkeypatch.setenv("CONTRACT_ADDRESS", CONTRACT)
    monkeypatch.setenv("PUBLIC_KEY", AGENT)
    monkeypatch.setenv("PRIVATE_KEY", SIGNER_KEY)
    monkeypatch.setenv("CONTRACT_DEPLOYMENT_BLOCK", "1200")
    monkeypatch.setenv("LAST_PROCESSED_BLOCK", "1500")

    chain = Settings.from_env().chain

    assert chain.rpc_url == "https://rpc.example.com"
    assert chain.contract_address == CONTRACT
    assert chain.agent_address == AGENT
    assert chain.private_key == SIGNER_KEY
    assert chain.deployment_block == 1200
    assert chain.last_processed_block == 1500


def test_prefixed_variables_win_over_marketplace_names(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("RPC_URL", "https://old.example.com")
    monkeypatch.setenv("TASK_RECONCILER_RPC_URL", "https://new.example.com")
    monkeypatch.setenv("TASK_RECONCILER_STORE_PATH", str(tmp_path / "env-store.json"))
    monkeypatch.setenv("TASK_RECONCILER_SUBMIT_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("TASK_RECONCILER_SUBSCRIBER_WORKERS", "8")

    settings = Settings.from_env()

    assert settings.chain.rpc_url == "https://new.example.com"
    assert settings.store_path == tmp_path / "env-store.json"
    assert settings.submit.max_attempts == 5
    assert settings.subscriber.workers == 8
    assert Settings.from_env(store_path=tmp_path / "cli.json").store_path == tmp_path / "cli.json"


def test_from_env_rejects_non_integer_block(monkeypatch) -> None:
    monkeypatch.setenv("LAST_PROCESSED_BLOCK", "latest")

    with pytest.raises(ValueError, match="Invalid integer value for TASK_RECONCILER_LAST"):
        Settings.from_env()


def test_handler_specs_are_parsed(monkeypatch) -> None:
    monkeypatch.setenv(
        "TASK_RECONCILER_HANDLERS",
        "summarize=my_agent.handlers:Summarizer, translate = my_agent.handlers:build ,",
    )

    assert Settings.from_env().handler_specs == {
        "summarize": "my_agent.handlers:Summarizer",
        "translate": "my_agent.handlers:build",
    }


@pytest.mark.parametrize("raw", ["summarize", "summarize=module_only", "=pkg:attr"])
def test_handler_specs_reject_malformed_entries(monkeypatch, raw: str) -> None:
    monkeypatch.setenv("TASK_RECONCILER_HANDLERS", raw)

    with pytest.raises(ValueError, match="Invalid TASK_RECONCILER_HANDLERS entry"):
        Settings.from_env()


def test_validate_for_run_accepts_complete_settings(settings: Settings) -> None:
    settings.validate_for_run()


def test_validate_for_ledger_requires_rpc_url(settings: Settings) -> None:
    settings = replace(settings, chain=replace(settings.chain, rpc_url=""))

    with pytest.raises(ValueError, match="RPC_URL"):
        settings.validate_for_ledger()


def test_validate_for_ledger_rejects_non_http_rpc_url(settings: Settings) -> None:
    settings = replace(settings, chain=replace(settings.chain, rpc_url="ws://127.0.0.1:8546"))

    with pytest.raises(ValueError, match="Invalid RPC URL"):
        settings.validate_for_ledger()


def test_validate_for_ledger_rejects_bad_contract_address(settings: Settings) -> None:
    settings = replace(settings, chain=replace(settings.chain, contract_address="0x1234"))

    with pytest.raises(ValueError, match="Invalid address for TASK_RECONCILER_CONTRACT_ADDRESS"):
        settings.validate_for_ledger()


def test_validate_for_ledger_does_not_need_a_key(settings: Settings) -> None:
    replace(settings, chain=replace(settings.chain, private_key="")).validate_for_ledger()


def test_validate_for_run_requires_private_key(settings: Settings) -> None:
    settings = replace(settings, chain=replace(settings.chain, private_key=""))

    with pytest.raises(ValueError, match="PRIVATE_KEY"):
        settings.validate_for_run()


def test_validate_for_run_rejects_key_of_another_account(settings: Settings) -> None:
    settings = replace(settings, chain=replace(settings.chain, agent_address=OTHER_AGENT))

    with pytest.raises(ValueError, match="does not belong to the agent address"):
        settings.validate_for_run()


def test_validate_for_run_rejects_non_positive_workers(settings: Settings) -> None:
    settings = replace(settings, subscriber=SubscriberSettings(workers=0))

    with pytest.raises(ValueError, match="TASK_RECONCILER_SUBSCRIBER_WORKERS must be > 0"):
        settings.validate_for_run()


def test_private_key_is_hidden_from_repr(settings: Settings) -> None:
    assert SIGNER_KEY not in repr(settings)


def test_marketplace_social_topics_map_through_handler_specs(monkeypatch) -> None:
    monkeypatch.setenv(
        "TASK_RECONCILER_HANDLERS",
        ",".join(
            f"social_{network}=my_agent.social:{network.capitalize()}Handler"
            for network in ("twitter", "instagram", "tiktok", "linkedin")
        ),
    )

    specs = Settings.from_env().handler_specs

    assert sorted(specs) == [
        "social_instagram",
        "social_linkedin",
        "social_tiktok",
        "social_twitter",
    ]
    assert specs["social_tiktok"] == "my_agent.social:TiktokHandler"
