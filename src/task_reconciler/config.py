"""Runtime configuration for the task reconciliation agent."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from eth_account import Account
from web3 import Web3


@dataclass(slots=True)
class ChainSettings:
    """Remote ledger endpoint and agent identity."""

    rpc_url: str = ""
    contract_address: str = ""
    agent_address: str = ""
    private_key: str = field(default="", repr=False)
    deployment_block: int = 0
    last_processed_block: int = 0
    request_timeout_seconds: float = 30.0
    receipt_timeout_seconds: float = 300.0


@dataclass(slots=True)
class SubmitSettings:
    """Result submission retry policy."""

    max_attempts: int = 3
    retry_delay_seconds: float = 10.0


@dataclass(slots=True)
class SubscriberSettings:
    """Live event delivery settings."""

    workers: int = 4
    queue_size: int = 100
    poll_interval_seconds: float = 5.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    store_path: Path = Path("processed_tasks.json")
    chain: ChainSettings = field(default_factory=ChainSettings)
    submit: SubmitSettings = field(default_factory=SubmitSettings)
    subscriber: SubscriberSettings = field(default_factory=SubscriberSettings)
    handler_specs: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, store_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local development.

        Every chain variable falls back to the unprefixed name used by
        existing marketplace agent deployments.
        """

        return cls(
            store_path=store_path
            or Path(os.getenv("TASK_RECONCILER_STORE_PATH", "processed_tasks.json")),
            chain=ChainSettings(
                rpc_url=_env_str("TASK_RECONCILER_RPC_URL", "RPC_URL"),
                contract_address=_env_str(
                    "TASK_RECONCILER_CONTRACT_ADDRESS",
                    "CONTRACT_ADDRESS",
                ),
                agent_address=_env_str("TASK_RECONCILER_AGENT_ADDRESS", "PUBLIC_KEY"),
                private_key=_env_str("TASK_RECONCILER_PRIVATE_KEY", "PRIVATE_KEY"),
                deployment_block=_env_int(
                    "TASK_RECONCILER_DEPLOYMENT_BLOCK",
                    "CONTRACT_DEPLOYMENT_BLOCK",
                    default=0,
                ),
                last_processed_block=_env_int(
                    "TASK_RECONCILER_LAST_PROCESSED_BLOCK",
                    "LAST_PROCESSED_BLOCK",
                    default=0,
                ),
                request_timeout_seconds=float(
                    os.getenv("TASK_RECONCILER_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
                receipt_timeout_seconds=float(
                    os.getenv("TASK_RECONCILER_RECEIPT_TIMEOUT_SECONDS", "300.0"),
                ),
            ),
            submit=SubmitSettings(
                max_attempts=int(os.getenv("TASK_RECONCILER_SUBMIT_MAX_ATTEMPTS", "3")),
                retry_delay_seconds=float(
                    os.getenv("TASK_RECONCILER_SUBMIT_RETRY_DELAY_SECONDS", "10.0"),
                ),
            ),
            subscriber=SubscriberSettings(
                workers=int(os.getenv("TASK_RECONCILER_SUBSCRIBER_WORKERS", "4")),
                queue_size=int(os.getenv("TASK_RECONCILER_SUBSCRIBER_QUEUE_SIZE", "100")),
                poll_interval_seconds=float(
                    os.getenv("TASK_RECONCILER_POLL_INTERVAL_SECONDS", "5.0"),
                ),
            ),
            handler_specs=_collect_handler_specs(),
        )

    def validate_for_ledger(self) -> None:
        """Raise configuration error if read access to the ledger is impossible."""

        if not self.chain.rpc_url:
            raise ValueError("TASK_RECONCILER_RPC_URL (or RPC_URL) is required.")
        _validate_rpc_url(self.chain.rpc_url)
        if not self.chain.contract_address:
            raise ValueError(
                "TASK_RECONCILER_CONTRACT_ADDRESS (or CONTRACT_ADDRESS) is required.",
            )
        _validate_address("TASK_RECONCILER_CONTRACT_ADDRESS", self.chain.contract_address)
        if not self.chain.agent_address:
            raise ValueError("TASK_RECONCILER_AGENT_ADDRESS (or PUBLIC_KEY) is required.")
        _validate_address("TASK_RECONCILER_AGENT_ADDRESS", self.chain.agent_address)
        if self.chain.deployment_block < 0:
            raise ValueError("TASK_RECONCILER_DEPLOYMENT_BLOCK must be >= 0.")
        if self.chain.last_processed_block < 0:
            raise ValueError("TASK_RECONCILER_LAST_PROCESSED_BLOCK must be >= 0.")

    def validate_for_run(self) -> None:
        """Raise configuration error if the agent cannot process and submit tasks."""

        self.validate_for_ledger()
        if not self.chain.private_key:
            raise ValueError("TASK_RECONCILER_PRIVATE_KEY (or PRIVATE_KEY) is required.")
        try:
            signer = Account.from_key(self.chain.private_key).address
        except (ValueError, TypeError) as error:
            raise ValueError("TASK_RECONCILER_PRIVATE_KEY is not a valid private key.") from error
        if signer.lower() != self.chain.agent_address.lower():
            raise ValueError(
                "TASK_RECONCILER_PRIVATE_KEY does not belong to the agent address "
                f"{self.chain.agent_address!r} (derived {signer!r}).",
            )
        if self.submit.max_attempts <= 0:
            raise ValueError("TASK_RECONCILER_SUBMIT_MAX_ATTEMPTS must be > 0.")
        if self.submit.retry_delay_seconds < 0:
            raise ValueError("TASK_RECONCILER_SUBMIT_RETRY_DELAY_SECONDS must be >= 0.")
        if self.subscriber.workers <= 0:
            raise ValueError("TASK_RECONCILER_SUBSCRIBER_WORKERS must be > 0.")
        if self.subscriber.queue_size <= 0:
            raise ValueError("TASK_RECONCILER_SUBSCRIBER_QUEUE_SIZE must be > 0.")
        if self.subscriber.poll_interval_seconds <= 0:
            raise ValueError("TASK_RECONCILER_POLL_INTERVAL_SECONDS must be > 0.")


def _env_str(name: str, fallback: str) -> str:
    return os.getenv(name, os.getenv(fallback, "")).strip()


def _env_int(name: str, fallback: str, *, default: int) -> int:
    raw = os.getenv(name, os.getenv(fallback, "")).strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _collect_handler_specs() -> dict[str, str]:
    raw = os.getenv("TASK_RECONCILER_HANDLERS", "").strip()
    if not raw:
        return {}

    specs: dict[str, str] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "=" not in token:
            raise ValueError(
                "Invalid TASK_RECONCILER_HANDLERS entry: "
                f"{token!r}. Expected format '<topic>=<module>:<attr>'.",
            )
        topic, target = token.split("=", 1)
        topic = topic.strip()
        target = target.strip()
        if not topic or ":" not in target:
            raise ValueError(
                "Invalid TASK_RECONCILER_HANDLERS entry: "
                f"{token!r}. Expected format '<topic>=<module>:<attr>'.",
            )
        specs[topic] = target
    return specs


def _validate_rpc_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid RPC URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _validate_address(name: str, value: str) -> None:
    if not Web3.is_address(value):
        raise ValueError(f"Invalid address for {name}: {value!r}")
