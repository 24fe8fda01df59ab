"""Marketplace contract gateway built on web3.py."""

from __future__ import annotations

import logging
import threading
from typing import Any

from eth_account import Account
from web3 import HTTPProvider, Web3
from web3.exceptions import ContractLogicError

from task_reconciler.config import Settings
from task_reconciler.reconciler.gateway.base import (
    EventCallback,
    LedgerError,
    SubmissionRejectedError,
)
from task_reconciler.reconciler.models import EventKind, RawEvent, TaskRecord, TxReceipt

logger = logging.getLogger(__name__)

_TASK_ID_INPUT = {"indexed": True, "internalType": "uint256", "name": "taskId", "type": "uint256"}
_AGENT_INPUT = {"indexed": True, "internalType": "address", "name": "agent", "type": "address"}

MARKETPLACE_ABI: list[dict[str, Any]] = [
    {
        "anonymous": False,
        "inputs": [_TASK_ID_INPUT, _AGENT_INPUT],
        "name": EventKind.ASSIGNED_BY_CLIENT.value,
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [_TASK_ID_INPUT, _AGENT_INPUT],
        "name": EventKind.ASSIGNED_BY_AGENT.value,
        "type": "event",
    },
    {
        "inputs": [{"internalType": "uint96", "name": "id", "type": "uint96"}],
        "name": "getTask",
        "outputs": [
            {"internalType": "uint96", "name": "id", "type": "uint96"},
            {"internalType": "uint32", "name": "createdAtTs", "type": "uint32"},
            {"internalType": "uint32", "name": "submissionDuration", "type": "uint32"},
            {"internalType": "uint32", "name": "updatedAtTs", "type": "uint32"},
            {"internalType": "uint32", "name": "executionDuration", "type": "uint32"},
            {"internalType": "uint128", "name": "reward", "type": "uint128"},
            {"internalType": "uint128", "name": "validationReward", "type": "uint128"},
            {"internalType": "address", "name": "owner", "type": "address"},
            {"internalType": "address", "name": "assignedAgent", "type": "address"},
            {"internalType": "address", "name": "validator", "type": "address"},
            {"internalType": "bytes32", "name": "topic", "type": "bytes32"},
            {"internalType": "string", "name": "payload", "type": "string"},
            {"internalType": "uint8", "name": "state", "type": "uint8"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint96", "name": "taskId", "type": "uint96"},
            {"internalType": "string", "name": "result", "type": "string"},
        ],
        "name": "submitTask",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# Positions inside the getTask output tuple.
_TASK_ID = 0
_TASK_ASSIGNED_AGENT = 8
_TASK_TOPIC = 10
_TASK_PAYLOAD = 11
_TASK_STATE = 12


class Web3LedgerGateway:
    """Reads tasks and assignment logs, signs and submits results.

    Push delivery is emulated by a daemon thread that polls the chain
    height and fetches the new logs for every registered subscription.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        web3: Web3,
        contract_address: str,
        private_key: str | None = None,
        receipt_timeout_seconds: float = 300.0,
        poll_interval_seconds: float = 5.0,
    ) -> None:
        self.web3 = web3
        self.contract = web3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=MARKETPLACE_ABI,
        )
        self._account = Account.from_key(private_key) if private_key else None
        self.receipt_timeout_seconds = receipt_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._subscriptions: list[tuple[EventKind, str, EventCallback]] = []
        self._next_block: int | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._submit_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> Web3LedgerGateway:
        chain = settings.chain
        web3 = Web3(
            HTTPProvider(
                chain.rpc_url,
                request_kwargs={"timeout": chain.request_timeout_seconds},
            ),
        )
        return cls(
            web3=web3,
            contract_address=chain.contract_address,
            private_key=chain.private_key or None,
            receipt_timeout_seconds=chain.receipt_timeout_seconds,
            poll_interval_seconds=settings.subscriber.poll_interval_seconds,
        )

    def fetch_task(self, task_id: int) -> TaskRecord | None:
        try:
            raw = self.contract.functions.getTask(task_id).call()
        except ContractLogicError as error:
            logger.debug("getTask(%s) reverted: %s", task_id, error)
            return None
        return _task_from_tuple(raw)

    def submit_result(self, task_id: int, result: str) -> TxReceipt:
        if self._account is None:
            raise LedgerError("Cannot submit results without a signing key.")

        # Serialised so concurrent workers never reuse a nonce.
        with self._submit_lock:
            sender = self._account.address
            tx = self.contract.functions.submitTask(task_id, result).build_transaction(
                {
                    "from": sender,
                    "nonce": self.web3.eth.get_transaction_count(sender, "pending"),
                    "chainId": self.web3.eth.chain_id,
                },
            )
            signed = self._account.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)

        tx_hex = Web3.to_hex(tx_hash)
        logger.info("submitTask tx sent (task %s): %s", task_id, tx_hex)
        receipt = self.web3.eth.wait_for_transaction_receipt(
            tx_hash,
            timeout=self.receipt_timeout_seconds,
        )
        if receipt["status"] != 1:
            raise SubmissionRejectedError(f"submitTask reverted for task {task_id}: {tx_hex}")
        logger.info(
            "submitTask tx confirmed for task %s in block %s",
            task_id,
            receipt["blockNumber"],
        )
        return TxReceipt(tx_hash=tx_hex, block_number=receipt["blockNumber"])

    def query_events(
        self,
        kind: EventKind,
        agent: str,
        from_block: int,
        to_block: int,
    ) -> list[RawEvent]:
        event_type = getattr(self.contract.events, kind.value)
        logs = event_type().get_logs(
            from_block=from_block,
            to_block=to_block,
            argument_filters={"agent": Web3.to_checksum_address(agent)},
        )
        return [_event_from_log(entry, kind) for entry in logs]

    def current_height(self) -> int:
        return int(self.web3.eth.block_number)

    def on_event(self, kind: EventKind, agent: str, callback: EventCallback) -> None:
        self._subscriptions.append((kind, agent, callback))

    def start(self, from_block: int) -> None:
        if self._thread is not None:
            return
        self._next_block = from_block
        self._stop.clear()
        self._thread = threading.Thread(target=self._poll_loop, daemon=True, name="ledger-poller")
        self._thread.start()
        logger.info("Event polling started from block %d", from_block)

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=self.poll_interval_seconds + 15)
        self._thread = None
        logger.info("Event polling stopped")

    def poll_once(self) -> int:
        """Deliver logs between the last polled block and the chain head.

        Returns the number of delivered events. The cursor only moves after
        every subscription was queried, so a partial failure redelivers.
        """

        if self._next_block is None:
            raise LedgerError("poll_once() called before start().")
        height = self.current_height()
        if height < self._next_block:
            return 0

        pending: list[tuple[RawEvent, EventCallback]] = []
        for kind, agent, callback in self._subscriptions:
            for event in self.query_events(kind, agent, self._next_block, height):
                pending.append((event, callback))
        pending.sort(key=lambda item: item[0].sort_key)
        self._next_block = height + 1

        for event, callback in pending:
            try:
                callback(event)
            except Exception:
                logger.exception("Event callback failed for task %s", event.task_id)
        return len(pending)

    def _poll_loop(self) -> None:
        while not self._stop.wait(timeout=self.poll_interval_seconds):
            try:
                self.poll_once()
            except Exception:
                logger.exception(
                    "Event polling failed, retrying in %.1fs",
                    self.poll_interval_seconds,
                )


def _task_from_tuple(raw: Any) -> TaskRecord | None:
    try:
        task_id = int(raw[_TASK_ID])
        topic = bytes(raw[_TASK_TOPIC])
        record = TaskRecord(
            id=task_id,
            assigned_agent=str(raw[_TASK_ASSIGNED_AGENT]),
            topic=topic,
            payload=str(raw[_TASK_PAYLOAD]),
            state=int(raw[_TASK_STATE]),
        )
    except (IndexError, TypeError, ValueError) as error:
        raise LedgerError(f"Unexpected getTask output: {raw!r}") from error
    if record.id == 0:
        return None
    return record


def _event_from_log(entry: Any, kind: EventKind) -> RawEvent:
    args = entry["args"]
    return RawEvent(
        task_id=int(args["taskId"]),
        emitting_agent=str(args["agent"]),
        block_height=int(entry["blockNumber"]),
        log_index=int(entry["logIndex"]),
        source_kind=kind,
    )
