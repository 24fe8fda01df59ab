"""Durable idempotency ledger: processing watermark and completed task ids."""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class IdempotencyLedger:
    """Watermark plus processed-task set, persisted as one JSON document.

    The in-memory state is only mutated under ``transaction()`` (or the
    individual mutators, which take the same re-entrant lock). ``persist()``
    holds an exclusive lock on a sibling ``.lock`` file, merges whatever
    another process wrote since (union of task ids, larger watermark) and
    then writes the complete snapshot. A ``run`` agent and a manual
    ``process-task`` on the same store therefore never drop each other's
    completions.
    """

    def __init__(self, path: Path, *, initial_watermark: int = 0) -> None:
        self.path = path
        self.lock_path = path.with_name(f"{path.name}.lock")
        self._lock = threading.RLock()
        self._watermark = max(0, initial_watermark)
        self._processed: list[str] = []
        self._processed_set: set[str] = set()

    def load(self) -> None:
        """Read the store once at startup; missing or malformed files fall back to defaults."""

        with self._lock:
            if not self.path.exists():
                logger.info("No store at %s, starting fresh", self.path)
                return
            data = self._read_store()
            if data is None:
                return
            self._merge(data)
            logger.info(
                "Loaded store: %d tasks processed previously, last block %d",
                len(self._processed),
                self._watermark,
            )

    @property
    def watermark(self) -> int:
        with self._lock:
            return self._watermark

    @property
    def processed_task_ids(self) -> list[str]:
        with self._lock:
            return list(self._processed)

    def is_processed(self, task_id: int | str) -> bool:
        with self._lock:
            return _normalize_task_id(task_id) in self._processed_set

    def mark_processed(self, task_id: int | str) -> None:
        with self._lock:
            self._add(_normalize_task_id(task_id))

    def advance_watermark(self, block: int) -> None:
        """Move the watermark forward; smaller or equal heights are ignored."""

        with self._lock:
            if block <= self._watermark:
                return
            self._watermark = block

    def persist(self) -> None:
        """Merge the store written by other processes, then overwrite it with the union."""

        with self._lock, _exclusive_file_lock(self.lock_path):
            data = self._read_store()
            if data is not None:
                self._merge(data)
            _atomic_write_json(self.path, self._snapshot())

    @contextmanager
    def transaction(self) -> Iterator[IdempotencyLedger]:
        """Hold the store lock across a mutate-then-persist sequence."""

        with self._lock:
            yield self

    def _read_store(self) -> dict[str, Any] | None:
        try:
            raw = self.path.read_text("utf-8")
        except FileNotFoundError:
            return None
        except OSError as error:
            logger.warning("Ignoring unreadable store %s: %s", self.path, error)
            return None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as error:
            logger.warning("Ignoring malformed store %s: %s", self.path, error)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed store %s: expected an object", self.path)
            return None
        return data

    def _merge(self, data: dict[str, Any]) -> None:
        stored_block = data.get("lastProcessedBlock")
        if isinstance(stored_block, int) and not isinstance(stored_block, bool):
            self._watermark = max(self._watermark, stored_block)
        elif stored_block is not None:
            logger.warning("Ignoring invalid lastProcessedBlock %r in %s", stored_block, self.path)

        task_ids = data.get("processedTaskIds")
        if not isinstance(task_ids, list):
            if task_ids is not None:
                logger.warning("Ignoring invalid processedTaskIds in %s", self.path)
            return

        # Ids already on disk keep their position; ids only known here go after them.
        merged: list[str] = []
        seen: set[str] = set()
        for task_id in [*(_normalize_task_id(item) for item in task_ids), *self._processed]:
            if task_id in seen:
                continue
            seen.add(task_id)
            merged.append(task_id)
        self._processed = merged
        self._processed_set = seen

    def _add(self, task_id: str) -> None:
        if task_id in self._processed_set:
            return
        self._processed_set.add(task_id)
        self._processed.append(task_id)

    def _snapshot(self) -> dict[str, Any]:
        return {
            "lastProcessedBlock": self._watermark,
            "processedTaskIds": list(self._processed),
        }


def _normalize_task_id(task_id: int | str) -> str:
    return str(task_id).strip()


@contextmanager
def _exclusive_file_lock(lock_path: Path) -> Iterator[None]:
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False, indent=2))
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
