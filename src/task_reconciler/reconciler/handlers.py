"""Topic handler registry."""

from __future__ import annotations

import importlib
import logging
from collections.abc import Mapping
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

ECHO_TOPIC = "echo"


@runtime_checkable
class TaskHandler(Protocol):
    """Protocol implemented by topic-specific task logic."""

    def handle(self, payload: str) -> object:
        """Turn a task payload into a result (text or JSON-serialisable value)."""


class EchoHandler:
    """Deterministic handler for smoke runs against a test contract."""

    def handle(self, payload: str) -> object:
        return {"echo": payload}


class HandlerRegistry:
    """Maps decoded topic strings to handler capabilities."""

    def __init__(self) -> None:
        self._handlers: dict[str, TaskHandler] = {}

    def register(self, topic: str, handler: TaskHandler) -> None:
        if not isinstance(handler, TaskHandler):
            raise TypeError(f"Handler for topic {topic!r} must define handle(payload).")
        if topic in self._handlers:
            logger.warning("Replacing handler for topic %r", topic)
        self._handlers[topic] = handler

    def get(self, topic: str) -> TaskHandler | None:
        return self._handlers.get(topic)

    def topics(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, topic: object) -> bool:
        return topic in self._handlers

    @classmethod
    def from_specs(cls, specs: Mapping[str, str], *, include_echo: bool = True) -> HandlerRegistry:
        """Build a registry from ``topic -> "module:attr"`` import specs."""

        registry = cls()
        if include_echo:
            registry.register(ECHO_TOPIC, EchoHandler())
        for topic, target in specs.items():
            registry.register(topic, load_handler(target))
        return registry


def load_handler(target: str) -> TaskHandler:
    """Import ``module:attr``; classes and factories are called without arguments."""

    module_name, _, attr_path = target.partition(":")
    if not module_name or not attr_path:
        raise ValueError(f"Invalid handler target {target!r}. Expected '<module>:<attr>'.")
    try:
        obj: object = importlib.import_module(module_name)
    except ImportError as error:
        raise ValueError(f"Cannot import handler module {module_name!r}: {error}") from error
    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as error:
            raise ValueError(f"Handler target {target!r} has no attribute {part!r}.") from error

    if isinstance(obj, TaskHandler) and not isinstance(obj, type):
        return obj
    if callable(obj):
        handler = obj()
        if isinstance(handler, TaskHandler):
            return handler
    raise ValueError(f"Handler target {target!r} does not provide handle(payload).")
