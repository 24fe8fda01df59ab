from __future__ import annotations

import allure
import pytest
from fakes import RecordingHandler

from task_reconciler.reconciler.handlers import (
    ECHO_TOPIC,
    EchoHandler,
    HandlerRegistry,
    load_handler,
)

pytestmark = [
    allure.epic("Task Reconciliation"),
    allure.feature("Handler Registry"),
]

MODULE_LEVEL_HANDLER = RecordingHandler("static")


def build_handler() -> RecordingHandler:
    return RecordingHandler("built")


def test_default_registry_serves_echo_topic() -> None:
    registry = HandlerRegistry.from_specs({})

    handler = registry.get(ECHO_TOPIC)

    assert isinstance(handler, EchoHandler)
    assert handler.handle("hello") == {"echo": "hello"}
    assert registry.topics() == ["echo"]
    assert "echo" in registry
    assert registry.get("unknown_topic") is None


def test_echo_can_be_left_out() -> None:
    assert HandlerRegistry.from_specs({}, include_echo=False).topics() == []


def test_from_specs_loads_instances_classes_and_factories() -> None:
    registry = HandlerRegistry.from_specs(
        {
            "static": f"{__name__}:MODULE_LEVEL_HANDLER",
            "factory": f"{__name__}:build_handler",
            "class": "fakes:RecordingHandler",
        },
    )

    assert registry.get("static") is MODULE_LEVEL_HANDLER
    assert registry.get("factory").handle("x") == "built"
    assert registry.get("class").handle("x") == {"handled": "x"}
    assert registry.topics() == ["class", "echo", "factory", "static"]


def test_register_rejects_objects_without_handle() -> None:
    registry = HandlerRegistry()

    with pytest.raises(TypeError, match="must define handle"):
        registry.register("bad", object())


def test_register_replaces_existing_handler(caplog) -> None:
    registry = HandlerRegistry()
    first = RecordingHandler("first")
    second = RecordingHandler("second")
    registry.register("summarize", first)

    with caplog.at_level("WARNING"):
        registry.register("summarize", second)

    assert registry.get("summarize") is second
    assert "Replacing handler" in caplog.text


@pytest.mark.parametrize(
    ("target", "message"),
    [
        ("no_colon", "Expected '<module>:<attr>'"),
        ("missing_module_xyz:Handler", "Cannot import handler module"),
        (f"{__name__}:does_not_exist", "has no attribute"),
        ("math:pi", "does not provide handle"),
    ],
)
def test_load_handler_errors(target: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        load_handler(target)
