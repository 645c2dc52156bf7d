from __future__ import annotations

import json
import logging

from meterhub.utils.logging import ConsoleFormatter, JsonFormatter, _json_formatter, configure_logging

EXPECTED_READINGS = 30
EXPECTED_OBSERVERS = 2


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_standard_extra_fields() -> None:
    record = _record()
    record.readings = EXPECTED_READINGS
    record.device_id = "EMS-SIMULATOR-001"

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "test.logger"
    assert payload["message"] == "hello"
    assert payload["readings"] == EXPECTED_READINGS
    assert payload["device_id"] == "EMS-SIMULATOR-001"
    assert "pathname" not in payload


def test_json_formatter_supports_legacy_nested_extra_field() -> None:
    record = _record()
    record.extra = {"observers": EXPECTED_OBSERVERS}

    payload = json.loads(_json_formatter(record))

    assert payload["observers"] == EXPECTED_OBSERVERS


def test_json_formatter_stringifies_unserializable_values() -> None:
    record = _record()
    record.window = object()

    payload = json.loads(JsonFormatter().format(record))

    assert payload["window"].startswith("<object object")


def test_configure_logging_quiets_websockets() -> None:
    configure_logging(level="DEBUG", json_logs=True)

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("websockets").level == logging.WARNING
    assert isinstance(logging.getLogger().handlers[0].formatter, JsonFormatter)


def test_console_formatter_appends_context() -> None:
    record = _record("reading accepted")
    record.device_id = "EMS-1"
    record.sequence = 3

    line = ConsoleFormatter().format(record)

    assert line.endswith("| INFO | test.logger | reading accepted | device_id=EMS-1 sequence=3")


def test_console_formatter_without_context_is_plain() -> None:
    line = ConsoleFormatter().format(_record())

    assert line.endswith("| hello")


def test_configure_logging_without_force_keeps_handlers() -> None:
    configure_logging(level="INFO", json_logs=True)
    handler = logging.getLogger().handlers[0]

    configure_logging(level="WARNING", json_logs=False, force=False)

    assert logging.getLogger().handlers[0] is handler
    assert logging.getLogger().level == logging.WARNING
