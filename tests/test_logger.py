import json
import logging

from txpool.logger import (
    ContextFilter,
    CustomFormatter,
    JSONFormatter,
    LoggingContext,
    setup_logger,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("txpool.test", logging.INFO, __file__, 10, msg, None, None, func="fn")
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_setup_logger_is_idempotent():
    logger = setup_logger("txpool.test.idempotent")
    again = setup_logger("txpool.test.idempotent")

    assert logger is again
    assert len([h for h in logger.handlers if isinstance(h, logging.StreamHandler)]) == 1
    assert len([f for f in logger.filters if isinstance(f, ContextFilter)]) == 1
    assert logger.propagate is False


def test_log_level_from_environment(monkeypatch):
    monkeypatch.setenv("TXPOOL_LOG_LEVEL", "warning")

    logger = setup_logger("txpool.test.level")

    assert logger.level == logging.WARNING


def test_logging_context_adds_fields():
    logger = logging.getLogger("txpool.test.context")
    record = _record()

    with LoggingContext(logger, pool="orders", conn="pool-1"):
        ContextFilter().filter(record)

    assert record.pool == "orders"
    assert record.conn == "pool-1"
    plain = _record()
    ContextFilter().filter(plain)
    assert not hasattr(plain, "pool")


def test_custom_formatter_renders_extra_fields():
    text = CustomFormatter(include_location=True).format(_record("line one\nline two", pool="orders"))

    assert "[INFO]" in text
    assert "Message: line one" in text
    assert "line two" in text
    assert "pool: orders" in text
    assert "(test_logger:fn:10)" in text


def test_json_formatter():
    payload = json.loads(JSONFormatter().format(_record("queued", waiting=2)))

    assert payload["level"] == "INFO"
    assert payload["message"] == "queued"
    assert payload["extra"] == {"waiting": 2}
    assert payload["location"]["line"] == 10
