import json
import logging

from app.core.logging import JsonFormatter


def _record(msg="payment_status_changed", **extra):
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def test_whitelisted_extra_fields(self):
        line = JsonFormatter().format(
            _record(order_id="o-1", old_status="pending", new_status="settlement", secret="hidden")
        )
        payload = json.loads(line)
        assert payload["message"] == "payment_status_changed"
        assert payload["level"] == "INFO"
        assert payload["order_id"] == "o-1"
        assert payload["new_status"] == "settlement"
        assert "secret" not in payload

    def test_non_json_values_are_stringified(self):
        from decimal import Decimal

        payload = json.loads(JsonFormatter().format(_record(count=Decimal("3"))))
        assert payload["count"] == "3"

    def test_exception_info(self):
        try:
            raise ValueError("boom")
        except ValueError:
            import sys

            record = logging.LogRecord("app.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
        payload = json.loads(JsonFormatter().format(record))
        assert "ValueError: boom" in payload["exception"]
