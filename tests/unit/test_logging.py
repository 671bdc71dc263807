from __future__ import annotations

import json
import logging

from taskbridge.orchestrator.logging import JsonFormatter, configure_logging


def test_json_formatter_includes_extra_fields() -> None:
    record = logging.LogRecord(
        name="taskbridge.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Branch created",
        args=(),
        exc_info=None,
    )
    record.key = "DEV-1"
    record.branch = "feature/dev-1-x"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "Branch created"
    assert payload["level"] == "INFO"
    assert payload["extra"] == {"key": "DEV-1", "branch": "feature/dev-1-x"}


def test_configure_logging_quiets_third_party_loggers() -> None:
    configure_logging("DEBUG")

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JsonFormatter)
    assert logging.getLogger("urllib3").level == logging.INFO
    assert logging.getLogger("sqlalchemy").level == logging.INFO
