"""
Tests for the logging formatter.
"""

import json
import logging

from echomint_registry.observability import JSONFormatter


class TestJSONFormatter:
    def test_registry_extras_are_surfaced(self):
        record = logging.LogRecord(
            name="echomint_registry.registry",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="transfer of token %d rejected: %s",
            args=(3, "NotApproved"),
            exc_info=None,
        )
        record.token_id = 3
        record.error_code = "NotApproved"

        log = json.loads(JSONFormatter().format(record))

        assert log["level"] == "INFO"
        assert log["logger"] == "echomint_registry.registry"
        assert log["message"] == "transfer of token 3 rejected: NotApproved"
        assert log["token_id"] == 3
        assert log["error_code"] == "NotApproved"
        assert "caller" not in log
