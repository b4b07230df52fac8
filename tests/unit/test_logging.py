"""
Unit tests for server logging setup.
"""

import json
import logging

import pytest

from dbaas.masterdb_server.config import ObservabilityConfig, ServerConfig
from dbaas.masterdb_server.main import setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


def make_record(message, **extra):
    record = logging.LogRecord(
        name="dbaas.masterdb_server.records.engine",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=None,
        exc_info=None,
    )
    record.__dict__.update(extra)
    return record


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_lines_parse_with_quotes(self, root_logger):
        """Messages with quotes and newlines still yield one valid JSON object."""
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_format="json")))
        formatter = root_logger.handlers[0].formatter
        message = 'Invalid reference: "abc" does not exist\nin city'

        payload = json.loads(formatter.format(make_record(message, schema="store")))

        assert payload["message"] == message
        assert payload["levelname"] == "WARNING"
        assert payload["schema"] == "store"

    def test_text_format(self, root_logger):
        """The text format keeps the plain line layout."""
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_format="text")))
        formatter = root_logger.handlers[0].formatter

        line = formatter.format(make_record("Schema city created"))

        assert line.endswith(" - WARNING - Schema city created")

    def test_level_applied(self, root_logger):
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_level="debug")))

        assert root_logger.level == logging.DEBUG
        assert len(root_logger.handlers) == 1
