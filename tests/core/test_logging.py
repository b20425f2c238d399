"""Tests for structured logging module."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog

from resource_mirror.collection import Collection
from resource_mirror.core.logging import _NOISE_LOGGERS, add_otel_context, configure_logging
from tests.conftest import URI, FakeTransport

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset root handlers and bound context between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


def _json_lines(path: Path) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


class TestAddOtelContext:
    def test_zeroed_ids_when_no_span(self):
        result = add_otel_context(None, "info", {"event": "test"})
        assert result["trace_id"] == "0" * 32
        assert result["span_id"] == "0" * 16


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_format_installs_json_renderer(self):
        configure_logging(fmt="json")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_noise_loggers_suppressed(self):
        configure_logging()
        for name in _NOISE_LOGGERS:
            assert logging.getLogger(name).level >= logging.WARNING

    def test_log_level_applied(self):
        configure_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_reconfiguration_replaces_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_log_file_written_as_json(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "mirror.log"
        configure_logging(fmt="text", log_file=log_file)

        with structlog.contextvars.bound_contextvars(collection=URI):
            logging.getLogger("resource_mirror.test").info("hello structured world")
        logging.getLogger("resource_mirror.test").warning("outside any collection")

        inside, outside = _json_lines(log_file)
        assert inside["event"] == "hello structured world"
        assert inside["collection"] == URI
        assert "collection" not in outside


# ---------------------------------------------------------------------------
# Collection operations carry their uri
# ---------------------------------------------------------------------------


class TestCollectionBinding:
    async def test_operations_log_with_collection_uri(self, tmp_path: Path):
        log_file = tmp_path / "mirror.log"
        configure_logging(level="DEBUG", log_file=log_file)
        transport = FakeTransport(
            {
                URI: {"data": [{"id": "1"}]},
                f"{URI}/2": {"data": {"id": "2", "attributes": {}}},
            }
        )
        collection = Collection("http://api.example.com", "v1", "articles", transport=transport)

        await collection.fetch()
        await collection.add_by_id("2")
        await collection.remove_by_id("1")

        records = [r for r in _json_lines(log_file) if r["logger"] == "resource_mirror.collection"]
        assert [r["event"] for r in records] == [
            f"Fetched {URI}: 1 entities (offset=0 limit=0 total=0)",
            "Added articles/2",
            "Removed articles/1",
        ]
        assert {r["collection"] for r in records} == {URI}

    async def test_binding_does_not_leak_past_operation(self, tmp_path: Path):
        log_file = tmp_path / "mirror.log"
        configure_logging(log_file=log_file)
        collection = Collection(
            "http://api.example.com", "v1", "articles", transport=FakeTransport({URI: {}})
        )

        await collection.fetch()
        logging.getLogger("resource_mirror.test").info("after fetch")

        assert "collection" not in _json_lines(log_file)[-1]
