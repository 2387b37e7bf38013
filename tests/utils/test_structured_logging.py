"""Tests for structlog run-context helpers."""

import structlog
from structlog.contextvars import clear_contextvars, get_contextvars

from research_agent.utils.logging import bind_run_context, configure_structured_logging, new_run_id


class TestRunContext:
    def test_new_run_id_unique(self):
        first, second = new_run_id(), new_run_id()
        assert first.startswith("run-")
        assert first != second

    def test_bind_replaces_previous_context(self):
        bind_run_context("run-1", query="old")
        bind_run_context("run-2", query="Apple revenue")
        try:
            assert get_contextvars() == {"run_id": "run-2", "query": "Apple revenue"}
        finally:
            clear_contextvars()

    def test_json_renderer_carries_context(self, capsys):
        configure_structured_logging(level="INFO", log_format="json")
        bind_run_context("run-3")
        try:
            structlog.get_logger().bind(component="tests").info("memory_loaded", memories=2)
        finally:
            clear_contextvars()
            structlog.reset_defaults()

        err = capsys.readouterr().err
        assert '"event": "memory_loaded"' in err
        assert '"run_id": "run-3"' in err
        assert '"component": "tests"' in err
