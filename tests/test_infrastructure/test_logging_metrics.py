"""
Test infrastructure components: logging, metrics, retry, health.

These tests verify the production hardening infrastructure works correctly.
"""

import sqlite3
from pathlib import Path

import pytest

from foodxchange.exchange import Exchange
from foodxchange.kernel.errors import InvalidTransition, PermissionDenied
from foodxchange.kernel.logging import (
    LogOperation,
    configure_logging,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    redact_context,
    set_correlation_id,
)
from foodxchange.kernel.metrics import (
    operations_total,
    projects_expired_total,
    track_operation,
    transitions_total,
)
from foodxchange.kernel.retry import retry_on_sqlite_lock, retry_on_transient_error
from foodxchange.metrics_server import build_parser
from tests.helpers import active_project, project_command


class TestLoggingFramework:
    """Test structured logging framework."""

    def test_configure_logging_console(self) -> None:
        """Test logging configuration for console output."""
        configure_logging(json_output=False, log_level="INFO")
        logger = get_logger(__name__)
        assert logger is not None

    def test_configure_logging_json(self) -> None:
        """Test logging configuration for JSON output."""
        configure_logging(json_output=True, log_level="DEBUG")
        logger = get_logger(__name__)
        assert logger is not None

    def test_correlation_id(self) -> None:
        """Test correlation ID context management."""
        cid = get_correlation_id()
        assert cid
        assert get_correlation_id() == cid

        set_correlation_id("award-PRJ-1")
        assert get_correlation_id() == "award-PRJ-1"

    def test_generated_correlation_ids_are_unique(self) -> None:
        ids = {generate_correlation_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i) == 22 for i in ids)

    def test_redact_context(self) -> None:
        """Test contact details never reach the log stream."""
        redacted = redact_context(
            {"email": "buyer@example.com", "token": "abc", "project_id": "PRJ-1"}
        )

        assert redacted == {
            "email": "***REDACTED***",
            "token": "***REDACTED***",
            "project_id": "PRJ-1",
        }

    def test_log_operation_context_manager(self) -> None:
        """Test LogOperation context manager."""
        configure_logging(json_output=False, log_level="INFO")
        logger = get_logger(__name__)

        with LogOperation(logger, "publish_project", project_id="PRJ-1") as op:
            assert op.start_time > 0

    def test_log_operation_with_exception(self) -> None:
        """Test LogOperation logs errors and lets them propagate."""
        configure_logging(json_output=False, log_level="INFO")
        logger = get_logger(__name__)

        with pytest.raises(ValueError):
            with LogOperation(logger, "failing_operation", email="vendor@example.com"):
                raise ValueError("Test error")

    def test_log_operation_lets_refusals_propagate(self) -> None:
        """Test a lifecycle refusal is logged and re-raised unchanged."""
        configure_logging(json_output=True, log_level="INFO")
        logger = get_logger(__name__)

        with pytest.raises(PermissionDenied):
            with LogOperation(logger, "publish_project", project_id="PRJ-1"):
                raise PermissionDenied("vendor-1", "publish project", "not the buyer")

    def test_log_operation_redacts_once(self) -> None:
        op = LogOperation(get_logger(__name__), "add_review", email="b@example.com", rating=4)

        assert op.context == {"email": "***REDACTED***", "rating": 4}


class TestMetrics:
    """Test Prometheus metrics collection."""

    def test_track_operation_counts_outcomes(self) -> None:
        @track_operation("test_metric_operation")
        def succeed() -> str:
            return "ok"

        @track_operation("test_metric_operation")
        def fail() -> None:
            raise InvalidTransition("project", "PRJ-1", "completed", "active")

        success = operations_total.labels(operation="test_metric_operation", status="success")
        failure = operations_total.labels(operation="test_metric_operation", status="failure")
        before_success = success._value.get()
        before_failure = failure._value.get()

        assert succeed() == "ok"
        with pytest.raises(InvalidTransition):
            fail()

        assert success._value.get() == before_success + 1
        assert failure._value.get() == before_failure + 1

    def test_publish_counts_transition(self, temp_db, test_time, buyer) -> None:
        """Test a lifecycle transition through the façade is counted."""
        exchange = Exchange(temp_db, time_provider=test_time)
        project = exchange.create_project(buyer, project_command())
        counter = transitions_total.labels(
            entity_type="project", from_status="draft", to_status="active"
        )
        before = counter._value.get()

        exchange.publish_project(buyer, project.id)

        assert counter._value.get() == before + 1

    def test_tick_counts_expired_projects(self, temp_db, test_time, buyer) -> None:
        exchange = Exchange(temp_db, time_provider=test_time)
        active_project(exchange, buyer)
        active_project(exchange, buyer)
        before = projects_expired_total._value.get()

        test_time.advance_days(11)
        exchange.tick()

        assert projects_expired_total._value.get() == before + 2

    def test_facade_operation_counted(self, temp_db, test_time, buyer) -> None:
        exchange = Exchange(temp_db, time_provider=test_time)
        counter = operations_total.labels(operation="create_project", status="success")
        before = counter._value.get()

        exchange.create_project(buyer, project_command())

        assert counter._value.get() == before + 1


class TestRetryLogic:
    """Test retry logic with exponential backoff."""

    def test_retry_decorator(self) -> None:
        """Test retry decorator works."""
        call_count = 0

        @retry_on_sqlite_lock(max_attempts=3, min_wait_ms=1, max_wait_ms=5)
        def flaky_write() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise sqlite3.OperationalError("database is locked")
            return "success"

        assert flaky_write() == "success"
        assert call_count == 2  # Failed once, succeeded on retry

    def test_retry_gives_up(self) -> None:
        call_count = 0

        @retry_on_sqlite_lock(max_attempts=2, min_wait_ms=1, max_wait_ms=5)
        def always_locked() -> None:
            nonlocal call_count
            call_count += 1
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(sqlite3.OperationalError):
            always_locked()
        assert call_count == 2

    def test_domain_errors_are_not_retried(self) -> None:
        call_count = 0

        @retry_on_transient_error(
            max_attempts=3, min_wait_ms=1, max_wait_ms=5, exceptions=(OSError,)
        )
        def invalid() -> None:
            nonlocal call_count
            call_count += 1
            raise InvalidTransition("proposal", "PRP-1", "accepted", "submitted")

        with pytest.raises(InvalidTransition):
            invalid()
        assert call_count == 1


class TestMetricsServer:
    """Test metrics server argument parsing."""

    def test_defaults(self) -> None:
        args = build_parser().parse_args([])

        assert args.port == 9090
        assert args.db is None
        assert args.refresh == 15.0
        assert args.log_level == "INFO"
        assert args.json_logs is False

    def test_overrides(self) -> None:
        args = build_parser().parse_args(
            ["--port", "9191", "--db", "market.db", "--log-level", "DEBUG", "--json-logs"]
        )

        assert (args.port, args.log_level, args.json_logs) == (9191, "DEBUG", True)
        assert args.db == Path("market.db")
