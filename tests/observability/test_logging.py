"""
Tests for observability/logging.py and observability/tracing.py.

Covers:
- Service and trace context processors
- Context binding
- Span helper error recording
"""
import pytest
import structlog
from opentelemetry.sdk.trace import TracerProvider

from observability.logging import (
    add_service_context,
    add_trace_context,
    bind_context,
    clear_context,
)
from observability.tracing import create_span


class TestLogProcessors:
    """Tests for structlog processors."""

    def test_service_context(self):
        """Test that service name and environment are added to every event."""
        processor = add_service_context("lms", "testing")

        event = processor(None, "info", {"event": "Lesson completed"})

        assert event["service"] == "lms"
        assert event["environment"] == "testing"

    def test_trace_context_without_span(self):
        """Test that no trace ids are added outside a recording span."""
        event = add_trace_context(None, "info", {"event": "x"})

        assert "trace_id" not in event

    def test_trace_context_inside_span(self):
        """Test that trace and span ids are added inside a recording span."""
        tracer = TracerProvider().get_tracer("test")

        with tracer.start_as_current_span("relay"):
            event = add_trace_context(None, "info", {"event": "x"})

        assert len(event["trace_id"]) == 32
        assert len(event["span_id"]) == 16


class TestContextBinding:
    """Tests for bind_context / clear_context."""

    def test_bind_and_clear(self):
        """Test that bound values are visible until cleared."""
        bind_context(request_id="r-1", path="/api/courses")
        assert structlog.contextvars.get_contextvars()["request_id"] == "r-1"

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}


class TestCreateSpan:
    """Tests for the create_span helper."""

    def test_reraises(self):
        """Test that errors inside the span propagate."""
        with pytest.raises(RuntimeError):
            with create_span("failing", attributes={"lesson.id": "l-1", "skip": None}):
                raise RuntimeError("boom")

    def test_yields_span(self):
        """Test that the span can be annotated by the caller."""
        with create_span("ok", attributes={"tags": ["a", "b"], "obj": object()}) as span:
            span.set_attribute("events.count", 1)
