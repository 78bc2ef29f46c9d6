"""
learnflow - Observability Package

Distributed tracing and structured logging for the lms and reco services.

Components:
- tracing: OpenTelemetry tracer provider and span helpers
- logging: Structlog integration with trace context propagation

Usage:
    from observability import setup_observability, get_logger

    # Initialize at application startup
    setup_observability(service_name="lms")

    logger = get_logger(__name__)
"""
from typing import Optional

from config import ObservabilityConfig

from .logging import (
    LoggingConfig,
    bind_context,
    clear_context,
    get_logger,
    setup_logging,
    shutdown_logging,
)
from .tracing import (
    TracingConfig,
    create_span,
    get_tracer,
    setup_tracing,
    shutdown_tracing,
)

__all__ = [
    # Tracing
    "setup_tracing",
    "get_tracer",
    "create_span",
    "TracingConfig",
    "shutdown_tracing",
    # Logging
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "bind_context",
    "clear_context",
    "shutdown_logging",
    # Combined setup
    "setup_observability",
    "shutdown_observability",
]


def setup_observability(
    service_name: str,
    config: Optional[ObservabilityConfig] = None,
) -> None:
    """
    Initialize tracing and logging for one service process.

    Args:
        service_name: Name reported in spans and log lines ("lms" or "reco")
        config: Observability settings; read from the environment when omitted
    """
    config = config or ObservabilityConfig()

    setup_tracing(TracingConfig(
        service_name=service_name,
        service_version=config.service_version,
        enabled=config.tracing_enabled,
        sample_rate=config.get_sample_rate_for_env(),
        environment=config.environment,
        console_export=config.trace_console_export,
    ))

    setup_logging(LoggingConfig(
        service_name=service_name,
        level=config.log_level,
        json_format=config.log_json_format,
        enable_trace_context=config.log_trace_context,
        environment=config.environment,
    ))

    get_logger(__name__).info(
        "Observability initialized",
        service=service_name,
        tracing_enabled=config.tracing_enabled,
        environment=config.environment,
    )


def shutdown_observability() -> None:
    """Flush pending spans and reset logging configuration."""
    shutdown_tracing()
    shutdown_logging()
