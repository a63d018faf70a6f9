"""Observability helpers for ConvRAG."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Callable

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = "convrag") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


class PipelineMetrics:
    """Prometheus metrics for pipeline stages and the generation cache."""

    condense_latency = Histogram(
        "convrag_condense_duration_seconds",
        "Time spent rewriting follow-up questions.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieval_latency = Histogram(
        "convrag_retrieval_duration_seconds",
        "Time spent retrieving documents.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_document_count = Histogram(
        "convrag_retrieved_document_count",
        "Number of documents returned by retrieval.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    synthesis_latency = Histogram(
        "convrag_synthesis_duration_seconds",
        "Time spent synthesizing answers.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    cache_lookups = Counter(
        "convrag_cache_lookups_total",
        "Generation cache lookups by outcome.",
        ["outcome"],
    )
    cache_slot_operations = Counter(
        "convrag_cache_slot_operations_total",
        "Backing-store operations issued by the generation cache.",
        ["operation"],
    )

    @classmethod
    def observe_condense(cls, duration_seconds: float) -> None:
        cls.condense_latency.observe(duration_seconds)

    @classmethod
    def observe_retrieval(cls, duration_seconds: float, document_count: int) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_document_count.observe(document_count)

    @classmethod
    def observe_synthesis(cls, duration_seconds: float) -> None:
        cls.synthesis_latency.observe(duration_seconds)

    @classmethod
    def observe_cache_lookup(cls, hit: bool, slots_read: int) -> None:
        cls.cache_lookups.labels(outcome="hit" if hit else "miss").inc()
        cls.cache_slot_operations.labels(operation="read").inc(slots_read)

    @classmethod
    def observe_cache_write(cls) -> None:
        cls.cache_slot_operations.labels(operation="write").inc()


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback: Callable[[float], None] | None = None) -> None:
        self._callback = callback
        self._start = 0.0
        self.duration = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.duration = time.perf_counter() - self._start
        if self._callback is not None and exc_type is None:
            self._callback(self.duration)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
