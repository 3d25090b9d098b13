"""
Prometheus metrics for resilient database access.
"""

from prometheus_client import Counter, Histogram, Gauge, REGISTRY
from contextlib import asynccontextmanager
import time
import logging

logger = logging.getLogger(__name__)

# Metrics created in this process, keyed by full metric name
_metric_cache = {}


def _safe_create_metric(metric_class, name, *args, **kwargs):
    """Create a metric, reusing the registered collector on duplicate registration."""
    if name in _metric_cache:
        return _metric_cache[name]

    try:
        metric = metric_class(name, *args, **kwargs)
    except ValueError as e:
        if "Duplicated timeseries" not in str(e):
            raise
        metric = REGISTRY._names_to_collectors.get(name)
        if metric is None:
            logger.error(f"Metric {name} not found in registry after duplicate error")
            raise
        logger.warning(f"Metric {name} already registered, reusing existing collector")

    _metric_cache[name] = metric
    return metric


# ============================================================================
# CONNECTION METRICS
# ============================================================================
CONNECTION_FAILURES = _safe_create_metric(
    Counter,
    'resilient_db_connection_failures_total',
    'Connection-level failures counted against the retry budget',
    ['strategy']
)

RETRY_BUDGET_USED = _safe_create_metric(
    Gauge,
    'resilient_db_retry_budget_used',
    'Connection attempts consumed from the retry budget'
)

RETRY_BUDGET_EXHAUSTED = _safe_create_metric(
    Counter,
    'resilient_db_retry_budget_exhausted_total',
    'Times the retry budget was exhausted (fatal)'
)

# ============================================================================
# QUERY METRICS
# ============================================================================
QUERY_ERRORS = _safe_create_metric(
    Counter,
    'resilient_db_query_errors_total',
    'Failed operations translated to an empty result',
    ['operation']
)

QUERY_LATENCY = _safe_create_metric(
    Histogram,
    'resilient_db_query_duration_seconds',
    'Round-trip time of a single statement including acquisition',
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0)
)


def record_connection_failure(strategy: str, attempts: int) -> None:
    CONNECTION_FAILURES.labels(strategy=strategy).inc()
    RETRY_BUDGET_USED.set(attempts)


def record_budget_reset() -> None:
    RETRY_BUDGET_USED.set(0)


def record_budget_exhausted() -> None:
    RETRY_BUDGET_EXHAUSTED.inc()


def record_query_error(operation: str) -> None:
    QUERY_ERRORS.labels(operation=operation).inc()


@asynccontextmanager
async def track_query():
    """Track statement latency, successful or not."""
    start = time.time()
    try:
        yield
    finally:
        QUERY_LATENCY.observe(time.time() - start)
