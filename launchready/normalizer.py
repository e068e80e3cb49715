"""Normalize raw k6 summaries into canonical Metrics and chart series."""

import math
from typing import List, Optional

from launchready.models import ChartSeries, HealthSlice, Latency, Metrics


_P50_KEYS = ("p(50)", "med", "median", "p50")
_P95_KEYS = ("p(95)", "p95")
_P99_KEYS = ("p(99)", "p99")

SUCCESS_COLOR = "#2563eb"
FAILURE_COLOR = "#f59e0b"
SERVER_ERROR_COLOR = "#ef4444"


def normalize(raw: Optional[dict]) -> Metrics:
    """Convert a raw load tool result into a canonical Metrics record.

    Accepts both the legacy ``--summary-export`` shape, where metric values
    sit directly on the metric object, and the newer shape that nests them
    under ``values``. Never raises: anything unusable yields the
    "no traffic observed" record.

    Args:
        raw: The raw result, or None when the run never happened.

    Returns:
        A Metrics instance satisfying the canonical invariants.
    """
    if not isinstance(raw, dict):
        return Metrics()
    raw_metrics = raw.get("metrics")
    if not isinstance(raw_metrics, dict) or not raw_metrics:
        return Metrics()

    durations = _metric(raw_metrics, "http_req_duration")
    reqs = _metric(raw_metrics, "http_reqs")
    failed = _metric(raw_metrics, "http_req_failed")
    server_errors = _metric(raw_metrics, "server_errors")

    duration_ms = _duration_ms(raw)
    total_requests = _total_requests(reqs, duration_ms)
    vus = _vus(raw_metrics)

    if total_requests == 0:
        return Metrics(vus=vus, duration=duration_ms)

    failure_rate = _failure_rate(failed, total_requests)
    server_count = _number(server_errors.get("count"))
    server_error_rate = _clamp_rate(server_count / total_requests) if server_count else 0.0
    if server_error_rate > failure_rate:
        # server errors are failures too
        failure_rate = server_error_rate

    return Metrics(
        throughput=_throughput(reqs, total_requests, duration_ms),
        total_requests=total_requests,
        failure_rate_under_test=failure_rate,
        server_error_rate=server_error_rate,
        latency=Latency(
            p50=_first(durations, _P50_KEYS),
            p95=_first(durations, _P95_KEYS),
            p99=_first(durations, _P99_KEYS),
            avg=_first(durations, ("avg",)),
            max=_first(durations, ("max",)),
        ),
        vus=vus,
        duration=duration_ms,
    )


def build_chart_series(metrics: Metrics) -> ChartSeries:
    """Latency percentiles ordered p50, p95, p99, skipping unmeasured ones."""
    series = ChartSeries()
    for label in ("p50", "p95", "p99"):
        value = getattr(metrics.latency, label)
        if value is not None:
            series.labels.append(label)
            series.values.append(value)
    return series


def build_health_series(metrics: Metrics) -> List[HealthSlice]:
    """Split requests into success / non-server failure / server failure.

    The three values sum to 100 when traffic was observed. Without traffic
    all three are 0, which marks the series as "no data".
    """
    if not metrics.has_traffic:
        success = failure = server = 0.0
    else:
        server = round(metrics.server_error_rate * 100, 2)
        failure = round(
            max(0.0, metrics.failure_rate_under_test - metrics.server_error_rate) * 100, 2
        )
        success = round(max(0.0, 100.0 - failure - server), 2)

    return [
        HealthSlice(name="Successful Responses (2xx)", value=success, color=SUCCESS_COLOR),
        HealthSlice(
            name="Failed Requests (Blocked / Rejected / Timed Out)",
            value=failure,
            color=FAILURE_COLOR,
        ),
        HealthSlice(name="Server Errors (5xx)", value=server, color=SERVER_ERROR_COLOR),
    ]


# -- internal helpers ---------------------------------------------------------


def _metric(raw_metrics: dict, name: str) -> dict:
    metric = raw_metrics.get(name)
    if not isinstance(metric, dict):
        return {}
    values = metric.get("values")
    if isinstance(values, dict):
        return values
    return metric


def _number(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return float(value)


def _first(source: dict, keys) -> Optional[float]:
    for key in keys:
        value = _number(source.get(key))
        if value is not None:
            return value
    return None


def _clamp_rate(value: float) -> float:
    return min(1.0, max(0.0, value))


def _as_rate(value: float) -> float:
    # some exporters report percentages
    if 1.0 < value <= 100.0:
        value = value / 100.0
    return _clamp_rate(value)


def _duration_ms(raw: dict) -> Optional[int]:
    state = raw.get("state")
    if not isinstance(state, dict):
        return None
    value = _number(state.get("testRunDurationMs"))
    return int(value) if value is not None else None


def _total_requests(reqs: dict, duration_ms: Optional[int]) -> int:
    count = _number(reqs.get("count"))
    if count is not None:
        return int(count)
    rate = _number(reqs.get("rate"))
    if rate is not None and duration_ms:
        total = rate * duration_ms / 1000.0
        if math.isfinite(total):
            return int(round(total))
    return 0


def _throughput(reqs: dict, total_requests: int, duration_ms: Optional[int]) -> float:
    rate = _number(reqs.get("rate"))
    if rate is not None:
        return rate
    if duration_ms:
        return total_requests / (duration_ms / 1000.0)
    return 0.0


def _failure_rate(failed: dict, total_requests: int) -> float:
    for key in ("rate", "value"):
        value = _number(failed.get(key))
        if value is not None:
            return _as_rate(value)

    count = _number(failed.get("count"))
    if count is not None:
        return _clamp_rate(count / total_requests)

    # k6 Rate metrics count true samples as "passes"; for http_req_failed
    # a true sample is a failed request.
    passes = _number(failed.get("passes"))
    fails = _number(failed.get("fails"))
    if passes is not None and fails is not None and passes + fails > 0:
        return _clamp_rate(passes / (passes + fails))
    return 0.0


def _vus(raw_metrics: dict) -> int:
    vus = _metric(raw_metrics, "vus")
    value = _first(vus, ("value", "max"))
    if value is None:
        value = _first(_metric(raw_metrics, "vus_max"), ("value", "max"))
    return int(value) if value is not None else 0
