"""Prometheus metrics for the API and the scan workers."""

import time

from prometheus_client import Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("app", "LLM visibility scan application info")
APP_INFO.info({"version": "1.0.0", "name": "llm_visibility_scan"})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

PROVIDER_CALLS = Counter(
    "scan_provider_calls_total",
    "Provider calls by final outcome (after retries)",
    ["provider", "outcome"],
)

PROVIDER_LATENCY = Histogram(
    "scan_provider_latency_seconds",
    "Wall time of one provider call including retries",
    ["provider"],
    buckets=[0.5, 1, 2.5, 5, 10, 20, 40, 60, 120],
)

SCAN_UNITS = Counter(
    "scan_units_total",
    "Prompt x provider units processed",
    ["status"],
)

SCAN_JOBS = Counter(
    "scan_jobs_total",
    "Batch jobs reaching a terminal status",
    ["status"],
)


# --- Middleware ---

# Normalize dynamic path segments to reduce cardinality
_PATH_PREFIXES = ("/api/v1/scan/jobs/", "/api/v1/scan/runs/")


def _normalize_path(path: str) -> str:
    """Replace job/run ids in paths with {id}."""
    for prefix in _PATH_PREFIXES:
        if path.startswith(prefix):
            rest = path[len(prefix) :]
            parts = rest.split("/", 1)
            tail = f"/{parts[1]}" if len(parts) > 1 else ""
            return f"{prefix}{{id}}{tail}"
    return path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect HTTP request metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
