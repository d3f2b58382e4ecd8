from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

funnel_customer_claims_total = Counter(
    "funnel_customer_claims_total",
    "Customer claim attempts by outcome",
    ["outcome"],
)

funnel_quote_decisions_total = Counter(
    "funnel_quote_decisions_total",
    "Quote approval decisions by action",
    ["action"],
)

funnel_transaction_retries_total = Counter(
    "funnel_transaction_retries_total",
    "Transactions re-run after a deadlock-class failure",
    ["operation"],
)

funnel_jobs_total = Counter(
    "funnel_jobs_total",
    "Total funnel jobs by status",
    ["job_type", "status"],
)

funnel_job_duration_seconds = Histogram(
    "funnel_job_duration_seconds",
    "Funnel job duration in seconds",
    ["job_type"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    path_format = getattr(route, "path_format", None) if route is not None else None
    if isinstance(path_format, str) and path_format:
        return _PATH_PARAM_RE.sub("{id}", path_format)
    return _UUID_RE.sub("{id}", request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_customer_claim(outcome: str) -> None:
    funnel_customer_claims_total.labels(outcome=outcome).inc()


def observe_quote_decision(action: str) -> None:
    funnel_quote_decisions_total.labels(action=action).inc()


def observe_transaction_retry(operation: str) -> None:
    funnel_transaction_retries_total.labels(operation=operation).inc()


def observe_job(job_type: str, status: str, duration: float) -> None:
    funnel_jobs_total.labels(job_type=job_type, status=status).inc()
    funnel_job_duration_seconds.labels(job_type=job_type).observe(duration)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
