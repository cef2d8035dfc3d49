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

visibility_scope_evaluations_total = Counter(
    "visibility_scope_evaluations_total",
    "Visibility scope evaluations by resource and role",
    ["resource", "role"],
)

assignments_total = Counter(
    "assignments_total",
    "Record assignments by resource, mode and outcome",
    ["resource", "mode", "outcome"],
)

bulk_assignment_records = Histogram(
    "bulk_assignment_records",
    "Number of records submitted per bulk assignment",
    ["resource"],
    buckets=(1, 5, 10, 25, 50, 100, 250, 500),
)

permission_denied_total = Counter(
    "permission_denied_total",
    "Mutations rejected by role checks",
    ["resource", "action"],
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_visibility_scope(resource: str, role: str) -> None:
    visibility_scope_evaluations_total.labels(resource=resource, role=role).inc()


def observe_assignment(resource: str, mode: str, outcome: str) -> None:
    assignments_total.labels(resource=resource, mode=mode, outcome=outcome).inc()


def observe_bulk_assignment_size(resource: str, size: int) -> None:
    bulk_assignment_records.labels(resource=resource).observe(size)


def observe_permission_denied(resource: str, action: str) -> None:
    permission_denied_total.labels(resource=resource, action=action).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
