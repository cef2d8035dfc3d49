from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import get_correlation_id
from app.core.config import get_settings


LIMITED_PREFIXES = ("/api/crm/", "/api/users", "/api/teams")
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
WINDOW_SECONDS = 60


@dataclass
class _Bucket:
    tokens: float
    refilled_at: float


class TokenBucketLimiter:
    """Per (caller, route group) token buckets refilled continuously over the window."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _Bucket] = {}

    def take(self, caller: str, route_group: str, capacity: int, window_seconds: int = WINDOW_SECONDS) -> tuple[bool, int]:
        if capacity <= 0:
            return False, window_seconds

        now = time.monotonic()
        per_second = capacity / float(window_seconds)
        key = (caller, route_group)

        with self._lock:
            bucket = self._buckets.setdefault(key, _Bucket(tokens=float(capacity), refilled_at=now))
            elapsed = max(0.0, now - bucket.refilled_at)
            bucket.tokens = min(float(capacity), bucket.tokens + elapsed * per_second)
            bucket.refilled_at = now

            if bucket.tokens < 1.0:
                return False, max(1, math.ceil((1.0 - bucket.tokens) / per_second))

            bucket.tokens -= 1.0
            return True, 0

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = TokenBucketLimiter()


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled or not is_rate_limited(request.method, request.url.path):
            return await call_next(request)

        allowed, retry_after = _limiter.take(
            caller=_resolve_caller(request),
            route_group=resolve_route_group(request.url.path),
            capacity=settings.rate_limit_mutations_per_minute,
        )
        if allowed:
            return await call_next(request)

        correlation_id = (
            get_correlation_id()
            or getattr(request.state, "correlation_id", None)
            or str(uuid.uuid4())
        )
        response = JSONResponse(
            status_code=429,
            content={
                "code": "RATE_LIMITED",
                "message": "Too many requests",
                "details": {"retry_after": retry_after},
                "correlation_id": correlation_id,
            },
        )
        response.headers["Retry-After"] = str(retry_after)
        response.headers["X-Correlation-Id"] = correlation_id
        return response


def is_rate_limited(method: str, path: str) -> bool:
    if method.upper() not in MUTATING_METHODS:
        return False
    return any(path.startswith(prefix) for prefix in LIMITED_PREFIXES)


def resolve_route_group(path: str) -> str:
    """``/api/crm/leads/5/assign`` -> ``leads``; ``/api/users/3/assign-team`` -> ``users``."""

    parts = [part for part in path.split("/") if part]
    if len(parts) >= 3 and parts[1] == "crm":
        return parts[2]
    if len(parts) >= 2:
        return parts[1]
    return "api"


def _resolve_caller(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return f"ip:{request.client.host if request.client else 'unknown'}"

    settings = get_settings()
    try:
        payload = jwt.decode(auth_header[len("Bearer "):], settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return "anonymous"

    subject = payload.get("sub")
    return f"user:{subject}" if subject is not None else "anonymous"


def reset_rate_limiter() -> None:
    _limiter.clear()
