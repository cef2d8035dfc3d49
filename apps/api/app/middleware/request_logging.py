from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("app.request")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One ``http.request`` line and one metrics sample per request.

    The path is the route template (``/api/crm/leads/{id}``), which is only
    known once routing has run, so it is resolved after ``call_next``.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            self._record(request, status_code, started, failed=True)
            raise
        self._record(request, status_code, started)
        return response

    @staticmethod
    def _record(request: Request, status_code: int, started: float, failed: bool = False) -> None:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        fields = {
            "method": request.method,
            "path": resolve_http_path_label(request),
            "status_code": status_code,
            "duration_ms": duration_ms,
        }
        observe_http_request(
            method=fields["method"], path=fields["path"], status=status_code, duration=duration_ms / 1000
        )

        if failed:
            logger.error("http.error", exc_info=True, extra=fields)
            return

        context = getattr(request.state, "context", None)
        fields["actor_id"] = getattr(context, "user_id", None)
        level = logging.WARNING if status_code >= 500 else logging.INFO
        logger.log(level, "http.request", extra=fields)
