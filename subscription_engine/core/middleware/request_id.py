"""
Request correlation for the HTTP adapter.

Reuses an incoming x-request-id or mints one, exposes it to handlers via
request.state and to every log record via the logging contextvar, and
echoes it on the response.
"""
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from subscription_engine.core.logging import log_event, request_id_ctx_var


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[self.header_name] = rid
            log_event(
                "info",
                "request.complete",
                user_id=request.path_params.get("user_id"),
                event_type="http.request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                },
            )
            return response
        finally:
            request_id_ctx_var.reset(token)
