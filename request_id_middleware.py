"""Middleware that tags every request with an X-Request-ID.

An incoming X-Request-ID header is reused so a client can correlate its own
calls; otherwise a fresh id is generated. The id is bound into structlog
contextvars so every log line of the request (store writes, lifecycle
transitions, notification dispatch) carries it, and banners streamed over
SSE include it too.
"""
from __future__ import annotations

import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from structlog.contextvars import bind_contextvars, clear_contextvars


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = "X-Request-ID") -> None:  # type: ignore[override]
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:  # type: ignore[override]
        request_id = request.headers.get(self.header_name) or uuid.uuid4().hex
        bind_contextvars(request_id=request_id, path=request.url.path)
        request.state.request_id = request_id

        try:
            response: Response = await call_next(request)
        finally:
            # Contextvars must not leak into the next request on this worker
            clear_contextvars()

        response.headers[self.header_name] = request_id
        return response
