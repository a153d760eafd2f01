"""
Snapgram Backend — Request ID Middleware
==========================================

What:  Assigns each request a correlation ID, exposes it to log calls and
       error envelopes, and echoes it back as the X-Request-ID header.
How:   A client-supplied X-Request-ID is reused; otherwise a short random
       id is generated. The id lives in a ContextVar, so concurrent
       requests on one event loop never see each other's id.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID", "")[:MAX_CLIENT_ID_LENGTH] or uuid.uuid4().hex[:8]

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
