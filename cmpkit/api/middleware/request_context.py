from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from cmpkit.core.observability.metrics import inc_http

log = logging.getLogger("cmpkit.request")

REQUEST_ID_HEADER = "X-Request-Id"


def _json_log(event: str, **fields):
    msg = {"event": event, **fields}
    log.info("%s", msg)


def normalize_path(request: Request) -> str:
    # route template keeps the label cardinality low ("/api/v1/models/{name:path}")
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Request ID + request counters.

    Adds:
      request.state.request_id
      response header: X-Request-Id
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = rid

        start = time.time()
        resp = await call_next(request)
        dur_ms = int((time.time() - start) * 1000)

        resp.headers[REQUEST_ID_HEADER] = rid
        inc_http(request.method, normalize_path(request), resp.status_code)

        if request.url.path.startswith("/api/"):
            _json_log(
                "request",
                request_id=rid,
                method=request.method,
                path=request.url.path,
                status_code=resp.status_code,
                duration_ms=dur_ms,
            )
        return resp
