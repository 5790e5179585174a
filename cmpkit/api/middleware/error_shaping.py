from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from cmpkit.core.errors import CompositionError
from cmpkit.core.observability.metrics import inc_named

log = logging.getLogger("cmpkit.errors")

INTERNAL_ERROR = {"code": "internal_error", "detail": "Internal Server Error", "data": {}}


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")


def error_body(exc: Exception, request_id: Optional[str] = None) -> Dict[str, Any]:
    """Client-facing body of an error: `{code, detail, data}` plus the request id.

    Engine errors carry their own code and structured data, anything else is
    reported as an opaque internal error.
    """
    body = exc.to_dict() if isinstance(exc, CompositionError) else dict(INTERNAL_ERROR)
    if request_id:
        body["request_id"] = request_id
    return body


async def composition_error_handler(request: Request, exc: CompositionError) -> JSONResponse:
    log.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
    inc_named(f"error_{exc.code}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc, _request_id(request)))


class SafeErrorMiddleware(BaseHTTPMiddleware):
    """
    Last line of defence for errors no route handler turned into a response.
    Engine errors keep their status and code; anything else becomes a 500
    whose traceback is only logged.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except CompositionError as e:
            return await composition_error_handler(request, e)
        except Exception as e:
            rid = _request_id(request)
            log.exception("unhandled error rid=%s %s %s", rid, request.method, request.url.path)
            inc_named("error_internal")
            return JSONResponse(status_code=500, content=error_body(e, rid))
