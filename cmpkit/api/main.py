from __future__ import annotations

from fastapi import FastAPI

from cmpkit.api.endpoints import catalog, compositions, health, metrics_export, models
from cmpkit.api.middleware.error_shaping import SafeErrorMiddleware, composition_error_handler
from cmpkit.api.middleware.request_context import RequestContextMiddleware
from cmpkit.core.errors import CompositionError

app = FastAPI(
    title="cmpkit Composition API",
    version="0.1.0",
)

# ------------------------------------------------------------
# Middleware stack (ORDER MATTERS)
# Starlette reverses add_middleware order: the LAST call is the OUTERMOST wrapper.
# Runtime order: SafeErrorMiddleware -> RequestContext -> handler
# ------------------------------------------------------------
app.add_middleware(RequestContextMiddleware)
app.add_middleware(SafeErrorMiddleware)

# engine errors raised by routes get their response here, inside RequestContext
app.add_exception_handler(CompositionError, composition_error_handler)

app.include_router(health.router)
app.include_router(metrics_export.router)
app.include_router(catalog.router)
app.include_router(models.router)
app.include_router(compositions.router)
