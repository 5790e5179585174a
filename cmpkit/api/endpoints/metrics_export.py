"""Prometheus metrics scrape endpoint, plus a JSON snapshot of the in-process counters."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from cmpkit.core.observability.metrics import snapshot_named, snapshot_requests

router = APIRouter()


@router.get("/metrics", include_in_schema=False)
def prometheus_metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/api/v1/metrics/snapshot")
def metrics_snapshot():
    req = snapshot_requests()
    body = {"requests": req}
    body.update(snapshot_named())
    if "requests_total" in req:
        body["requests_total"] = req["requests_total"]
    return body
