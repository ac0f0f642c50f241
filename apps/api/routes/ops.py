"""Operational endpoints: health, registry snapshot and metrics."""

from __future__ import annotations

from django.http import HttpRequest, HttpResponse
from ninja import Router

from apps.schemas.ops import AppServerListResponse, AppServerOut, HealthResponse
from apps.services.bootstrap import agent
from apps.telemetry.metrics import export_prometheus

router = Router(tags=["Operations"])


@router.get("/health", response=HealthResponse)
def health(request: HttpRequest) -> HealthResponse:
    snapshot = agent.registry.snapshot()
    running = sum(1 for item in snapshot if item["state"] == "running")
    return HealthResponse(status="ok", app_servers=len(snapshot), running=running)


@router.get("/app-servers", response=AppServerListResponse)
def list_app_servers(request: HttpRequest) -> AppServerListResponse:
    items = [AppServerOut(**item) for item in agent.registry.snapshot()]
    return AppServerListResponse(items=items, total=len(items))


@router.get("/metrics")
def metrics(request: HttpRequest) -> HttpResponse:
    data, content_type = export_prometheus()
    return HttpResponse(data, content_type=content_type)
