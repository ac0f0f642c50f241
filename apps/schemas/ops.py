"""Response models of the operational endpoints."""

from __future__ import annotations

from typing import List, Optional

from ninja import Schema
from pydantic import Field


class GroupKeyOut(Schema):
    service: str
    subservice: str
    resource: str


class AppServerOut(Schema):
    """One live application server adapter."""

    provider: str = Field(..., description="TTN, TTNv3 or ChirpStack")
    application_id: str
    tenant_id: Optional[str] = None
    host: str
    state: str
    group: Optional[GroupKeyOut] = Field(None, description="Provisioning group bound to the adapter")
    topics: List[str] = Field(default_factory=list)
    devices: List[str] = Field(default_factory=list, description="Cached device ids")


class AppServerListResponse(Schema):
    items: List[AppServerOut]
    total: int


class HealthResponse(Schema):
    status: str = "ok"
    app_servers: int
    running: int
