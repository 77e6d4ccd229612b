"""
Pydantic schemas for all API request / response payloads.

Provides strict type validation and auto-generated OpenAPI documentation.
Rule and event payloads are validated structurally here; their domain
checks (enum values, condition values) happen in the model constructors.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


# ── Request schemas ─────────────────────────────────────────────────────


class TokenRequest(BaseModel):
    """Login credentials."""

    username: str = Field(..., min_length=1, max_length=100, description="Username")
    password: str = Field(..., min_length=1, max_length=100, description="Password")


class EventBatch(BaseModel):
    """Raw Cowrie JSON records pushed by a sensor."""

    events: list[dict[str, Any]] = Field(
        ...,
        min_length=1,
        max_length=10_000,
        description="Cowrie records (eventid, timestamp, src_ip, message, input, session)",
    )


class ConditionSchema(BaseModel):
    """One rule condition."""

    kind: str = Field(..., description="ip | eventKind | classification | count | timeWindow")
    operator: str = Field(..., description="equals | contains | greaterThan | lessThan | in")
    value: Any = Field(None, description="String, number or list of strings")
    time_window_seconds: Optional[float] = Field(None, gt=0)


class ActionSchema(BaseModel):
    """One rule action with its configuration bag."""

    kind: str = Field(..., description="block_ip | notify | report | custom_script")
    config: dict[str, Any] = Field(default_factory=dict)


class RuleCreate(BaseModel):
    """New automated-response rule."""

    id: Optional[str] = Field(None, min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    enabled: bool = True
    conditions: list[ConditionSchema] = Field(default_factory=list)
    actions: list[ActionSchema] = Field(default_factory=list)


class RuleUpdate(BaseModel):
    """Partial rule edit. Omitted fields are left unchanged."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    conditions: Optional[list[ConditionSchema]] = None
    actions: Optional[list[ActionSchema]] = None


# ── Response schemas ────────────────────────────────────────────────────


class TokenResponse(BaseModel):
    """JWT token response."""

    access_token: str
    token_type: str = "bearer"
    expires_in_minutes: int
    role: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    service: str = "Interceptor Response Core"
    version: str = "1.0.0"
    environment: str
    timestamp: str


class ErrorResponse(BaseModel):
    """Structured error response."""

    detail: str


class StatsResponse(BaseModel):
    """Aggregate counters over the recent event window."""

    total_logs: int
    malicious_count: int
    benign_count: int
    accuracy: int


class IngestResponse(BaseModel):
    """Outcome of pushing a batch of events."""

    accepted: int
    dropped: int = 0
    matched_rules: list[str] = Field(default_factory=list)
    faults: int = 0
    queued: bool = False


class RuleResponse(BaseModel):
    """A rule with its trigger counters."""

    id: str
    name: str
    description: str
    enabled: bool
    conditions: list[dict[str, Any]]
    actions: list[dict[str, Any]]
    created_at: str
    last_triggered_at: Optional[str] = None
    trigger_count: int


class BlockedAddressResponse(BaseModel):
    """An active block."""

    ip: str
    reason: str
    blocked_at: str
    expires_at: str
    origin_rule_id: Optional[str] = None
