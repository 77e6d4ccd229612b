"""
FastAPI routes for Interceptor Response Core.

Endpoints:
  POST   /auth/token                — Login and get JWT
  GET    /api/auth/check            — Validate the current token
  POST   /api/events                — Push raw Cowrie events (Analyst)
  GET    /api/stats                 — Aggregate stats of recent events
  GET    /api/stats/breakdown       — Counts per event kind / severity
  GET    /api/logs                  — Recent classified events
  GET    /api/blocked-ips           — Active blocks
  DELETE /api/blocked-ips/{ip}      — Manual unblock (Analyst)
  GET    /api/rules                 — List rules
  POST   /api/rules                 — Create a rule (Admin)
  GET    /api/rules/history         — Recent rule triggers
  GET    /api/rules/faults          — Recent rule configuration faults
  GET    /api/rules/{id}            — Rule details
  PUT    /api/rules/{id}            — Edit a rule (Admin)
  DELETE /api/rules/{id}            — Delete a rule (Admin)
  POST   /api/rules/{id}/enable     — Enable a rule (Admin)
  POST   /api/rules/{id}/disable    — Disable a rule (Admin)
  GET    /api/status                — Service metrics
  GET    /health                    — Health check (public)
"""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.schemas import (
    BlockedAddressResponse,
    ErrorResponse,
    EventBatch,
    HealthResponse,
    IngestResponse,
    RuleCreate,
    RuleResponse,
    RuleUpdate,
    StatsResponse,
    TokenRequest,
    TokenResponse,
)
from config.settings import get_settings
from core.exceptions import (
    DuplicateRuleIDError,
    NotBlockedError,
    SecurityError,
    UnknownRuleIDError,
    ValidationError as InterceptorValidationError,
)
from daemon.response_service import ResponseService
from rules.rule_models import Action, Condition, Rule
from security.auth import (
    Role,
    authenticate_user,
    create_token,
    get_current_user,
    require_role,
)
from security.validation import validate_event_batch

logger = logging.getLogger(__name__)

router = APIRouter()

_T = TypeVar("_T")

# ── Module-level service reference (set by main.py) ─────────────────────

_service: ResponseService | None = None


def set_service(service: ResponseService | None) -> None:
    """Set the global response service instance (called during app startup)."""
    global _service
    _service = service


def _get_service() -> ResponseService:
    """Get the service or raise if not initialized."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Response service not initialized",
        )
    return _service


def _rule_not_found(exc: UnknownRuleIDError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)


async def _off_loop(func: Callable[..., _T], *args: Any, **kwargs: Any) -> _T:
    """Run a service call that checkpoints state to disk in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


# ── Public endpoints ────────────────────────────────────────────────────


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check",
)
async def health_check() -> HealthResponse:
    """Return the service health status."""
    settings = get_settings()
    return HealthResponse(
        status="healthy" if _service is not None and _service.running else "degraded",
        service=settings.APP_NAME,
        environment=settings.ENVIRONMENT.value,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get(
    "/api/status",
    tags=["System"],
    summary="Response service metrics",
)
async def service_status(
    user: dict[str, Any] = Depends(get_current_user),
) -> dict[str, Any]:
    """Queue depth, rule engine counters, block stats and worker health."""
    return _get_service().get_status()


# ── Authentication ──────────────────────────────────────────────────────


@router.post(
    "/auth/token",
    response_model=TokenResponse,
    tags=["Authentication"],
    summary="Login and get JWT token",
)
async def login(request: TokenRequest) -> TokenResponse:
    """Authenticate and receive a JWT token."""
    try:
        user = authenticate_user(request.username, request.password)
    except SecurityError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    settings = get_settings()
    token = create_token(user["username"], user["role"])
    return TokenResponse(
        access_token=token,
        expires_in_minutes=settings.JWT_EXPIRY_MINUTES,
        role=user["role"].value,
    )


@router.get(
    "/api/auth/check",
    tags=["Authentication"],
    summary="Validate the current token",
)
async def auth_check(
    user: dict[str, Any] = Depends(get_current_user),
) -> dict[str, Any]:
    return {"authenticated": True, "user": user}


# ── Ingestion ───────────────────────────────────────────────────────────


@router.post(
    "/api/events",
    response_model=IngestResponse,
    tags=["Events"],
    summary="Push raw Cowrie events",
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def ingest_events(
    batch: EventBatch,
    queue: bool = Query(False, description="Enqueue for the background consumer"),
    user: dict[str, Any] = Depends(require_role(Role.ANALYST)),
) -> IngestResponse:
    """Classify and evaluate a batch of events.

    By default the batch is processed before the response is returned;
    with ``queue=true`` it is handed to the background consumer instead.

    Requires Analyst role.
    """
    service = _get_service()
    try:
        records = validate_event_batch(batch.events)
    except InterceptorValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)

    if queue:
        accepted = sum(1 for record in records if service.submit(record))
        return IngestResponse(
            accepted=accepted,
            dropped=len(records) - accepted,
            queued=True,
        )

    matched: list[str] = []
    faults = 0
    for record in records:
        result = service.process(record)
        matched.extend(result.matched_rule_ids)
        faults += len(result.faults)

    logger.info(
        "Ingested %d events from user '%s' (%d rule matches)",
        len(records),
        user.get("username"),
        len(matched),
    )
    return IngestResponse(accepted=len(records), matched_rules=matched, faults=faults)


# ── Stats ───────────────────────────────────────────────────────────────


@router.get(
    "/api/stats",
    response_model=StatsResponse,
    tags=["Stats"],
    summary="Aggregate stats of recent events",
)
async def get_stats(
    user: dict[str, Any] = Depends(get_current_user),
) -> dict[str, Any]:
    return _get_service().stats().to_dict()


@router.get(
    "/api/stats/breakdown",
    tags=["Stats"],
    summary="Event counts per kind and severity",
)
async def get_stats_breakdown(
    user: dict[str, Any] = Depends(get_current_user),
) -> dict[str, dict[str, int]]:
    return _get_service().stats_breakdown()


@router.get(
    "/api/logs",
    tags=["Stats"],
    summary="Recent classified events, newest first",
)
async def get_logs(
    limit: int = Query(100, ge=1, le=1000),
    user: dict[str, Any] = Depends(get_current_user),
) -> list[dict[str, Any]]:
    return [event.to_dict() for event in _get_service().recent_events(limit)]


# ── Blocking ────────────────────────────────────────────────────────────


@router.get(
    "/api/blocked-ips",
    response_model=list[BlockedAddressResponse],
    tags=["Blocking"],
    summary="List active blocks",
)
async def list_blocked_ips(
    user: dict[str, Any] = Depends(get_current_user),
) -> list[dict[str, Any]]:
    return [record.to_dict() for record in _get_service().blocks.list_active()]


@router.delete(
    "/api/blocked-ips/{ip}",
    response_model=BlockedAddressResponse,
    tags=["Blocking"],
    summary="Manually unblock an address",
    responses={404: {"model": ErrorResponse}},
)
async def unblock_ip(
    ip: str,
    user: dict[str, Any] = Depends(require_role(Role.ANALYST)),
) -> dict[str, Any]:
    """Remove an active block. Requires Analyst role."""
    service = _get_service()
    try:
        record = await _off_loop(service.unblock, ip, actor=user.get("username", "unknown"))
    except NotBlockedError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    return record.to_dict()


# ── Rules ───────────────────────────────────────────────────────────────


@router.get(
    "/api/rules",
    response_model=list[RuleResponse],
    tags=["Rules"],
    summary="List rules in declaration order",
)
async def list_rules(
    user: dict[str, Any] = Depends(get_current_user),
) -> list[dict[str, Any]]:
    return [rule.to_dict() for rule in _get_service().engine.list_rules()]


@router.post(
    "/api/rules",
    response_model=RuleResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Rules"],
    summary="Create a rule",
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def create_rule(
    request: RuleCreate,
    user: dict[str, Any] = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Create an automated-response rule. Requires Admin role."""
    service = _get_service()
    try:
        rule = Rule.from_dict(request.model_dump(exclude_none=True))
        created = await _off_loop(service.create_rule, rule)
    except InterceptorValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except DuplicateRuleIDError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    return created.to_dict()


@router.get(
    "/api/rules/history",
    tags=["Rules"],
    summary="Recent rule triggers, newest first",
)
async def rule_history(
    limit: int = Query(100, ge=1, le=1000),
    user: dict[str, Any] = Depends(get_current_user),
) -> list[dict[str, Any]]:
    return [record.to_dict() for record in _get_service().engine.trigger_history(limit)]


@router.get(
    "/api/rules/faults",
    tags=["Rules"],
    summary="Recent rule configuration faults, newest first",
)
async def rule_faults(
    limit: int = Query(100, ge=1, le=1000),
    user: dict[str, Any] = Depends(get_current_user),
) -> list[dict[str, Any]]:
    return [fault.to_dict() for fault in _get_service().engine.faults(limit)]


@router.get(
    "/api/rules/{rule_id}",
    response_model=RuleResponse,
    tags=["Rules"],
    summary="Rule details",
    responses={404: {"model": ErrorResponse}},
)
async def get_rule(
    rule_id: str,
    user: dict[str, Any] = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        return _get_service().engine.get_rule(rule_id).to_dict()
    except UnknownRuleIDError as exc:
        raise _rule_not_found(exc)


@router.put(
    "/api/rules/{rule_id}",
    response_model=RuleResponse,
    tags=["Rules"],
    summary="Edit a rule",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def edit_rule(
    rule_id: str,
    request: RuleUpdate,
    user: dict[str, Any] = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Replace a rule's conditions / actions / name. Requires Admin role."""
    service = _get_service()
    try:
        conditions = (
            [Condition.from_dict(c.model_dump()) for c in request.conditions]
            if request.conditions is not None
            else None
        )
        actions = (
            [Action.from_dict(a.model_dump()) for a in request.actions]
            if request.actions is not None
            else None
        )
        updated = await _off_loop(
            service.edit_rule,
            rule_id,
            conditions=conditions,
            actions=actions,
            name=request.name,
            description=request.description,
        )
    except InterceptorValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except UnknownRuleIDError as exc:
        raise _rule_not_found(exc)
    return updated.to_dict()


@router.delete(
    "/api/rules/{rule_id}",
    response_model=RuleResponse,
    tags=["Rules"],
    summary="Delete a rule",
    responses={404: {"model": ErrorResponse}},
)
async def delete_rule(
    rule_id: str,
    user: dict[str, Any] = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    try:
        removed = await _off_loop(_get_service().delete_rule, rule_id)
    except UnknownRuleIDError as exc:
        raise _rule_not_found(exc)
    return removed.to_dict()


@router.post(
    "/api/rules/{rule_id}/enable",
    response_model=RuleResponse,
    tags=["Rules"],
    summary="Enable a rule",
    responses={404: {"model": ErrorResponse}},
)
async def enable_rule(
    rule_id: str,
    user: dict[str, Any] = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    try:
        updated = await _off_loop(_get_service().set_rule_enabled, rule_id, True)
    except UnknownRuleIDError as exc:
        raise _rule_not_found(exc)
    return updated.to_dict()


@router.post(
    "/api/rules/{rule_id}/disable",
    response_model=RuleResponse,
    tags=["Rules"],
    summary="Disable a rule",
    responses={404: {"model": ErrorResponse}},
)
async def disable_rule(
    rule_id: str,
    user: dict[str, Any] = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Stop a rule from matching. Existing blocks and counters are kept."""
    try:
        updated = await _off_loop(_get_service().set_rule_enabled, rule_id, False)
    except UnknownRuleIDError as exc:
        raise _rule_not_found(exc)
    return updated.to_dict()
