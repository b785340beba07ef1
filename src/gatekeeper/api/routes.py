"""
REST API routes for USB Gatekeeper.

Every route maps onto one policy engine operation. Engine errors are
translated to HTTP statuses by the handlers registered in create_app().
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from gatekeeper import __version__
from gatekeeper.api.auth import require_api_key, require_key_auth_mode
from gatekeeper.api.schemas import (
    ActionResponse,
    BulkResultResponse,
    ClassificationResponse,
    ErrorResponse,
    HealthCheck,
    PathRequest,
    WhitelistEntrySchema,
    WhitelistOutcomeResponse,
    WhitelistResponse,
)
from gatekeeper.devices.identity import DeviceKey
from gatekeeper.devices.models import WhitelistEntry
from gatekeeper.errors import DeviceControlError
from gatekeeper.policy.engine import PolicyEngine

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    responses={code: {"model": ErrorResponse} for code in (404, 409, 500, 502, 503)},
)


# ============================================================================
# Dependencies
# ============================================================================


class ServiceDependencies:
    """
    Container for service dependencies.

    Set after app initialization to inject the policy engine.
    """

    engine: PolicyEngine | None = None


deps = ServiceDependencies()


def get_engine() -> PolicyEngine:
    """Get policy engine instance."""
    if deps.engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Policy engine not initialized",
        )
    return deps.engine


def parse_key(key: str) -> DeviceKey:
    """Parse a VID:PID path parameter."""
    try:
        return DeviceKey.parse(key)
    except ValueError as e:
        raise HTTPException(
            status_code=422,
            detail=str(e),
        ) from e


def entry_schema(entry: WhitelistEntry) -> WhitelistEntrySchema:
    return WhitelistEntrySchema(
        vid=entry.key.vid,
        pid=entry.key.pid,
        description=entry.description,
        manufacturer=entry.manufacturer,
    )


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthCheck, tags=["Health"])
def health_check(engine: PolicyEngine = Depends(get_engine)) -> HealthCheck:
    """Report service status; degraded when device control is unavailable."""
    try:
        backend = engine.control.name
    except DeviceControlError as e:
        logger.warning("Device control unavailable: %s", e)
        return HealthCheck(
            status="degraded",
            version=__version__,
            whitelist_entries=len(engine.store),
            control_backend=None,
        )
    return HealthCheck(
        status="healthy",
        version=__version__,
        whitelist_entries=len(engine.store),
        control_backend=backend,
    )


# ============================================================================
# Device Endpoints
# ============================================================================


@router.get(
    "/devices",
    response_model=ClassificationResponse,
    tags=["Devices"],
    dependencies=[Depends(require_api_key)],
)
def list_devices(engine: PolicyEngine = Depends(get_engine)) -> ClassificationResponse:
    """Scan attached devices and classify them."""
    classification = engine.classify(engine.scan())
    data = classification.to_dict()
    return ClassificationResponse(**data, total=classification.total)


@router.post(
    "/devices/block-all",
    response_model=BulkResultResponse,
    tags=["Devices"],
    dependencies=[Depends(require_api_key)],
)
def block_all(engine: PolicyEngine = Depends(get_engine)) -> BulkResultResponse:
    """Block every available device."""
    return BulkResultResponse(**engine.block_all().to_dict())


@router.post(
    "/devices/unblock-all",
    response_model=BulkResultResponse,
    tags=["Devices"],
    dependencies=[Depends(require_api_key)],
)
def unblock_all(engine: PolicyEngine = Depends(get_engine)) -> BulkResultResponse:
    """Unblock every blocked device."""
    return BulkResultResponse(**engine.unblock_all().to_dict())


@router.post(
    "/devices/{key}/block",
    response_model=ActionResponse,
    tags=["Devices"],
    dependencies=[Depends(require_api_key)],
)
def block_device(key: str, engine: PolicyEngine = Depends(get_engine)) -> ActionResponse:
    """Block all instances of a VID:PID."""
    device_key = parse_key(key)
    engine.block_key(device_key)
    return ActionResponse(key=str(device_key), action="block")


@router.post(
    "/devices/{key}/unblock",
    response_model=ActionResponse,
    tags=["Devices"],
    dependencies=[Depends(require_api_key)],
)
def unblock_device(key: str, engine: PolicyEngine = Depends(get_engine)) -> ActionResponse:
    """Unblock all instances of a VID:PID."""
    device_key = parse_key(key)
    engine.unblock_key(device_key)
    return ActionResponse(key=str(device_key), action="unblock")


# ============================================================================
# Whitelist Endpoints
# ============================================================================


@router.get(
    "/whitelist",
    response_model=WhitelistResponse,
    tags=["Whitelist"],
    dependencies=[Depends(require_api_key)],
)
def get_whitelist(engine: PolicyEngine = Depends(get_engine)) -> WhitelistResponse:
    """List whitelist entries."""
    entries = [entry_schema(entry) for entry in engine.whitelist]
    return WhitelistResponse(entries=entries, count=len(entries))


@router.post(
    "/whitelist",
    response_model=WhitelistOutcomeResponse,
    tags=["Whitelist"],
    dependencies=[Depends(require_api_key)],
)
def add_whitelist_entry(
    request: WhitelistEntrySchema,
    engine: PolicyEngine = Depends(get_engine),
) -> WhitelistOutcomeResponse:
    """Whitelist a VID:PID, unblocking it if attached and blocked."""
    outcome = engine.whitelist_key(
        DeviceKey(request.vid, request.pid),
        description=request.description,
        manufacturer=request.manufacturer,
    )
    return WhitelistOutcomeResponse(
        entry=entry_schema(outcome.entry),
        added=outcome.added,
        unblock_error=str(outcome.unblock_error) if outcome.unblock_error else None,
    )


@router.delete(
    "/whitelist/{key}",
    tags=["Whitelist"],
    dependencies=[Depends(require_api_key)],
)
def remove_whitelist_entry(
    key: str,
    engine: PolicyEngine = Depends(get_engine),
) -> dict[str, bool]:
    """Remove a VID:PID from the whitelist."""
    return {"removed": engine.remove_key(parse_key(key))}


@router.post(
    "/whitelist/backup",
    tags=["Whitelist"],
    dependencies=[Depends(require_key_auth_mode), Depends(require_api_key)],
)
def backup_whitelist(
    request: PathRequest,
    engine: PolicyEngine = Depends(get_engine),
) -> dict[str, str]:
    """Copy the whitelist file to a path on the host."""
    destination = engine.backup_whitelist(request.path)
    return {"path": str(destination)}


@router.post(
    "/whitelist/restore",
    response_model=WhitelistResponse,
    tags=["Whitelist"],
    dependencies=[Depends(require_key_auth_mode), Depends(require_api_key)],
)
def restore_whitelist(
    request: PathRequest,
    engine: PolicyEngine = Depends(get_engine),
) -> WhitelistResponse:
    """Replace the whitelist with a backup file."""
    engine.restore_whitelist(request.path)
    entries = [entry_schema(entry) for entry in engine.whitelist]
    return WhitelistResponse(entries=entries, count=len(entries))
