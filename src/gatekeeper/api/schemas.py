"""
Pydantic schemas for API request/response validation.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

HEX4 = r"^[0-9a-fA-F]{4}$"


# ============================================================================
# Device Schemas
# ============================================================================


class DeviceResponse(BaseModel):
    """Scanned device."""

    device_id: str
    vid: str
    pid: str
    description: str
    manufacturer: str
    is_whitelisted: bool
    is_blocked: bool
    state: str
    last_seen: datetime


class ClassificationResponse(BaseModel):
    """Classified scan result."""

    available: list[DeviceResponse] = Field(default_factory=list)
    whitelisted: list[DeviceResponse] = Field(default_factory=list)
    blocked: list[DeviceResponse] = Field(default_factory=list)
    total: int = 0


class ActionResponse(BaseModel):
    """Result of a single block/unblock."""

    key: str
    action: str
    success: bool = True


class DeviceFailureSchema(BaseModel):
    """One device's failure in a bulk operation."""

    device: str
    vid: str
    pid: str
    error: str
    reason: str


class BulkResultResponse(BaseModel):
    """Result of block-all / unblock-all."""

    action: str
    status: str
    attempted: int
    succeeded: list[DeviceResponse] = Field(default_factory=list)
    failed: list[DeviceFailureSchema] = Field(default_factory=list)


# ============================================================================
# Whitelist Schemas
# ============================================================================


class WhitelistEntrySchema(BaseModel):
    """Whitelist entry."""

    vid: str = Field(..., pattern=HEX4)
    pid: str = Field(..., pattern=HEX4)
    description: str = ""
    manufacturer: str = ""


class WhitelistResponse(BaseModel):
    """Full whitelist."""

    entries: list[WhitelistEntrySchema] = Field(default_factory=list)
    count: int = 0


class WhitelistOutcomeResponse(BaseModel):
    """Result of adding a whitelist entry."""

    entry: WhitelistEntrySchema
    added: bool
    unblock_error: str | None = None


class PathRequest(BaseModel):
    """Filesystem path for backup/restore."""

    path: str = Field(..., min_length=1)


# ============================================================================
# System Schemas
# ============================================================================


class HealthCheck(BaseModel):
    """Health check response."""

    status: str
    version: str
    whitelist_entries: int
    control_backend: str | None = None


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: str | None = None
