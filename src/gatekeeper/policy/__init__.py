"""
Whitelist policy store and policy engine.
"""

from gatekeeper.policy.engine import (
    BulkResult,
    BulkStatus,
    Classification,
    DeviceFailure,
    PolicyEngine,
    WhitelistOutcome,
)
from gatekeeper.policy.store import PolicyStore, dump_whitelist, parse_whitelist

__all__ = [
    # Store
    "PolicyStore",
    "dump_whitelist",
    "parse_whitelist",
    # Engine
    "BulkResult",
    "BulkStatus",
    "Classification",
    "DeviceFailure",
    "PolicyEngine",
    "WhitelistOutcome",
]
