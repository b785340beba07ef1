"""
USB Gatekeeper - USB device admission policy for a single host.

Enumerates attached USB devices, classifies them as whitelisted, blocked
or available, and enables or disables them through an external device
control utility.
"""

__version__ = "0.1.0"
__author__ = "USB Gatekeeper Contributors"

from gatekeeper.config import GatekeeperConfig, load_config

__all__ = ["GatekeeperConfig", "load_config", "__version__"]
