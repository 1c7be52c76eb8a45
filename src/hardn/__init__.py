"""hardn - Linux hardening for Debian, Ubuntu, Proxmox and Alpine hosts."""

__version__ = "1.0.0"
__build_date__ = "2026-10-19"
__commit__ = "unknown"
__license__ = "MIT"

from hardn.exceptions import (
    CommandFailed,
    ConfigMissing,
    ConfigParseError,
    HardnError,
    PlatformUnsupported,
)

__all__ = [
    "HardnError",
    "CommandFailed",
    "ConfigMissing",
    "ConfigParseError",
    "PlatformUnsupported",
]
