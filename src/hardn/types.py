"""Type definitions for hardn."""

from enum import Enum
from typing import NamedTuple, Optional


class OSFamily(str, Enum):
    """Supported OS families."""

    DEBIAN = "debian"
    ALPINE = "alpine"


class ResolverStack(str, Enum):
    """DNS resolver back-ends, in detection order."""

    SYSTEMD_RESOLVED = "systemd-resolved"
    RESOLVCONF = "resolvconf"
    DIRECT = "direct"


class ActionState(str, Enum):
    """Lifecycle of a single orchestrated action."""

    PENDING = "pending"
    PREVIEW = "preview"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED_NONFATAL = "failed-nonfatal"
    FAILED_FATAL = "failed-fatal"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (
            ActionState.SUCCEEDED,
            ActionState.FAILED_NONFATAL,
            ActionState.FAILED_FATAL,
            ActionState.SKIPPED,
        )


class CommandResult(NamedTuple):
    """Result of command execution, stdout and stderr combined."""

    output: str
    return_code: int = 0

    @property
    def success(self) -> bool:
        return self.return_code == 0


class MutationRecord(NamedTuple):
    """Trace of a single file change."""

    source: str
    backup: Optional[str]
    content: bytes
    mode: int
