"""Custom exceptions for hardn."""

from typing import Any, Optional, Sequence


class HardnError(Exception):
    """Base exception for all hardn errors."""

    fatal = True


class PlatformUnsupported(HardnError):
    """Raised when the OS family is neither Debian-like nor Alpine."""

    pass


class NotRootError(HardnError):
    """Raised when the effective UID is not 0."""

    pass


class ConfigMissing(HardnError):
    """Raised when an explicit or environment config path does not exist."""

    pass


class ConfigParseError(HardnError):
    """Raised when a configuration file cannot be parsed or validated."""

    pass


class FileIOError(HardnError):
    """Raised when a read, write or backup fails."""

    pass


class ValidationError(HardnError):
    """Raised when validation fails."""

    pass


class CommandFailed(HardnError):
    """Raised when an external tool exits non-zero."""

    def __init__(
        self, name: str, args: Sequence[str], output: str, code: int
    ) -> None:
        self.name = name
        self.arguments = list(args)
        self.output = output
        self.code = code
        command = " ".join([name, *self.arguments])
        message = f"Command failed ({code}): {command}"
        if output.strip():
            message += f"\n{output.strip()}"
        super().__init__(message)


class NoNameservers(HardnError):
    """Raised when DNS configuration is requested without nameservers."""

    pass


class SudoersInvalid(HardnError):
    """Raised when visudo rejects a candidate sudoers drop-in."""

    pass


class SSHConfigMissing(HardnError):
    """Raised when the active sshd configuration file is absent."""

    pass


class PackageInstallPartial(HardnError):
    """Raised when some packages of a batch failed to install."""

    fatal = False

    def __init__(self, failed: Sequence[str], report: Optional[Any] = None) -> None:
        self.failed = list(failed)
        self.report = report
        super().__init__(f"Failed to install: {', '.join(self.failed)}")
