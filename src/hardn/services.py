"""Service supervisor capability: systemd and OpenRC."""

from abc import ABC, abstractmethod

from hardn.log import HardnLogger
from hardn.utils.command import CommandRunner


class ServiceSupervisor(ABC):
    """Start, restart and enable system services."""

    def __init__(self, runner: CommandRunner, logger: HardnLogger) -> None:
        self.runner = runner
        self.logger = logger

    @abstractmethod
    def is_active(self, unit: str) -> bool:
        """Check if unit is running. Read-only, executes in dry-run too."""

    @abstractmethod
    def restart(self, unit: str) -> None:
        pass

    @abstractmethod
    def start(self, unit: str) -> None:
        pass

    @abstractmethod
    def enable(self, unit: str) -> None:
        """Enable unit at boot."""

    def daemon_reload(self) -> None:
        """Reload unit definitions; no-op where the supervisor has none."""

    def enable_and_start(self, unit: str) -> None:
        self.enable(unit)
        self.start(unit)


class SystemdSupervisor(ServiceSupervisor):
    """systemctl-backed supervisor for the Debian family."""

    def is_active(self, unit: str) -> bool:
        return self.runner.query("systemctl", "is-active", "--quiet", unit).success

    def restart(self, unit: str) -> None:
        self.runner.run("systemctl", "restart", unit)
        self.logger.info(f"Restarted {unit}")

    def start(self, unit: str) -> None:
        self.runner.run("systemctl", "start", unit)

    def enable(self, unit: str) -> None:
        self.runner.run("systemctl", "enable", unit)

    def daemon_reload(self) -> None:
        self.runner.run("systemctl", "daemon-reload")


class OpenRCSupervisor(ServiceSupervisor):
    """rc-service / rc-update supervisor for Alpine."""

    def is_active(self, unit: str) -> bool:
        return self.runner.query("rc-service", unit, "status").success

    def restart(self, unit: str) -> None:
        self.runner.run("rc-service", unit, "restart")
        self.logger.info(f"Restarted {unit}")

    def start(self, unit: str) -> None:
        self.runner.run("rc-service", unit, "start")

    def enable(self, unit: str) -> None:
        self.runner.run("rc-update", "add", unit, "default")
