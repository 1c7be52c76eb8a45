"""Hardening orchestrator."""

import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from hardn.config import HardnConfig, RuntimeEnvironment
from hardn.dns import DNSConfigurator
from hardn.exceptions import FileIOError, HardnError
from hardn.firewall import FirewallConfigurator
from hardn.log import HardnLogger
from hardn.packages import PackageManager
from hardn.security import SecurityAddons
from hardn.ssh import SSHConfigurator
from hardn.system_info import Platform, PlatformFacts, build_platform, detect_platform
from hardn.types import ActionState, MutationRecord
from hardn.users import UserProvisioner
from hardn.utils.command import CommandRunner
from hardn.utils.file import FileSteward
from hardn.utils.network import NetworkProbe


class Action(str, Enum):
    """Orchestrated actions, declared in their fixed execution order."""

    SOURCES = "sources"
    LINUX_PACKAGES = "linux-packages"
    PYTHON_PACKAGES = "python-packages"
    USER = "user"
    SSH = "ssh"
    DISABLE_ROOT = "disable-root"
    FIREWALL = "firewall"
    DNS = "dns"
    APPARMOR = "apparmor"
    LYNIS = "lynis"
    UNATTENDED_UPGRADES = "unattended-upgrades"


ACTION_ORDER: List[Action] = list(Action)

# An action is skipped when its prerequisite ran in the same invocation and failed fatally
PREREQUISITES: Dict[Action, Action] = {
    Action.SSH: Action.USER,
    Action.DISABLE_ROOT: Action.SSH,
}


@dataclass
class ActionOutcome:
    action: Action
    state: ActionState = ActionState.PENDING
    error: Optional[str] = None


@dataclass
class RunReport:
    """Terminal states of every action in a run."""

    outcomes: List[ActionOutcome] = field(default_factory=list)
    interrupted: bool = False
    mutations: List[MutationRecord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(o.state == ActionState.FAILED_FATAL for o in self.outcomes)

    def state(self, action: Action) -> Optional[ActionState]:
        for outcome in self.outcomes:
            if outcome.action == action:
                return outcome.state
        return None

    def with_state(self, state: ActionState) -> List[Action]:
        return [o.action for o in self.outcomes if o.state == state]


class Hardener:
    """Compose the configurators under run-all and selected-action modes."""

    def __init__(
        self,
        config: HardnConfig,
        platform: Platform,
        steward: FileSteward,
        logger: HardnLogger,
        environment: Optional[RuntimeEnvironment] = None,
    ) -> None:
        """Initialize hardener.

        Args:
            config: Loaded configuration
            platform: Capability set for the host
            steward: File steward for every mutation
            logger: Run logger
            environment: Process environment
        """
        self.config = config
        self.platform = platform
        self.steward = steward
        self.logger = logger
        self.environment = environment or RuntimeEnvironment()
        self.dry_run = steward.dry_run

        self.packages = PackageManager(config, platform, steward, logger)
        self.ssh = SSHConfigurator(config, platform, steward, logger)
        self.firewall = FirewallConfigurator(config, platform, steward, logger)
        self.dns = DNSConfigurator(config, platform, steward, logger)
        self.users = UserProvisioner(config, platform, steward, logger, self.environment)
        self.security = SecurityAddons(config, platform, steward, logger, self.packages)

        self._interrupted = False
        self._handlers: Dict[Action, Callable[[], Any]] = {
            Action.SOURCES: self.packages.write_sources,
            Action.LINUX_PACKAGES: self.packages.install_linux_packages,
            Action.PYTHON_PACKAGES: lambda: self.packages.install_python_packages(
                self.environment
            ),
            Action.USER: self.users.create_user,
            Action.SSH: self.ssh.configure,
            Action.DISABLE_ROOT: self.ssh.disable_root,
            Action.FIREWALL: self.firewall.configure,
            Action.DNS: self.dns.configure,
            Action.APPARMOR: self.security.setup_apparmor,
            Action.LYNIS: self.security.setup_lynis,
            Action.UNATTENDED_UPGRADES: self.security.setup_unattended_upgrades,
        }

    @classmethod
    def create(
        cls,
        config: HardnConfig,
        logger: HardnLogger,
        facts: Optional[PlatformFacts] = None,
        runner: Optional[CommandRunner] = None,
        root: Union[str, Path] = "/",
        environment: Optional[RuntimeEnvironment] = None,
        network: Optional[NetworkProbe] = None,
    ) -> "Hardener":
        """Wire a hardener for the current host.

        Raises:
            PlatformUnsupported: If the OS cannot be detected or is not supported
        """
        facts = facts or detect_platform()
        runner = runner or CommandRunner(logger, dry_run=config.dry_run)
        steward = FileSteward(
            logger,
            config.backup_path,
            enable_backups=config.enable_backups,
            dry_run=config.dry_run,
            root=root,
        )
        platform = build_platform(facts, runner, logger, network)
        return cls(config, platform, steward, logger, environment)

    def check_subnet(self, prefix: str) -> bool:
        return self.platform.check_subnet(prefix)

    def plan_all(self) -> List[Action]:
        """Actions run-all performs for this configuration, in order."""
        c = self.config
        enabled = {
            Action.SOURCES: True,
            Action.LINUX_PACKAGES: True,
            Action.PYTHON_PACKAGES: False,
            Action.USER: bool(c.username),
            Action.SSH: True,
            Action.DISABLE_ROOT: c.disable_root,
            Action.FIREWALL: c.enable_ufw_ssh_policy,
            Action.DNS: c.configure_dns,
            Action.APPARMOR: c.enable_app_armor,
            Action.LYNIS: c.enable_lynis,
            Action.UNATTENDED_UPGRADES: c.enable_unattended_upgrades,
        }
        return [action for action in ACTION_ORDER if enabled[action]]

    def run_all(self) -> RunReport:
        self._start()
        try:
            self.ensure_hushlogin()
        except FileIOError as e:
            self.logger.warning(f"Could not create .hushlogin: {e}")
        return self._run(self.plan_all())

    def run_selected(self, actions: Iterable[Action]) -> RunReport:
        """Run a subset of actions in the fixed order, whatever order they came in."""
        selected = set(actions)
        self._start()
        return self._run([action for action in ACTION_ORDER if action in selected])

    def execute(self, action: Action) -> Any:
        """Run a single action without state tracking."""
        return self._handlers[action]()

    def ensure_hushlogin(self) -> None:
        self.users.ensure_hushlogin(Path.home())

    def _start(self) -> None:
        self.logger.header()
        facts = self.platform.facts
        self.logger.info(
            f"Detected {facts.os_id} {facts.os_version}"
            + (f" ({facts.os_codename})" if facts.os_codename else "")
            + (", Proxmox" if facts.is_proxmox else "")
        )
        if self.dry_run:
            self.logger.info("Dry-run mode: no changes will be applied")

    def _run(self, actions: List[Action]) -> RunReport:
        report = RunReport([ActionOutcome(a) for a in actions])
        first_mutation = len(self.steward.mutations)
        with self._interrupt_guard():
            for outcome in report.outcomes:
                if self._interrupted:
                    report.interrupted = True
                    self._finish(outcome, ActionState.SKIPPED, "interrupted")
                    continue

                prerequisite = PREREQUISITES.get(outcome.action)
                if prerequisite and report.state(prerequisite) == ActionState.FAILED_FATAL:
                    self._finish(
                        outcome, ActionState.SKIPPED, f"{prerequisite.value} failed"
                    )
                    continue

                self._attempt(outcome)

            if self._interrupted:
                report.interrupted = True

        succeeded = len(report.with_state(ActionState.SUCCEEDED))
        failed = len(report.with_state(ActionState.FAILED_FATAL)) + len(
            report.with_state(ActionState.FAILED_NONFATAL)
        )
        report.mutations = self.steward.mutations[first_mutation:]
        verb = "previewed" if self.dry_run else "written"
        summary = (
            f"Run finished: {succeeded} succeeded, {failed} failed, "
            f"{len(report.mutations)} files {verb}"
        )
        if report.ok:
            self.logger.success(summary)
        else:
            self.logger.error(summary)
        return report

    def _attempt(self, outcome: ActionOutcome) -> None:
        outcome.state = ActionState.PREVIEW if self.dry_run else ActionState.EXECUTING
        try:
            self.execute(outcome.action)
        except HardnError as e:
            if e.fatal:
                self.logger.error(f"{outcome.action.value} failed: {e}")
                self._finish(outcome, ActionState.FAILED_FATAL, str(e))
            else:
                self.logger.warning(f"{outcome.action.value} completed with errors: {e}")
                self._finish(outcome, ActionState.FAILED_NONFATAL, str(e))
            return
        self._finish(outcome, ActionState.SUCCEEDED)

    def _finish(
        self, outcome: ActionOutcome, state: ActionState, error: Optional[str] = None
    ) -> None:
        outcome.state = state
        outcome.error = error
        if error and state == ActionState.SKIPPED:
            self.logger.info(
                "action finished",
                action=outcome.action.value,
                state=state.value,
                reason=error,
            )
        else:
            self.logger.info(
                "action finished", action=outcome.action.value, state=state.value
            )

    @contextmanager
    def _interrupt_guard(self) -> Iterator[None]:
        """Let the current action finish on SIGINT; later actions are skipped."""
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        def handler(signum: int, frame: Any) -> None:
            self._interrupted = True
            self.logger.warning("Interrupt received, finishing current action")

        previous = signal.signal(signal.SIGINT, handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, previous)

    def interrupt(self) -> None:
        """Request that no further actions start."""
        self._interrupted = True
