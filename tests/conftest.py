"""Pytest configuration and fixtures."""

import os
import pwd
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pytest

from hardn.config import HardnConfig
from hardn.hardener import Hardener
from hardn.log import HardnLogger
from hardn.system_info import Platform, PlatformFacts, build_platform
from hardn.types import CommandResult, OSFamily
from hardn.users import UserProvisioner
from hardn.utils.command import CommandRunner
from hardn.utils.file import FileSteward
from hardn.utils.network import NetworkProbe

FIXED_NOW = datetime(2026, 10, 19, 12, 30, 45)
BACKUP_DIR = "/var/backups/hardn"

# Commands that only inspect state and may run in dry-run mode
READ_ONLY = {
    ("dpkg-query",),
    ("apk", "info"),
    ("systemctl", "is-active"),
    ("rc-service", "systemd-resolved", "status"),
    ("visudo", "-c"),
    ("sshd", "-t"),
    ("ufw", "status"),
    ("su",),
}


class RecordingRunner(CommandRunner):
    """CommandRunner that records argv and answers from canned responses."""

    def __init__(
        self,
        logger: HardnLogger,
        dry_run: bool = False,
        available: Iterable[str] = (),
    ) -> None:
        super().__init__(logger, dry_run=dry_run)
        self.calls: List[List[str]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self.responses: Dict[Tuple[str, ...], CommandResult] = {}
        self.commands = set(available)

    def respond(self, *prefix: str, output: str = "", code: int = 0) -> None:
        """Answer any argv starting with prefix; the longest prefix wins."""
        self.responses[tuple(prefix)] = CommandResult(output, code)

    def available(self, command: str) -> bool:
        return command in self.commands

    def _execute(self, argv, env=None, input=None) -> CommandResult:
        self.calls.append(list(argv))
        self.envs.append(dict(env) if env else None)
        best: Optional[Tuple[str, ...]] = None
        for prefix in self.responses:
            if tuple(argv[: len(prefix)]) == prefix:
                if best is None or len(prefix) > len(best):
                    best = prefix
        if best is None:
            return CommandResult("", 0)
        return self.responses[best]

    def ran(self, *argv: str) -> bool:
        return list(argv) in self.calls

    def index(self, *argv: str) -> int:
        return self.calls.index(list(argv))

    def mutating_calls(self) -> List[List[str]]:
        return [
            call
            for call in self.calls
            if not any(tuple(call[: len(p)]) == p for p in READ_ONLY)
        ]


class StaticNetworkProbe(NetworkProbe):
    """NetworkProbe with fixed addresses."""

    def __init__(self, logger: HardnLogger, addresses: Iterable[str] = ()) -> None:
        super().__init__(logger)
        self.addresses = list(addresses)

    def ipv4_addresses(self) -> List[str]:
        return list(self.addresses)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from the invoking shell's sudo and hardn variables."""
    for name in ("HARDN_CONFIG", "SUDO_USER", "SUDO_UID", "WSL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", "/root")


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """Directory standing in for the host's /."""
    host = tmp_path / "root"
    host.mkdir()
    return host


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "hardn.log"


@pytest.fixture
def logger(log_path: Path) -> HardnLogger:
    log = HardnLogger(log_file=log_path, silent=True)
    yield log
    log.close()


@pytest.fixture
def read_log(log_path: Path) -> Callable[[], str]:
    return lambda: log_path.read_text() if log_path.exists() else ""


@pytest.fixture
def debian_facts() -> PlatformFacts:
    return PlatformFacts(OSFamily.DEBIAN, "debian", "12", "bookworm", False)


@pytest.fixture
def proxmox_facts() -> PlatformFacts:
    return PlatformFacts(OSFamily.DEBIAN, "debian", "12", "bookworm", True)


@pytest.fixture
def alpine_facts() -> PlatformFacts:
    return PlatformFacts(OSFamily.ALPINE, "alpine", "3.19.1", "3.19.1", False)


@pytest.fixture
def make_steward(logger: HardnLogger, root: Path) -> Callable[..., FileSteward]:
    def factory(dry_run: bool = False, enable_backups: bool = True) -> FileSteward:
        return FileSteward(
            logger,
            BACKUP_DIR,
            enable_backups=enable_backups,
            dry_run=dry_run,
            root=root,
            clock=lambda: FIXED_NOW,
        )

    return factory


@pytest.fixture
def steward(make_steward: Callable[..., FileSteward]) -> FileSteward:
    return make_steward()


@pytest.fixture
def make_runner(logger: HardnLogger) -> Callable[..., RecordingRunner]:
    def factory(dry_run: bool = False, available: Iterable[str] = ()) -> RecordingRunner:
        return RecordingRunner(logger, dry_run=dry_run, available=available)

    return factory


@pytest.fixture
def runner(make_runner: Callable[..., RecordingRunner]) -> RecordingRunner:
    return make_runner()


@pytest.fixture
def make_platform(logger: HardnLogger) -> Callable[..., Platform]:
    def factory(
        facts: PlatformFacts, runner: CommandRunner, addresses: Iterable[str] = ()
    ) -> Platform:
        return build_platform(facts, runner, logger, StaticNetworkProbe(logger, addresses))

    return factory


@pytest.fixture
def fake_user(monkeypatch: pytest.MonkeyPatch, root: Path) -> Callable[..., None]:
    """Control what account lookups report.

    Calling with exists=True makes every lookup return an account owned by the
    test process with its home under /home.
    """

    def install(exists: bool = False, groups: Iterable[str] = ()) -> None:
        def lookup(username: str) -> Optional[pwd.struct_passwd]:
            if not exists:
                return None
            return pwd.struct_passwd(
                (username, "x", os.getuid(), os.getgid(), "", f"/home/{username}", "/bin/sh")
            )

        member_of = set(groups)
        monkeypatch.setattr(UserProvisioner, "lookup", staticmethod(lookup))
        monkeypatch.setattr(
            UserProvisioner, "in_group", staticmethod(lambda user, group: group in member_of)
        )

    install()
    return install


@pytest.fixture
def make_hardener(
    logger: HardnLogger,
    make_steward: Callable[..., FileSteward],
    make_platform: Callable[..., Platform],
    debian_facts: PlatformFacts,
) -> Callable[..., Tuple[Hardener, RecordingRunner]]:
    def factory(
        config: HardnConfig,
        facts: Optional[PlatformFacts] = None,
        available: Iterable[str] = (),
        addresses: Iterable[str] = (),
    ) -> Tuple[Hardener, RecordingRunner]:
        runner = RecordingRunner(logger, dry_run=config.dry_run, available=available)
        platform = make_platform(facts or debian_facts, runner, addresses)
        steward = make_steward(
            dry_run=config.dry_run, enable_backups=config.enable_backups
        )
        return Hardener(config, platform, steward, logger), runner

    return factory
