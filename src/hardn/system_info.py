"""Platform detection and capability binding for hardn."""

import os
import platform as _platform
import re
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from hardn.exceptions import NotRootError, PlatformUnsupported
from hardn.log import HardnLogger
from hardn.packages import ApkPackageTool, AptPackageTool, PackageTool
from hardn.services import OpenRCSupervisor, ServiceSupervisor, SystemdSupervisor
from hardn.types import OSFamily
from hardn.utils.command import CommandRunner
from hardn.utils.network import NetworkProbe

OS_RELEASE_PATH = Path("/etc/os-release")
PVE_DIR = Path("/etc/pve")

DEBIAN_IDS = ("debian", "ubuntu")


@dataclass(frozen=True)
class PlatformFacts:
    """Immutable description of the host OS."""

    os_family: OSFamily
    os_id: str
    os_version: str
    os_codename: str
    is_proxmox: bool = False
    id_like: Tuple[str, ...] = ()

    @property
    def is_ubuntu_like(self) -> bool:
        """Ubuntu itself or a derivative such as Mint or Pop!_OS."""
        return self.os_id == "ubuntu" or "ubuntu" in self.id_like

    def substitute_codename(self, line: str) -> str:
        """Replace the literal CODENAME token in a repository line."""
        return line.replace("CODENAME", self.os_codename)


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse os-release KEY=value lines into a mapping.

    Args:
        text: Contents of /etc/os-release

    Returns:
        Mapping with surrounding quotes stripped from values
    """
    info: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        info[key.strip()] = value.strip().strip("\"'")
    return info


def _codename(info: Dict[str, str]) -> str:
    for key in ("VERSION_CODENAME", "UBUNTU_CODENAME"):
        if info.get(key):
            return info[key]
    # Older releases only carry VERSION="12 (bookworm)"
    match = re.search(r"\(([A-Za-z]+)", info.get("VERSION", ""))
    return match.group(1).lower() if match else ""


def detect_platform(
    os_release: Union[str, Path] = OS_RELEASE_PATH,
    pve_dir: Union[str, Path] = PVE_DIR,
    kernel_release: Optional[str] = None,
) -> PlatformFacts:
    """Detect OS family, version, codename and the Proxmox flag.

    Args:
        os_release: Path to the os-release file
        pve_dir: Proxmox configuration directory
        kernel_release: Kernel release string, defaults to uname -r

    Returns:
        PlatformFacts for the host

    Raises:
        PlatformUnsupported: If the file is missing or the family is unknown
    """
    try:
        text = Path(os_release).read_text(encoding="utf-8")
    except OSError as e:
        raise PlatformUnsupported(f"Cannot read {os_release}: {e}") from e

    info = parse_os_release(text)
    os_id = info.get("ID", "").lower()
    id_like = info.get("ID_LIKE", "").lower().split()
    version = info.get("VERSION_ID", "")

    if os_id == "alpine":
        # Alpine has no codename; the version stands in for it
        return PlatformFacts(OSFamily.ALPINE, os_id, version, version, False)

    if os_id in DEBIAN_IDS or any(like in DEBIAN_IDS for like in id_like):
        if kernel_release is None:
            kernel_release = _platform.release()
        is_proxmox = (
            "pve" in kernel_release
            or shutil.which("pveversion") is not None
            or Path(pve_dir).is_dir()
        )
        return PlatformFacts(
            OSFamily.DEBIAN,
            os_id,
            version,
            _codename(info),
            is_proxmox,
            tuple(id_like),
        )

    raise PlatformUnsupported(
        f"Unsupported OS: {info.get('PRETTY_NAME') or os_id or 'unknown'}"
    )


def require_root() -> None:
    """Raise NotRootError unless running with effective UID 0."""
    if os.geteuid() != 0:
        raise NotRootError("This program must be run as root")


class Platform(ABC):
    """Capability set bound to one OS family."""

    family: OSFamily
    admin_group = ""
    ssh_service = ""

    def __init__(
        self,
        facts: PlatformFacts,
        runner: CommandRunner,
        logger: HardnLogger,
        network: Optional[NetworkProbe] = None,
    ) -> None:
        self.facts = facts
        self.runner = runner
        self.logger = logger
        self.packages = self._package_tool()
        self.services = self._supervisor()
        self.network = network or NetworkProbe(logger)

    @property
    def is_alpine(self) -> bool:
        return self.family == OSFamily.ALPINE

    @property
    def is_proxmox(self) -> bool:
        return self.facts.is_proxmox

    def check_subnet(self, prefix: str) -> bool:
        return self.network.in_subnet(prefix)

    @abstractmethod
    def _package_tool(self) -> PackageTool:
        """Package tool for this family."""

    @abstractmethod
    def _supervisor(self) -> ServiceSupervisor:
        """Init system supervisor for this family."""

    @abstractmethod
    def create_user(self, username: str) -> None:
        """Create a login account without a password."""

    @abstractmethod
    def grant_admin_group(self, username: str) -> None:
        """Add the account to the sudo-capable group."""


class DebianPlatform(Platform):
    """Debian, Ubuntu and Proxmox: apt and systemd."""

    family = OSFamily.DEBIAN
    admin_group = "sudo"
    ssh_service = "ssh"

    def _package_tool(self) -> PackageTool:
        return AptPackageTool(self.runner, self.logger)

    def _supervisor(self) -> ServiceSupervisor:
        return SystemdSupervisor(self.runner, self.logger)

    def create_user(self, username: str) -> None:
        self.runner.run("adduser", "--disabled-password", "--gecos", "", username)

    def grant_admin_group(self, username: str) -> None:
        self.runner.run("usermod", "-aG", self.admin_group, username)


class AlpinePlatform(Platform):
    """Alpine: apk and OpenRC."""

    family = OSFamily.ALPINE
    admin_group = "wheel"
    ssh_service = "sshd"

    def _package_tool(self) -> PackageTool:
        return ApkPackageTool(self.runner, self.logger)

    def _supervisor(self) -> ServiceSupervisor:
        return OpenRCSupervisor(self.runner, self.logger)

    @property
    def release_branch(self) -> str:
        """Repository branch such as v3.19 derived from VERSION_ID."""
        parts = self.facts.os_version.split(".")
        return "v" + ".".join(parts[:2])

    def create_user(self, username: str) -> None:
        self.runner.run("adduser", "-D", "-g", "", username)

    def grant_admin_group(self, username: str) -> None:
        self.runner.run("addgroup", username, self.admin_group)


def build_platform(
    facts: PlatformFacts,
    runner: CommandRunner,
    logger: HardnLogger,
    network: Optional[NetworkProbe] = None,
) -> Platform:
    """Bind the capability set for the detected family."""
    if facts.os_family == OSFamily.ALPINE:
        return AlpinePlatform(facts, runner, logger, network)
    return DebianPlatform(facts, runner, logger, network)
