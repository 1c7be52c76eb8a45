"""Package tools and repository sources."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Iterator, List, Optional

from hardn.config import HardnConfig, RuntimeEnvironment
from hardn.exceptions import CommandFailed, PackageInstallPartial
from hardn.log import HardnLogger
from hardn.utils.command import CommandRunner
from hardn.utils.file import FileSteward

if TYPE_CHECKING:
    from hardn.system_info import Platform

APT_SOURCES = "/etc/apt/sources.list"
APT_SOURCES_DIR = "/etc/apt/sources.list.d"
APK_REPOSITORIES = "/etc/apk/repositories"
ALPINE_MIRROR = "https://dl-cdn.alpinelinux.org/alpine"

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class PackageTool(ABC):
    """Install, query and refresh packages on one family."""

    name = ""

    def __init__(self, runner: CommandRunner, logger: HardnLogger) -> None:
        self.runner = runner
        self.logger = logger

    @abstractmethod
    def is_installed(self, package: str) -> bool:
        """Query installed state. Read-only, executes in dry-run too."""

    @abstractmethod
    def install(self, package: str) -> None:
        """Install one package.

        Raises:
            CommandFailed: If the package tool exits non-zero
        """

    @abstractmethod
    def update_index(self) -> None:
        pass


class AptPackageTool(PackageTool):
    """apt-get / dpkg-query."""

    name = "apt"

    def is_installed(self, package: str) -> bool:
        result = self.runner.query("dpkg-query", "-W", "-f=${Status}", package)
        return result.success and "install ok installed" in result.output

    def install(self, package: str) -> None:
        self.runner.run("apt-get", "install", "-y", package, env=APT_ENV)

    def update_index(self) -> None:
        self.runner.run("apt-get", "update", env=APT_ENV)

    def list_installed(self) -> List[str]:
        """Names of all installed packages, architecture qualifiers stripped."""
        result = self.runner.query("dpkg-query", "-W", "-f=${binary:Package}\n")
        if not result.success:
            return []
        return [
            line.split(":", 1)[0]
            for line in result.output.splitlines()
            if line.strip()
        ]

    def hold(self, packages: List[str]) -> None:
        self.runner.run("apt-mark", "hold", *packages)

    def unhold(self, packages: List[str]) -> None:
        self.runner.run("apt-mark", "unhold", *packages)


class ApkPackageTool(PackageTool):
    """apk add / apk info -e."""

    name = "apk"

    def is_installed(self, package: str) -> bool:
        return self.runner.query("apk", "info", "-e", package).success

    def install(self, package: str) -> None:
        self.runner.run("apk", "add", package)

    def update_index(self) -> None:
        self.runner.run("apk", "update")


@dataclass
class InstallReport:
    """Outcome of an install batch."""

    installed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "InstallReport") -> "InstallReport":
        self.installed.extend(other.installed)
        self.skipped.extend(other.skipped)
        self.failed.extend(other.failed)
        return self


def _unique(packages: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for package in packages:
        package = package.strip()
        if package and package not in seen:
            seen.append(package)
    return seen


class PackageManager:
    """Repository sources and package sets for the bound platform."""

    def __init__(
        self,
        config: HardnConfig,
        platform: "Platform",
        steward: FileSteward,
        logger: HardnLogger,
    ) -> None:
        self.config = config
        self.platform = platform
        self.steward = steward
        self.logger = logger
        self.tool = platform.packages

    def write_sources(self) -> None:
        """Rewrite the family's repository list and refresh the index."""
        if self.platform.is_alpine:
            self._write_alpine_repositories()
        else:
            self._write_debian_sources()
            if self.platform.is_proxmox:
                self.write_proxmox_sources()

        self.tool.update_index()
        self.logger.success("Package sources updated")

    def _write_debian_sources(self) -> None:
        if not self.config.debian_repos:
            self.logger.warning(
                f"No debianRepos configured, leaving {APT_SOURCES} unchanged"
            )
            return
        self.steward.write(APT_SOURCES, self._render(self.config.debian_repos))
        self.logger.info(f"Wrote {APT_SOURCES} for {self.platform.facts.os_codename}")

    def _write_alpine_repositories(self) -> None:
        branch = self.platform.release_branch
        lines = [
            f"{ALPINE_MIRROR}/{branch}/main",
            f"{ALPINE_MIRROR}/{branch}/community",
        ]
        if self.config.alpine_testing_repo:
            lines.append(f"@testing {ALPINE_MIRROR}/edge/testing")
        self.steward.write(APK_REPOSITORIES, "\n".join(lines) + "\n")
        self.logger.info(f"Wrote {APK_REPOSITORIES} for Alpine {branch}")

    def write_proxmox_sources(self) -> None:
        """Write the Proxmox repository overlay under sources.list.d."""
        overlay = [
            ("pve-install-repo.list", self.config.proxmox_src_repos),
            ("ceph.list", self.config.proxmox_ceph_repo),
            ("pve-enterprise.list", self.config.proxmox_enterprise_repo),
        ]
        for name, lines in overlay:
            path = f"{APT_SOURCES_DIR}/{name}"
            if not lines:
                self.logger.info(f"No repositories configured for {path}, skipping")
                continue
            self.steward.write(path, self._render(lines))
        self.logger.info("Proxmox repository overlay written")

    def _render(self, lines: List[str]) -> str:
        """Join repo lines, substituting CODENAME except on commented lines."""
        rendered = []
        for line in lines:
            if line.lstrip().startswith("#"):
                rendered.append(line)
            else:
                rendered.append(self.platform.facts.substitute_codename(line))
        return "\n".join(rendered) + "\n"

    def _protected_installed(self) -> List[str]:
        patterns = self.config.proxmox_package_patterns
        return [
            name
            for name in self.tool.list_installed()
            if any(name.startswith(p) for p in patterns)
        ]

    @contextmanager
    def protect_proxmox_packages(self) -> Iterator[List[str]]:
        """Hold installed Proxmox packages for the duration of the block."""
        if not self.platform.is_proxmox or self.platform.is_alpine:
            yield []
            return

        held = self._protected_installed()
        if held:
            self.tool.hold(held)
            self.logger.info(f"Holding {len(held)} Proxmox packages")
        try:
            yield held
        finally:
            if held:
                self.tool.unhold(held)
                self.logger.info("Released Proxmox package holds")

    def _install(self, packages: Iterable[str], label: str) -> InstallReport:
        report = InstallReport()
        packages = _unique(packages)
        if not packages:
            return report

        self.logger.info(f"Installing {label} packages: {' '.join(packages)}")
        for package in packages:
            if self.tool.is_installed(package):
                self.logger.info(f"{package} is already installed")
                report.skipped.append(package)
                continue
            try:
                self.tool.install(package)
            except CommandFailed as e:
                self.logger.error(f"Failed to install {package}: {e.output.strip() or e}")
                report.failed.append(package)
                continue
            if not self.steward.dry_run:
                self.logger.install(package)
            report.installed.append(package)
        return report

    def install_packages(self, packages: Iterable[str], label: str = "") -> InstallReport:
        """Install a batch, skipping what is already present.

        Args:
            packages: Package names
            label: Name of the set for log lines

        Returns:
            InstallReport for the batch

        Raises:
            PackageInstallPartial: If any package failed (non-fatal)
        """
        with self.protect_proxmox_packages():
            report = self._install(packages, label or "requested")
        if report.failed:
            raise PackageInstallPartial(report.failed, report)
        return report

    def linux_package_sets(self) -> List[tuple]:
        """(label, packages) pairs for core, DMZ and, outside the DMZ, LAB."""
        c = self.config
        if self.platform.is_alpine:
            core, dmz, lab = c.alpine_core_packages, c.alpine_dmz_packages, c.alpine_lab_packages
        else:
            core, dmz, lab = c.linux_core_packages, c.linux_dmz_packages, c.linux_lab_packages

        sets = [("core", core), ("DMZ", dmz)]
        if self.platform.check_subnet(c.dmz_subnet):
            self.logger.info("Host is in the DMZ subnet, skipping LAB packages")
        else:
            sets.append(("LAB", lab))
        return sets

    def install_linux_packages(self) -> InstallReport:
        """Install core + DMZ (+ LAB) sets for the platform family."""
        sets = self.linux_package_sets()
        report = InstallReport()
        if not any(packages for _, packages in sets):
            self.logger.info("No Linux packages configured")
            return report

        self.tool.update_index()
        with self.protect_proxmox_packages():
            for label, packages in sets:
                report.merge(self._install(packages, label))

        if report.failed:
            raise PackageInstallPartial(report.failed, report)
        self.logger.success("Linux packages installed")
        return report

    def install_python_packages(
        self, environment: Optional[RuntimeEnvironment] = None
    ) -> InstallReport:
        """Install Python system packages, then pip packages (Debian family).

        Args:
            environment: Process environment, consulted for WSL

        Returns:
            InstallReport for the system packages
        """
        c = self.config
        report = InstallReport()

        if self.platform.is_alpine:
            report.merge(self._install(c.alpine_python_packages, "Python"))
        else:
            environment = environment or RuntimeEnvironment()
            packages = list(c.python_packages)
            if not environment.is_wsl:
                packages.extend(c.non_wsl_python_packages)
            if packages:
                self.tool.update_index()
                with self.protect_proxmox_packages():
                    report.merge(self._install(packages, "Python"))
            if c.python_pip_packages:
                self._install_pip(c.python_pip_packages)

        if report.failed:
            raise PackageInstallPartial(report.failed, report)
        self.logger.success("Python packages installed")
        return report

    def _install_pip(self, packages: List[str]) -> None:
        runner = self.platform.runner
        if self.config.use_uv_package_manager:
            if not runner.available("uv"):
                self.logger.info("uv not found, installing it with pip3")
                runner.run("pip3", "install", "uv")
            runner.run("uv", "pip", "install", "--system", *packages)
        else:
            runner.run("pip3", "install", *packages)
        self.logger.info(f"Installed pip packages: {' '.join(packages)}")
