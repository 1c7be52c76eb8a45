"""UFW firewall bring-up and application profiles."""

import re
from typing import List, NamedTuple, Sequence

from hardn.config import HardnConfig, UfwAppProfile
from hardn.exceptions import CommandFailed
from hardn.log import HardnLogger
from hardn.system_info import Platform
from hardn.utils.file import FileSteward

UFW_PROFILES_FILE = "/etc/ufw/applications.d/hardn"

DEFAULT_INCOMING = "deny"
DEFAULT_OUTGOING = "allow"


class FirewallStatus(NamedTuple):
    """Parsed ``ufw status verbose``."""

    active: bool
    incoming: str
    outgoing: str
    rules: List[str]


def render_app_profiles(profiles: Sequence[UfwAppProfile]) -> str:
    """Render profiles in UFW's applications.d INI format."""
    stanzas = []
    for profile in profiles:
        stanzas.append(
            f"[{profile.name}]\n"
            f"title={profile.title}\n"
            f"description={profile.description}\n"
            f"ports={','.join(profile.ports)}\n\n"
        )
    return "".join(stanzas)


def parse_status(output: str) -> FirewallStatus:
    active = bool(re.search(r"^Status:\s*active", output, re.MULTILINE))
    incoming = outgoing = ""
    match = re.search(r"^Default:\s*(\w+) \(incoming\),\s*(\w+) \(outgoing\)", output, re.MULTILINE)
    if match:
        incoming, outgoing = match.group(1), match.group(2)

    rules: List[str] = []
    in_table = False
    for line in output.splitlines():
        if line.startswith("--"):
            in_table = True
            continue
        if in_table and line.strip():
            rules.append(line.strip())
    return FirewallStatus(active, incoming, outgoing, rules)


class FirewallConfigurator:
    """Default-deny UFW with SSH allowed and declared profiles enabled."""

    def __init__(
        self,
        config: HardnConfig,
        platform: Platform,
        steward: FileSteward,
        logger: HardnLogger,
    ) -> None:
        self.config = config
        self.platform = platform
        self.steward = steward
        self.logger = logger
        self.runner = platform.runner

    def configure(self) -> None:
        """Bring the firewall up.

        Raises:
            CommandFailed: If installing UFW, setting policies, allowing SSH,
                enabling a profile or enabling the firewall fails
        """
        self.logger.info("Configuring UFW firewall")
        port = self.config.ssh_port
        if port == 22:
            self.logger.warning(
                "You are using the default SSH port (22). "
                "Consider a non-standard port (e.g. 2208) to reduce automated attacks"
            )

        self.ensure_installed()
        self.set_default_policies()

        self.runner.run("ufw", "allow", f"{port}/tcp", "comment", "SSH")
        self.logger.success(f"Allowed SSH on port {port}/tcp")

        self.allow_ports()
        self.apply_app_profiles()

        self.runner.run("ufw", "--force", "enable")

        if self.platform.is_alpine:
            try:
                self.platform.services.enable_and_start("ufw")
            except CommandFailed as e:
                self.logger.error(f"Failed to add UFW to Alpine boot services: {e}")

        self.logger.success("UFW configured and enabled")

    def ensure_installed(self) -> None:
        if self.runner.available("ufw"):
            return
        self.logger.info("UFW not found, installing")
        self.platform.packages.install("ufw")

    def set_default_policies(self) -> None:
        for field, fixed in (
            ("ufw_default_incoming_policy", DEFAULT_INCOMING),
            ("ufw_default_outgoing_policy", DEFAULT_OUTGOING),
        ):
            configured = getattr(self.config, field)
            if configured != fixed:
                self.logger.warning(
                    f"{field}={configured} is advisory; applying {fixed}"
                )

        self.runner.run("ufw", "default", DEFAULT_INCOMING, "incoming")
        self.runner.run("ufw", "default", DEFAULT_OUTGOING, "outgoing")
        self.logger.success(
            f"Default policies: {DEFAULT_INCOMING} incoming, {DEFAULT_OUTGOING} outgoing"
        )

    def allow_ports(self) -> List[int]:
        """Allow ufw_allowed_ports as tcp; failures are logged and skipped.

        Returns:
            Ports that could not be allowed
        """
        failed: List[int] = []
        for port in self.config.ufw_allowed_ports:
            if port == self.config.ssh_port:
                continue
            try:
                self.runner.run("ufw", "allow", f"{port}/tcp")
            except CommandFailed as e:
                self.logger.error(f"Failed to allow port {port}/tcp: {e.output.strip() or e}")
                failed.append(port)
                continue
            self.logger.info(f"Allowed port {port}/tcp")
        return failed

    def apply_app_profiles(self) -> None:
        """Write the profiles file and enable each profile by name."""
        profiles = self.config.ufw_app_profiles
        if not profiles:
            self.logger.info("No UFW application profiles to configure")
            return

        self.steward.write(UFW_PROFILES_FILE, render_app_profiles(profiles))
        for profile in profiles:
            self.runner.run("ufw", "allow", profile.name)
            self.logger.success(f"Enabled UFW application profile: {profile.name}")

    def status(self) -> FirewallStatus:
        result = self.runner.query("ufw", "status", "verbose")
        if not result.success:
            return FirewallStatus(False, "", "", [])
        return parse_status(result.output)
