"""Security add-ons: AppArmor, Lynis and unattended upgrades."""

import re
from typing import List, Optional

from hardn.config import HardnConfig
from hardn.log import HardnLogger
from hardn.packages import PackageManager
from hardn.system_info import Platform
from hardn.utils.file import FileSteward

UNATTENDED_CONF = "/etc/apt/apt.conf.d/50unattended-upgrades"
AUTO_UPGRADES_CONF = "/etc/apt/apt.conf.d/20auto-upgrades"
APK_UPGRADE_SCRIPT = "/etc/periodic/daily/apk-upgrade"

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
HARDENING_INDEX = re.compile(r"Hardening index\s*:\s*\[?(\d+)")


def parse_hardening_index(output: str) -> Optional[int]:
    """Extract the Lynis hardening index from audit output."""
    match = HARDENING_INDEX.search(ANSI_ESCAPE.sub("", output))
    return int(match.group(1)) if match else None


def render_unattended_upgrades(
    os_id: str, blacklist: Optional[List[str]] = None
) -> str:
    """50unattended-upgrades limited to security origins."""
    if os_id == "ubuntu":
        origins = [
            "Unattended-Upgrade::Allowed-Origins {",
            '        "${distro_id}:${distro_codename}-security";',
            '        "${distro_id}ESMApps:${distro_codename}-apps-security";',
            '        "${distro_id}ESM:${distro_codename}-infra-security";',
            "};",
        ]
    else:
        origins = [
            "Unattended-Upgrade::Origins-Pattern {",
            '        "origin=Debian,codename=${distro_codename},label=Debian-Security";',
            '        "origin=Debian,codename=${distro_codename}-security,label=Debian-Security";',
            "};",
        ]

    lines = ["// Managed by hardn: security updates only", *origins, ""]
    lines.append("Unattended-Upgrade::Package-Blacklist {")
    for pattern in blacklist or []:
        lines.append(f'        "^{pattern}";')
    lines += [
        "};",
        "",
        'Unattended-Upgrade::Remove-Unused-Dependencies "false";',
        'Unattended-Upgrade::Automatic-Reboot "false";',
    ]
    return "\n".join(lines) + "\n"


AUTO_UPGRADES = """\
APT::Periodic::Update-Package-Lists "1";
APT::Periodic::Unattended-Upgrade "1";
APT::Periodic::AutocleanInterval "7";
"""

APK_UPGRADE = """\
#!/bin/sh
apk update && apk upgrade --available
"""


class SecurityAddons:
    """Optional hardening add-ons, each guarded by platform applicability."""

    def __init__(
        self,
        config: HardnConfig,
        platform: Platform,
        steward: FileSteward,
        logger: HardnLogger,
        packages: PackageManager,
    ) -> None:
        self.config = config
        self.platform = platform
        self.steward = steward
        self.logger = logger
        self.packages = packages
        self.runner = platform.runner
        self.services = platform.services

    def setup_apparmor(self) -> bool:
        """Install and enable AppArmor on the Debian family.

        Returns:
            False when skipped as inapplicable
        """
        if self.platform.is_alpine:
            self.logger.warning("AppArmor setup is not supported on Alpine, skipping")
            return False

        self.logger.info("Setting up AppArmor")
        self.packages.install_packages(["apparmor", "apparmor-utils"], "AppArmor")
        self.services.enable_and_start("apparmor")
        self.logger.success("AppArmor installed and enabled")
        return True

    def setup_lynis(self) -> Optional[int]:
        """Install Lynis and run a quick system audit.

        Returns:
            Hardening index, or None if not reported
        """
        self.logger.info("Setting up Lynis security audit tool")
        self.packages.install_packages(["lynis"], "Lynis")

        result = self.runner.run("lynis", "audit", "system", "--quick")
        if self.steward.dry_run:
            return None

        index = parse_hardening_index(result.output)
        if index is None:
            self.logger.warning("Lynis audit completed but reported no hardening index")
        else:
            self.logger.success(f"Lynis audit completed, hardening index: {index}")
        return index

    def setup_unattended_upgrades(self) -> None:
        """Enable automatic security updates."""
        self.logger.info("Configuring unattended upgrades")
        if self.platform.is_alpine:
            self._setup_apk_periodic()
        else:
            self._setup_apt_unattended()
        self.logger.success("Automatic security updates enabled")

    def _setup_apt_unattended(self) -> None:
        self.packages.install_packages(["unattended-upgrades"], "unattended-upgrades")

        blacklist = None
        if self.platform.is_proxmox:
            blacklist = self.config.proxmox_package_patterns
        facts = self.platform.facts
        distro = "ubuntu" if facts.is_ubuntu_like else facts.os_id
        self.steward.write(
            UNATTENDED_CONF,
            render_unattended_upgrades(distro, blacklist),
        )
        self.steward.write(AUTO_UPGRADES_CONF, AUTO_UPGRADES)
        self.services.enable("unattended-upgrades")

    def _setup_apk_periodic(self) -> None:
        self.steward.write(APK_UPGRADE_SCRIPT, APK_UPGRADE, mode=0o755)
        self.services.enable_and_start("crond")
