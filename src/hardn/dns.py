"""DNS resolver configuration."""

from typing import List

from hardn.config import HardnConfig
from hardn.exceptions import NoNameservers
from hardn.log import HardnLogger
from hardn.system_info import Platform
from hardn.types import ResolverStack
from hardn.utils.file import FileSteward

RESOLVED_CONF = "/etc/systemd/resolved.conf"
RESOLVCONF_HEAD = "/etc/resolvconf/resolv.conf.d/head"
RESOLV_CONF = "/etc/resolv.conf"

RESOLVED_UNIT = "systemd-resolved"
SEARCH_DOMAIN = "lan"
MAX_RESOLV_NAMESERVERS = 2


def render_resolved_conf(nameservers: List[str]) -> str:
    return f"[Resolve]\nDNS={' '.join(nameservers)}\nDomains={SEARCH_DOMAIN}\n"


def render_resolv_conf(nameservers: List[str]) -> str:
    """resolv.conf body with at most the first two nameservers."""
    lines = [f"domain {SEARCH_DOMAIN}", f"search {SEARCH_DOMAIN}"]
    lines += [f"nameserver {ns}" for ns in nameservers[:MAX_RESOLV_NAMESERVERS]]
    return "\n".join(lines) + "\n"


class DNSConfigurator:
    """Point the host's resolver at the configured nameservers."""

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
        self.services = platform.services

    def detect_stack(self) -> ResolverStack:
        """First of: systemd-resolved active, resolvconf on PATH, plain resolv.conf."""
        if self.services.is_active(RESOLVED_UNIT):
            return ResolverStack.SYSTEMD_RESOLVED
        if self.runner.available("resolvconf"):
            return ResolverStack.RESOLVCONF
        return ResolverStack.DIRECT

    def configure(self) -> ResolverStack:
        """Write resolver configuration for the detected stack.

        Returns:
            The resolver stack that was configured

        Raises:
            NoNameservers: If no nameservers are configured
        """
        nameservers = self.config.nameservers
        if not nameservers:
            raise NoNameservers("No nameservers configured")

        self.logger.info("Configuring DNS settings")
        stack = self.detect_stack()

        if stack == ResolverStack.SYSTEMD_RESOLVED:
            self.logger.info("systemd-resolved detected, configuring via resolved.conf")
            self.steward.write(RESOLVED_CONF, render_resolved_conf(nameservers))
            self.services.restart(RESOLVED_UNIT)
        elif stack == ResolverStack.RESOLVCONF:
            self.logger.info("resolvconf detected, using resolvconf mechanism")
            self.steward.write(RESOLVCONF_HEAD, render_resolv_conf(nameservers))
            self.runner.run("resolvconf", "-u")
        else:
            self.logger.info("Using direct DNS configuration")
            self.steward.write(RESOLV_CONF, render_resolv_conf(nameservers))

        self.logger.success(f"DNS configured with primary nameserver {nameservers[0]}")
        return stack
