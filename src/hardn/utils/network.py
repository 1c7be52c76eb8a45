"""Network interface inspection."""

import socket
from typing import List

import psutil

from hardn.log import HardnLogger


class NetworkProbe:
    """Report the host's IPv4 addresses for subnet checks."""

    def __init__(self, logger: HardnLogger) -> None:
        self.logger = logger

    def ipv4_addresses(self) -> List[str]:
        """Return non-loopback IPv4 addresses across all interfaces."""
        addresses: List[str] = []
        for addrs in psutil.net_if_addrs().values():
            for addr in addrs:
                if addr.family != socket.AF_INET:
                    continue
                if addr.address.startswith("127."):
                    continue
                addresses.append(addr.address)
        return addresses

    def in_subnet(self, prefix: str) -> bool:
        """Check whether any interface address starts with ``<prefix>.``.

        Args:
            prefix: Dotted prefix without the trailing octet, e.g. 192.168.4

        Returns:
            True if the host has an address in that /24
        """
        if not prefix:
            return False

        needle = prefix.rstrip(".") + "."
        for address in self.ipv4_addresses():
            if address.startswith(needle):
                self.logger.info(f"Host address {address} is in subnet {prefix}")
                return True
        return False
