"""Tests for network interface inspection."""

import socket
from collections import namedtuple

from hardn.utils import network
from hardn.utils.network import NetworkProbe

Address = namedtuple("Address", "family address netmask broadcast ptp")


def test_ipv4_addresses_skip_loopback_and_ipv6(monkeypatch, logger):
    """Only non-loopback IPv4 addresses are reported."""
    interfaces = {
        "lo": [Address(socket.AF_INET, "127.0.0.1", "255.0.0.0", None, None)],
        "eth0": [
            Address(socket.AF_INET, "192.168.4.20", "255.255.255.0", None, None),
            Address(socket.AF_INET6, "fe80::1", None, None, None),
        ],
        "eth1": [Address(socket.AF_INET, "10.0.0.5", "255.255.255.0", None, None)],
    }
    monkeypatch.setattr(network.psutil, "net_if_addrs", lambda: interfaces)

    probe = NetworkProbe(logger)

    assert probe.ipv4_addresses() == ["192.168.4.20", "10.0.0.5"]
    assert probe.in_subnet("192.168.4")
    assert not probe.in_subnet("127.0.0")


def test_empty_prefix_never_matches(monkeypatch, logger):
    """An unset DMZ subnet matches nothing."""
    monkeypatch.setattr(
        network.psutil,
        "net_if_addrs",
        lambda: {"eth0": [Address(socket.AF_INET, "192.168.4.20", None, None, None)]},
    )

    assert not NetworkProbe(logger).in_subnet("")
