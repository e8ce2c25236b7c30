import ipaddress

import pytest

from raintorrent.resolver import (
    BlockedError,
    InvalidPortError,
    NotIPv4AddressError,
    ResolveError,
    resolve,
    resolve_ipv4,
)


class FakeBlocklist:
    def __init__(self, blocked_ips):
        self.blocked_ips = {ipaddress.IPv4Address(ip) for ip in blocked_ips}

    def blocked(self, ip):
        return ip in self.blocked_ips


def test_resolve_literal_ipv4():
    assert resolve("1.2.3.4:80", 1.0, None) == (ipaddress.IPv4Address("1.2.3.4"), 80)


def test_resolve_ipv4_mapped_ipv6():
    assert resolve("[::ffff:1.2.3.4]:6881", 1.0, None) == (
        ipaddress.IPv4Address("1.2.3.4"),
        6881,
    )


def test_resolve_ipv6_rejected():
    with pytest.raises(NotIPv4AddressError):
        resolve("[2001:db8::1]:80", 1.0, None)


@pytest.mark.parametrize("hostport", ["1.2.3.4:0", "1.2.3.4:65536", "1.2.3.4:-5"])
def test_invalid_port(hostport):
    with pytest.raises(InvalidPortError):
        resolve(hostport, 1.0, None)


@pytest.mark.parametrize("hostport", ["1.2.3.4", "1.2.3.4:abc", "1:2:3:80", "[::1:80"])
def test_malformed_address(hostport):
    with pytest.raises(ResolveError):
        resolve(hostport, 1.0, None)


def test_blocked_address():
    with pytest.raises(BlockedError):
        resolve("5.6.7.8:80", 1.0, FakeBlocklist(["5.6.7.8"]))


def test_not_blocked_address():
    ip, port = resolve("5.6.7.9:80", 1.0, FakeBlocklist(["5.6.7.8"]))
    assert ip == ipaddress.IPv4Address("5.6.7.9")
    assert port == 80


def test_resolve_ipv4_numeric_host():
    assert resolve_ipv4("127.0.0.1", 2.0) == ipaddress.IPv4Address("127.0.0.1")


def test_error_hierarchy():
    with pytest.raises(ResolveError):
        resolve("[2001:db8::1]:80", 1.0, None)