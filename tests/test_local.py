"""
Tests for local address selection.
"""

import ipaddress
import socket
from types import SimpleNamespace

import pytest

from natresolve.errors import ProbeSocketClosed
from natresolve.network.local import LocalAddressSelector, NetworkInterface, list_interface_addresses
from natresolve.network.models import Endpoint


class FakeProbe:
    def __init__(self, result=None, error=None, closed=False):
        self.result = result
        self.error = error
        self.closed = closed
        self.calls = []

    def local_address_for(self, destination):
        self.calls.append(destination)
        if self.error:
            raise self.error
        return ipaddress.ip_address(self.result)


def iface(name, ip):
    addr = ipaddress.ip_address(ip)
    return NetworkInterface(name=name, ip=addr, is_private=addr.is_private, is_link_local=addr.is_link_local)


INTERFACES = [
    iface("lo", "127.0.0.1"),
    iface("lo", "::1"),
    iface("eth0", "192.168.1.20"),
    iface("eth0", "fe80::1"),
    iface("eth0", "fec0::1"),
    iface("eth0", "2001:db8::5"),
    iface("eth1", "2001:db8::6"),
]


def fail_lookup():
    raise AssertionError("host lookup should not be used")


class TestGetLocalHost:
    """Tests for LocalAddressSelector.get_local_host."""

    def test_probe_result(self):
        """The probe answer is used when it is a real address."""
        probe = FakeProbe("192.0.2.10")
        selector = LocalAddressSelector(probe, host_lookup=fail_lookup)

        result = selector.get_local_host("198.51.100.7")

        assert result == ipaddress.IPv4Address("192.0.2.10")
        assert probe.calls == [ipaddress.IPv4Address("198.51.100.7")]

    def test_wildcard_ipv6_uses_interfaces(self):
        """First IPv6 that is not wildcard, link-local, site-local or loopback."""
        selector = LocalAddressSelector(FakeProbe("::"), interface_source=lambda: INTERFACES)

        result = selector.get_local_host(ipaddress.ip_address("2001:db8::99"))

        assert result == ipaddress.IPv6Address("2001:db8::5")

    def test_wildcard_ipv6_nothing_routable(self):
        """No usable IPv6 address: the wildcard is returned as is."""
        interfaces = [iface("lo", "::1"), iface("eth0", "fe80::1"), iface("eth0", "10.0.0.2")]
        selector = LocalAddressSelector(FakeProbe("::"), interface_source=lambda: interfaces)

        result = selector.get_local_host("2001:db8::99")

        assert result == ipaddress.IPv6Address("::")

    def test_wildcard_ipv4_uses_host_lookup(self):
        selector = LocalAddressSelector(
            FakeProbe("0.0.0.0"),
            host_lookup=lambda: ipaddress.IPv4Address("192.168.1.20"),
        )

        assert selector.get_local_host("198.51.100.7") == ipaddress.IPv4Address("192.168.1.20")

    def test_fallback_failure_returns_wildcard(self):
        """Errors in the fallback are logged, never raised."""
        def lookup():
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

        selector = LocalAddressSelector(FakeProbe("0.0.0.0"), host_lookup=lookup)

        assert selector.get_local_host("198.51.100.7") == ipaddress.IPv4Address("0.0.0.0")

    def test_interface_enumeration_failure(self):
        def broken():
            raise OSError("enumeration failed")

        selector = LocalAddressSelector(FakeProbe("::"), interface_source=broken)

        assert selector.get_local_host("2001:db8::99") == ipaddress.IPv6Address("::")

    def test_no_probe_socket(self):
        """Without a probe socket the OS fallbacks are used directly."""
        selector = LocalAddressSelector(None, host_lookup=lambda: ipaddress.IPv4Address("192.168.1.20"))

        assert selector.get_local_host("198.51.100.7") == ipaddress.IPv4Address("192.168.1.20")

    def test_closed_probe_not_used(self):
        probe = FakeProbe("192.0.2.10", closed=True)
        selector = LocalAddressSelector(probe, host_lookup=lambda: ipaddress.IPv4Address("192.168.1.20"))

        assert selector.get_local_host("198.51.100.7") == ipaddress.IPv4Address("192.168.1.20")
        assert probe.calls == []

    def test_endpoint_destination(self):
        """An Endpoint is accepted as the destination; its port is ignored."""
        probe = FakeProbe("192.0.2.10")
        selector = LocalAddressSelector(probe, host_lookup=fail_lookup)

        result = selector.get_local_host(Endpoint(ip="198.51.100.7", port=5060))

        assert result == ipaddress.IPv4Address("192.0.2.10")
        assert probe.calls == [ipaddress.IPv4Address("198.51.100.7")]

    def test_unparseable_destination(self):
        selector = LocalAddressSelector(FakeProbe("192.0.2.10"), host_lookup=fail_lookup)

        assert selector.get_local_host("198.51.100.7:5060") == ipaddress.IPv4Address("0.0.0.0")

    @pytest.mark.parametrize("error", [
        OSError(101, "Network is unreachable"),
        ProbeSocketClosed("closed"),
    ])
    def test_probe_failure(self, error):
        selector = LocalAddressSelector(
            FakeProbe(error=error),
            interface_source=lambda: INTERFACES,
        )

        assert selector.get_local_host("2001:db8::99") == ipaddress.IPv6Address("2001:db8::5")

    def test_real_probe_loopback(self):
        """With the real stack, a loopback destination never yields None."""
        from natresolve.network.probe import ProbeSocket

        probe = ProbeSocket.initialize()
        try:
            result = LocalAddressSelector(probe).get_local_host("127.0.0.1")
        finally:
            if probe:
                probe.close()

        assert result is not None
        assert result.version == 4


class TestInterfaces:
    """Tests for interface enumeration."""

    def test_list_interface_addresses(self):
        adapters = [
            SimpleNamespace(nice_name="lo", ips=[SimpleNamespace(ip="127.0.0.1")]),
            SimpleNamespace(nice_name="eth0", ips=[
                SimpleNamespace(ip="192.168.1.20"),
                SimpleNamespace(ip=("fe80::1", 0, 2)),
                SimpleNamespace(ip=("2001:db8::5", 0, 0)),
                SimpleNamespace(ip="not-an-ip"),
            ]),
        ]

        result = list_interface_addresses(lambda: adapters)

        assert [(i.name, str(i.ip)) for i in result] == [
            ("lo", "127.0.0.1"),
            ("eth0", "192.168.1.20"),
            ("eth0", "fe80::1"),
            ("eth0", "2001:db8::5"),
        ]
        assert result[1].is_private
        assert result[2].is_link_local
        assert not result[2].is_routable_ipv6
        assert result[3].is_routable_ipv6

    def test_routable_ipv6(self):
        assert iface("x", "2001:db8::5").is_routable_ipv6
        assert not iface("x", "::").is_routable_ipv6
        assert not iface("x", "::1").is_routable_ipv6
        assert not iface("x", "fec0::1").is_routable_ipv6
        assert not iface("x", "10.0.0.1").is_routable_ipv6


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
