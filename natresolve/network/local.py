"""
Local address selection.

Picks the local address to advertise to a given destination when STUN is
unavailable or disabled. The probe socket answers the common case; interface
enumeration and the OS host name only come in when the probe reports the
wildcard address, which some socket stacks (notably Windows) do.
"""

import logging
import socket
from dataclasses import dataclass
from typing import Callable, List, Optional

import ifaddr

from ..errors import ProbeSocketClosed
from .models import IPV4_ANY, IPAddress, any_address_for, to_ip
from .probe import ProbeSocket

logger = logging.getLogger(__name__)


@dataclass
class NetworkInterface:
    """One address bound to a network interface."""
    name: str
    ip: IPAddress
    is_private: bool
    is_link_local: bool

    @property
    def is_routable_ipv6(self) -> bool:
        """Globally usable IPv6: not wildcard, link-local, site-local or loopback."""
        ip = self.ip
        return (
            ip.version == 6
            and not ip.is_unspecified
            and not ip.is_link_local
            and not ip.is_site_local
            and not ip.is_loopback
        )


def list_interface_addresses(
    get_adapters: Callable[[], list] = ifaddr.get_adapters,
) -> List[NetworkInterface]:
    """
    Get every address of every interface, in the order the OS reports them.
    """
    interfaces = []
    for adapter in get_adapters():
        for adapter_ip in adapter.ips:
            # ifaddr reports IPv6 as (address, flowinfo, scope_id)
            raw = adapter_ip.ip[0] if isinstance(adapter_ip.ip, tuple) else adapter_ip.ip
            try:
                ip = to_ip(raw)
            except ValueError:
                logger.debug(f"Skipping unparseable address {raw!r} on {adapter.nice_name}")
                continue
            interfaces.append(NetworkInterface(
                name=adapter.nice_name,
                ip=ip,
                is_private=ip.is_private,
                is_link_local=ip.is_link_local,
            ))
    return interfaces


def os_local_host() -> IPAddress:
    """The OS notion of "the" local host address."""
    return to_ip(socket.gethostbyname(socket.gethostname()))


class LocalAddressSelector:
    """Chooses the local address to use when talking to a destination."""

    def __init__(
        self,
        probe: Optional[ProbeSocket],
        interface_source: Callable[[], List[NetworkInterface]] = list_interface_addresses,
        host_lookup: Callable[[], IPAddress] = os_local_host,
    ):
        self.probe = probe
        self._interfaces = interface_source
        self._host_lookup = host_lookup

    def get_local_host(self, destination) -> IPAddress:
        """
        Return an address that a socket can bind on or hand to peers as a
        contact address when communicating with ``destination``.

        Never raises. The result may be the wildcard address when nothing
        better can be found.
        """
        try:
            destination = to_ip(destination)
        except ValueError as e:
            logger.warning(f"Cannot pick a local host for {destination!r}: {e}")
            return IPV4_ANY
        local_host = any_address_for(destination)

        if self.probe is not None and not self.probe.closed:
            try:
                local_host = self.probe.local_address_for(destination)
            except (OSError, ProbeSocketClosed) as e:
                logger.warning(f"Local host probe towards {destination} failed: {e}")
        else:
            logger.debug("No local host discovery socket, using OS fallbacks")

        if not local_host.is_unspecified:
            return local_host

        try:
            if destination.version == 6:
                # return the first globally routable IPv6 address on the machine
                for iface in self._interfaces():
                    if iface.is_routable_ipv6:
                        logger.debug(f"Using {iface.ip} from {iface.name} for {destination}")
                        return iface.ip
                logger.debug(f"No routable IPv6 address found for {destination}")
            else:
                local_host = self._host_lookup()
        except Exception as e:
            logger.warning(f"Failed to get localhost: {e}")

        return local_host
