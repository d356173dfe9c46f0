"""
natresolve - pick the address to advertise to a peer

Resolves which public (STUN-mapped) or local address and port a process
should hand out, across NAT, multiple interfaces and dual IPv4/IPv6 stacks.

Example:
    >>> from natresolve import AddressResolver, ConfigurationStore
    >>> resolver = AddressResolver(ConfigurationStore.load())
    >>> resolver.start()
    >>> resolver.get_public_address_for_port(5060)
"""

__version__ = "1.0.0"

from .config import ConfigurationStore
from .network.models import Endpoint
from .network.resolver import AddressResolver

__all__ = [
    "__version__",
    "ConfigurationStore",
    "Endpoint",
    "AddressResolver",
]
