"""
Network address resolution.

This module provides:
- STUN codec and address detector for public endpoint discovery
- Probe socket and local address selection for the no-STUN path
- Validation gate for STUN server settings
- AddressResolver tying it all together
"""

from .models import Endpoint, StunServerConfig
from .stun import StunCodec
from .detector import AddressDetector
from .probe import ProbeSocket, RANDOM_ADDR_DISC_PORT
from .local import LocalAddressSelector, NetworkInterface, list_interface_addresses
from .gate import Rejection, StunConfigGate, validate
from .resolver import AddressResolver

__all__ = [
    "Endpoint",
    "StunServerConfig",
    "StunCodec",
    "AddressDetector",
    "ProbeSocket",
    "RANDOM_ADDR_DISC_PORT",
    "LocalAddressSelector",
    "NetworkInterface",
    "list_interface_addresses",
    "Rejection",
    "StunConfigGate",
    "validate",
    "AddressResolver",
]
