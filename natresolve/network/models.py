"""
Address types shared by the resolver components.
"""

import ipaddress
import socket
from dataclasses import dataclass
from typing import Union

from pydantic import BaseModel, Field

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

IPV4_ANY = ipaddress.IPv4Address("0.0.0.0")
IPV6_ANY = ipaddress.IPv6Address("::")


def to_ip(value) -> IPAddress:
    """Coerce a string (bracketed IPv6 allowed), address object or Endpoint to an address."""
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    if isinstance(value, Endpoint):
        return value.ip
    text = str(value).strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    # scoped link-local addresses come back from the OS as fe80::1%eth0
    text = text.split("%", 1)[0]
    return ipaddress.ip_address(text)


def any_address_for(address: IPAddress) -> IPAddress:
    """The wildcard address of the same family as ``address``."""
    return IPV6_ANY if address.version == 6 else IPV4_ANY


@dataclass(frozen=True)
class Endpoint:
    """An (IP address, port) pair."""
    ip: IPAddress
    port: int

    def __post_init__(self):
        object.__setattr__(self, "ip", to_ip(self.ip))

    def __str__(self) -> str:
        if self.ip.version == 6:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"

    @property
    def family(self) -> int:
        return socket.AF_INET6 if self.ip.version == 6 else socket.AF_INET

    @property
    def is_public(self) -> bool:
        """Check if the address is globally routable."""
        return self.ip.is_global

    def to_dict(self) -> dict:
        return {
            "ip": str(self.ip),
            "port": self.port,
            "family": "ipv6" if self.ip.version == 6 else "ipv4",
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Endpoint":
        return cls(ip=data["ip"], port=int(data["port"]))


class StunServerConfig(BaseModel):
    """Address of the STUN server used for mapping queries."""
    model_config = {"frozen": True}

    host: str = Field(..., min_length=1, description="Host name, IPv4 literal or [IPv6] literal")
    port: int = Field(..., ge=1, le=65535)

    @property
    def bare_host(self) -> str:
        """Host with IPv6 literal brackets removed, suitable for socket calls."""
        if self.host.startswith("[") and self.host.endswith("]"):
            return self.host[1:-1]
        return self.host

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"
