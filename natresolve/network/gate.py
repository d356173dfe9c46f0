"""
Validation of proposed STUN server settings.

Runs inside the configuration store's commit path, so everything here is pure
and does no I/O. Accepting a value does not reconfigure the resolver: the
address and port arrive as separate changes, and only an explicit
``AddressResolver.start()`` re-reads them as a pair.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..config import STUN_SERVER_ADDRESS, STUN_SERVER_PORT
from ..errors import PropertyVetoError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rejection:
    """Why a proposed value was refused."""
    key: str
    value: Any
    reason: str


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def validate_host(value: Any) -> Optional[str]:
    """Return a rejection reason for a STUN host, or None if acceptable."""
    # null or empty means STUN is turned off
    if _is_blank(value):
        return None

    host = str(value)
    ipv6_expected = False
    if host[0] == "[":
        if len(host) > 2 and host[-1] == "]":
            host = host[1:-1]
            ipv6_expected = True
        else:
            return f"Invalid address string {host}"

    for c in host:
        if c.isalnum():
            continue
        if c not in ".:" or (c == "." and ipv6_expected) or (c == ":" and not ipv6_expected):
            return f"{host} is not a valid address nor host name"

    return None


def validate_port(value: Any) -> Optional[str]:
    """Return a rejection reason for a STUN port, or None if acceptable."""
    if _is_blank(value):
        return None
    try:
        int(str(value).strip())
    except ValueError:
        return f"{value} is not a valid port!"
    return None


_VALIDATORS = {
    STUN_SERVER_ADDRESS: validate_host,
    STUN_SERVER_PORT: validate_port,
}


def validate(key: str, proposed: Any) -> Optional[Rejection]:
    """
    Check a proposed configuration value.

    Returns:
        None when the value is acceptable, otherwise a Rejection
    """
    validator = _VALIDATORS.get(key)
    if validator is None:
        return None
    reason = validator(proposed)
    if reason is None:
        return None
    return Rejection(key=key, value=proposed, reason=reason)


class StunConfigGate:
    """
    Vetoable change listener for the STUN server settings.

    Registered with the configuration store for both STUN keys; raising
    PropertyVetoError aborts the commit and keeps the old value.
    """

    def __call__(self, key: str, old_value: Any, new_value: Any) -> None:
        rejection = validate(key, new_value)
        if rejection is not None:
            logger.warning(f"Rejected {key}={new_value!r}: {rejection.reason}")
            raise PropertyVetoError(rejection.reason, key, new_value)
