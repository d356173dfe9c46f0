"""
Exceptions raised by natresolve.
"""

from typing import Any, Optional


class NatResolveError(Exception):
    """Base exception for natresolve errors."""
    pass


class PropertyVetoError(NatResolveError):
    """Raised by a vetoable change listener to abort a configuration commit."""

    def __init__(self, message: str, key: str, value: Any = None):
        super().__init__(message)
        self.key = key
        self.value = value


class StunError(NatResolveError):
    """A STUN binding exchange could not be completed."""
    pass


class StunTimeoutError(StunError):
    """No response arrived within the retransmission window."""
    pass


class StunProtocolError(StunError):
    """The server sent something that is not a usable binding response."""
    pass


class StunServerError(StunError):
    """The server answered with a binding error response."""

    def __init__(self, code: int, reason: Optional[str] = None):
        super().__init__(f"STUN server error {code}: {reason or 'no reason given'}")
        self.code = code
        self.reason = reason


class ProbeSocketClosed(NatResolveError):
    """The probe socket was closed and can no longer be used."""
    pass
