"""
Probe socket used for local address discovery.

A UDP socket is "connected" to a destination (no packet is sent) so that the
kernel picks the outbound interface; the socket's local address then tells us
which of our addresses the routing table would use for that destination.
"""

import errno
import ipaddress
import logging
import random
import socket
import threading
from typing import Callable, Optional, Tuple

from ..errors import ProbeSocketClosed
from .models import IPAddress, to_ip

logger = logging.getLogger(__name__)

# Port we "connect" the probe socket to. Nothing is ever sent there.
RANDOM_ADDR_DISC_PORT = 55721

MIN_PORT_NUMBER = 1024
MAX_PORT_NUMBER = 65535

DEFAULT_BIND_RETRIES = 5

SocketFactory = Callable[..., socket.socket]


def get_random_port_number() -> int:
    """Pick a random unprivileged port."""
    return random.randint(MIN_PORT_NUMBER, MAX_PORT_NUMBER)


def _open_bound_socket(socket_factory: SocketFactory, port: int, family: Optional[int] = None) -> socket.socket:
    """
    Create a UDP socket bound to ``port`` on the wildcard address.

    Without an explicit family a dual-stack IPv6 socket is preferred, falling
    back to IPv4 when the host has no IPv6 support.
    """
    if family is None:
        family = socket.AF_INET6 if socket.has_ipv6 else socket.AF_INET

    try:
        sock = socket_factory(family, socket.SOCK_DGRAM)
    except OSError:
        if family != socket.AF_INET6:
            raise
        family = socket.AF_INET
        sock = socket_factory(family, socket.SOCK_DGRAM)

    try:
        if family == socket.AF_INET6:
            try:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            except (OSError, AttributeError) as e:
                logger.debug(f"Could not make probe socket dual-stack: {e}")
            sock.bind(("::", port))
        else:
            sock.bind(("0.0.0.0", port))
    except OSError:
        sock.close()
        raise

    return sock


def _bind_random_port(
    socket_factory: SocketFactory,
    max_retries: int,
    port_chooser: Callable[[], int],
    family: Optional[int] = None,
) -> Optional[Tuple[socket.socket, int]]:
    """
    Bind on random ports until one is free.

    Only EADDRINUSE is retried; any other bind error gives up at once.

    Returns:
        (socket, port), or None if no port could be bound
    """
    for attempt in range(max_retries):
        candidate = port_chooser()
        try:
            sock = _open_bound_socket(socket_factory, candidate, family)
        except OSError as e:
            if e.errno != errno.EADDRINUSE:
                logger.critical(
                    f"Could not create a local host discovery socket, "
                    f"local host discovery is unavailable: {e}"
                )
                return None
            logger.debug(f"Port {candidate} seems in use.")
            if attempt + 1 < max_retries:
                logger.debug("Retrying bind on another port")
            continue

        logger.debug(f"Local host discovery socket bound on port {candidate}")
        return sock, candidate

    logger.error(
        f"Could not find a free port for the local host discovery socket "
        f"after {max_retries} attempts"
    )
    return None


class ProbeSocket:
    """
    A UDP socket bound to one local port, shared by all local host lookups.

    ``connect -> getsockname -> disconnect`` runs under a lock so concurrent
    callers never see each other's association.
    """

    def __init__(
        self,
        sock: socket.socket,
        port: int,
        socket_factory: SocketFactory = socket.socket,
        max_retries: int = DEFAULT_BIND_RETRIES,
        port_chooser: Callable[[], int] = get_random_port_number,
    ):
        self._sock: Optional[socket.socket] = sock
        self._socket_factory = socket_factory
        self._max_retries = max_retries
        self._port_chooser = port_chooser
        self._lock = threading.Lock()
        self.port = port
        self.family = sock.family

    def __repr__(self) -> str:
        return f"ProbeSocket(port={self.port}, closed={self.closed})"

    @classmethod
    def initialize(
        cls,
        max_retries: int = DEFAULT_BIND_RETRIES,
        socket_factory: SocketFactory = socket.socket,
        port_chooser: Callable[[], int] = get_random_port_number,
    ) -> Optional["ProbeSocket"]:
        """
        Bind a probe socket on a random port, retrying on ports already in use.

        Returns:
            The bound probe socket, or None if binding was impossible
        """
        bound = _bind_random_port(socket_factory, max_retries, port_chooser)
        if bound is None:
            return None
        sock, port = bound
        return cls(sock, port, socket_factory, max_retries, port_chooser)

    @property
    def closed(self) -> bool:
        return self._sock is None

    def local_address_for(self, destination: IPAddress, port: int = RANDOM_ADDR_DISC_PORT) -> IPAddress:
        """
        Return the local address the OS would use to reach ``destination``.

        Raises:
            ProbeSocketClosed: the socket was closed
            OSError: the destination is unreachable from this socket
        """
        destination = to_ip(destination)
        target = destination
        if destination.version == 4 and self.family == socket.AF_INET6:
            target = ipaddress.IPv6Address(f"::ffff:{destination}")
        elif destination.version == 6 and self.family != socket.AF_INET6:
            raise OSError(errno.EAFNOSUPPORT, f"Cannot probe {destination} from an IPv4 socket")

        with self._lock:
            if self._sock is None:
                raise ProbeSocketClosed("Local host discovery socket is closed")
            try:
                self._sock.connect((str(target), port))
                local = to_ip(self._sock.getsockname()[0])
            finally:
                self._disconnect()

        if local.version == 6 and local.ipv4_mapped is not None:
            local = local.ipv4_mapped
        return local

    def _disconnect(self) -> None:
        # There is no portable UDP disconnect (connect to AF_UNSPEC) in the
        # socket module, so the association is dropped by reopening the port.
        old = self._sock
        self._sock = None
        old.close()
        try:
            self._sock = _open_bound_socket(self._socket_factory, self.port, self.family)
            return
        except OSError as e:
            logger.warning(f"Could not rebind local host discovery socket on port {self.port}: {e}")

        # someone took the port in between, move to another one
        bound = _bind_random_port(self._socket_factory, self._max_retries, self._port_chooser, self.family)
        if bound is None:
            logger.error("Local host discovery socket lost, local host discovery is unavailable")
            return
        self._sock, self.port = bound
        self.family = self._sock.family
        logger.info(f"Local host discovery socket moved to port {self.port}")

    def close(self) -> None:
        """Release the socket. Safe to call more than once."""
        with self._lock:
            if self._sock is not None:
                self._sock.close()
                self._sock = None
