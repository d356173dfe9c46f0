"""
STUN address detector.

Asks a single configured STUN server which public address/port a local UDP
port maps to. One detector is created per server configuration; it has to be
shut down before a new configuration can take its place.
"""

import logging
import socket
import time
from typing import Callable, Optional, Tuple

from ..errors import StunError, StunTimeoutError
from .models import Endpoint, StunServerConfig
from .stun import StunCodec

logger = logging.getLogger(__name__)

# Client transaction timing (initial wait, doubled after every retransmission)
DEFAULT_INITIAL_RTO = 0.1
DEFAULT_MAX_RTO = 1.6
DEFAULT_MAX_RETRANSMISSIONS = 6

RECV_BUFFER_SIZE = 2048


class AddressDetector:
    """
    Blocking STUN client bound to one server.

    Every call to :meth:`get_mapping_for` uses its own socket, so concurrent
    queries do not interfere with each other or with the probe socket.
    """

    def __init__(
        self,
        server: StunServerConfig,
        codec: Optional[StunCodec] = None,
        initial_rto: float = DEFAULT_INITIAL_RTO,
        max_rto: float = DEFAULT_MAX_RTO,
        max_retransmissions: int = DEFAULT_MAX_RETRANSMISSIONS,
        socket_factory: Callable[..., socket.socket] = socket.socket,
        resolver: Callable = socket.getaddrinfo,
    ):
        self.server = server
        self.codec = codec or StunCodec()
        self.initial_rto = initial_rto
        self.max_rto = max_rto
        self.max_retransmissions = max_retransmissions
        self._socket_factory = socket_factory
        self._resolve = resolver
        self._server_address: Optional[Tuple[int, tuple]] = None
        self._running = False

    def __repr__(self) -> str:
        state = "running" if self._running else "stopped"
        return f"AddressDetector(server={self.server}, {state})"

    @property
    def running(self) -> bool:
        return self._running

    @property
    def server_endpoint(self) -> Optional[Endpoint]:
        """Resolved address of the STUN server (None until started)."""
        if self._server_address is None:
            return None
        _, sockaddr = self._server_address
        return Endpoint(ip=sockaddr[0], port=sockaddr[1])

    def start(self) -> None:
        """
        Resolve the server address and get ready for queries.

        Raises:
            StunError: if the server host cannot be resolved
        """
        try:
            infos = self._resolve(
                self.server.bare_host, self.server.port, 0, socket.SOCK_DGRAM
            )
        except (socket.gaierror, UnicodeError) as e:
            raise StunError(f"Could not resolve STUN server {self.server}: {e}") from e

        if not infos:
            raise StunError(f"STUN server {self.server} resolved to no addresses")

        family, _, _, _, sockaddr = infos[0]
        self._server_address = (family, sockaddr)
        self._running = True
        logger.debug(f"STUN detector started for {self.server} ({sockaddr[0]})")

    def shutdown(self) -> None:
        """Stop answering queries. Safe to call more than once."""
        self._running = False
        logger.debug(f"STUN detector for {self.server} shut down")

    def get_mapping_for(self, local_port: int = 0) -> Endpoint:
        """
        Run a binding transaction from ``local_port`` and return the mapped address.

        Args:
            local_port: Local port to send from (0 for an ephemeral port)

        Raises:
            StunTimeoutError: no matching response within the retransmission window
            StunError: bind/send failure, malformed or error response
        """
        if not self._running or self._server_address is None:
            raise StunError("STUN detector is not running")

        family, sockaddr = self._server_address
        request, transaction_id = self.codec.build_binding_request()
        bind_host = "::" if family == socket.AF_INET6 else "0.0.0.0"

        try:
            sock = self._socket_factory(family, socket.SOCK_DGRAM)
        except OSError as e:
            raise StunError(f"Could not create STUN socket: {e}") from e

        try:
            sock.bind((bind_host, local_port))

            wait = self.initial_rto
            for attempt in range(self.max_retransmissions + 1):
                sock.sendto(request, sockaddr)
                if attempt:
                    logger.debug(f"STUN retransmission {attempt} to {self.server}")

                deadline = time.monotonic() + wait
                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    sock.settimeout(remaining)
                    try:
                        data, _ = sock.recvfrom(RECV_BUFFER_SIZE)
                    except socket.timeout:
                        break

                    if not self.codec.is_response_to(data, transaction_id):
                        logger.debug("Ignoring datagram that does not match the STUN transaction")
                        continue

                    mapped = self.codec.parse_binding_response(data, transaction_id)
                    logger.debug(f"STUN mapping for port {local_port}: {mapped} (via {self.server})")
                    return mapped

                wait = min(wait * 2, self.max_rto)

        except OSError as e:
            raise StunError(f"STUN exchange with {self.server} failed: {e}") from e
        finally:
            sock.close()

        raise StunTimeoutError(
            f"No STUN response from {self.server} after {self.max_retransmissions + 1} attempts"
        )
