"""
Address resolver.

Decides which address/port to advertise to a peer:
- STUN mapping for the port, when a STUN server is configured and answers
- otherwise the local address the routing table picks for the destination

Settings come from a ConfigurationStore:
- STUN_SERVER_ADDRESS - host name, IPv4 literal or [IPv6] literal of the STUN server
- STUN_SERVER_PORT - port of the STUN server
- BIND_RETRIES - attempts at binding the local host discovery socket (default 5)
"""

import asyncio
import ipaddress
import logging
import socket
import threading
from typing import Callable, Optional

from ..config import BIND_RETRIES, STUN_SERVER_ADDRESS, STUN_SERVER_PORT, ConfigurationStore
from ..errors import StunError
from .detector import AddressDetector
from .gate import StunConfigGate
from .local import LocalAddressSelector
from .models import Endpoint, IPAddress, StunServerConfig, to_ip
from .probe import DEFAULT_BIND_RETRIES, ProbeSocket
from .stun import DEFAULT_STUN_PORT

logger = logging.getLogger(__name__)

# Only used to choose a public route when no STUN server is configured,
# never queried.
DEFAULT_STUN_SERVER_ADDRESS = "stun.iptel.org"
DEFAULT_STUN_SERVER_PORT = DEFAULT_STUN_PORT

# Route probe used when the STUN host name does not resolve
DEFAULT_ROUTE_PROBE = ipaddress.IPv4Address("8.8.8.8")

GATED_KEYS = (STUN_SERVER_ADDRESS, STUN_SERVER_PORT)


def _is_blank(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


class AddressResolver:
    """
    Entry point for address resolution.

    Construct one per configuration store and hand it to whatever needs
    addresses; instances never share sockets or detectors.

    Example:
        >>> resolver = AddressResolver(ConfigurationStore({"STUN_SERVER_ADDRESS": "stun.example.com",
        ...                                                "STUN_SERVER_PORT": "3478"}))
        >>> resolver.start()
        >>> resolver.get_public_address_for(ipaddress.ip_address("198.51.100.7"), 5060)
    """

    def __init__(
        self,
        config: ConfigurationStore,
        detector_factory: Callable[[StunServerConfig], AddressDetector] = AddressDetector,
        probe_factory: Callable[[int], Optional[ProbeSocket]] = ProbeSocket.initialize,
        selector_factory: Callable[[Optional[ProbeSocket]], LocalAddressSelector] = LocalAddressSelector,
        resolver: Callable = socket.getaddrinfo,
    ):
        self.config = config
        self.gate = StunConfigGate()
        self._detector_factory = detector_factory
        self._probe_factory = probe_factory
        self._selector_factory = selector_factory
        self._resolve = resolver

        self._lock = threading.RLock()
        self._running = False
        self._stun_enabled = False
        self._stun_server: Optional[StunServerConfig] = None
        self._detector: Optional[AddressDetector] = None
        self._probe: Optional[ProbeSocket] = None
        self._selector = selector_factory(None)

    def __enter__(self) -> "AddressResolver":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stun_enabled(self) -> bool:
        return self._stun_enabled

    @property
    def stun_server(self) -> Optional[StunServerConfig]:
        return self._stun_server

    @property
    def probe(self) -> Optional[ProbeSocket]:
        """The bound probe socket, or None when local host discovery is unavailable."""
        probe = self._probe
        if probe is None or probe.closed:
            return None
        return probe

    # === Lifecycle ===

    def start(self) -> None:
        """
        Read the configuration, start the STUN detector and bind the probe socket.

        Also the way to apply new STUN settings: call it again (or after
        stop()) and the configuration is re-read from scratch.
        """
        with self._lock:
            if self._running:
                self.stop()

            self._start_stun(
                self.config.get_string(STUN_SERVER_ADDRESS),
                self.config.get_string(STUN_SERVER_PORT),
            )

            # make sure that nobody sets an invalid stun address or port
            for key in GATED_KEYS:
                self.config.add_vetoable_change_listener(key, self.gate)

            bind_retries = self.config.get_int(BIND_RETRIES, DEFAULT_BIND_RETRIES)
            self._probe = self._probe_factory(bind_retries)
            self._selector = self._selector_factory(self._probe)
            self._running = True

            stun_state = f"STUN via {self._stun_server}" if self._stun_enabled else "STUN disabled"
            probe_state = f"probe port {self._probe.port}" if self._probe else "no probe socket"
            logger.info(f"Address resolver started ({stun_state}, {probe_state})")

    def _start_stun(self, host: Optional[str], port: Optional[str]) -> None:
        self._stun_enabled = False
        self._detector = None
        self._stun_server = None

        if _is_blank(host) or _is_blank(port):
            logger.info("No STUN server configured, STUN disabled")
            return

        try:
            server = StunServerConfig(host=host.strip(), port=int(port))
        except ValueError as e:
            logger.error(f"Invalid STUN server setting {host}:{port}, STUN disabled: {e}")
            return

        self._stun_server = server
        detector = self._detector_factory(server)
        logger.debug(f"Created a STUN address detector for the following STUN server: {server}")

        try:
            detector.start()
        except StunError as e:
            logger.error(f"Failed to start the STUN address detector {detector}: {e}")
            logger.debug("Disabling STUN and continuing")
            return

        self._detector = detector
        self._stun_enabled = True

    def stop(self) -> None:
        """
        Shut down the detector, drop the veto listeners and close the probe socket.

        Safe to call before start() and more than once; start() may follow.
        """
        with self._lock:
            detector = self._detector
            self._detector = None
            self._stun_enabled = False

            if detector is not None:
                try:
                    detector.shutdown()
                except Exception as e:
                    logger.debug(f"Failed to properly shutdown a STUN detector: {e}")

            for key in GATED_KEYS:
                self.config.remove_vetoable_change_listener(key, self.gate)

            if self._probe is not None:
                self._probe.close()
                self._probe = None
            self._selector = self._selector_factory(None)

            was_running = self._running
            self._running = False

        if was_running:
            logger.info("Address resolver stopped")

    # === Resolution ===

    def get_local_host(self, destination) -> IPAddress:
        """Local address to use when communicating with ``destination``."""
        return self._selector.get_local_host(destination)

    def query_mapping(self, port: int) -> Optional[Endpoint]:
        """
        Ask the STUN server for the public mapping of ``port``.

        Returns:
            The mapped endpoint, or None if STUN is disabled or failed
        """
        detector = self._detector
        if detector is None or not self._stun_enabled:
            return None

        try:
            mapped = detector.get_mapping_for(port)
        except StunError as e:
            logger.error(f"Failed to retrieve mapped address for port {port}: {e}")
            return None

        logger.debug(f"For port {port} a STUN server returned the following mapping: {mapped}")
        return mapped

    def get_public_address_for(self, destination, port: int) -> Endpoint:
        """
        Address/port to advertise to ``destination`` for local ``port``.

        Blocks for the STUN retransmission window when the server does not
        answer. Never returns None; STUN failures only degrade the result to
        a local address.
        """
        destination = to_ip(destination)

        if not self._stun_enabled:
            logger.debug("STUN is disabled, skipping mapped address recovery")
            return Endpoint(ip=self.get_local_host(destination), port=port)

        result = self.query_mapping(port)
        if result is None:
            # STUN failed this time; use the routing table instead
            result = Endpoint(ip=self.get_local_host(destination), port=port)

        logger.debug(f"Returning mapping for port {port} as follows: {result}")
        return result

    def get_public_address_for_port(self, port: int) -> Endpoint:
        """Same as get_public_address_for(), routed towards the STUN server."""
        return self.get_public_address_for(self.default_destination(), port)

    def default_destination(self) -> IPAddress:
        """Address of the configured (or default) STUN server."""
        detector = self._detector
        if detector is not None and detector.server_endpoint is not None:
            return detector.server_endpoint.ip

        server = self._stun_server or StunServerConfig(
            host=DEFAULT_STUN_SERVER_ADDRESS, port=DEFAULT_STUN_SERVER_PORT
        )
        try:
            infos = self._resolve(server.bare_host, server.port, 0, socket.SOCK_DGRAM)
            return to_ip(infos[0][4][0])
        except (socket.gaierror, UnicodeError, IndexError, ValueError) as e:
            logger.warning(f"Could not resolve {server.bare_host}, routing towards {DEFAULT_ROUTE_PROBE}: {e}")
            return DEFAULT_ROUTE_PROBE

    async def astart(self) -> None:
        """start() (which also restarts) without blocking the event loop."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.start)

    async def aget_local_host(self, destination) -> IPAddress:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.get_local_host, destination)

    async def aget_public_address_for(self, destination, port: int) -> Endpoint:
        """get_public_address_for() without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.get_public_address_for, destination, port)

    async def aget_public_address_for_port(self, port: int) -> Endpoint:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.get_public_address_for_port, port)
