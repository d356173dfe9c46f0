"""
Tests for the HTTP API.
"""

import asyncio
import ipaddress

import pytest
from fastapi.testclient import TestClient

from natresolve.api.server import create_app
from natresolve.config import STUN_SERVER_ADDRESS, STUN_SERVER_PORT, ConfigurationStore
from natresolve.network.models import Endpoint, to_ip
from natresolve.network.resolver import AddressResolver


def on_event_loop() -> bool:
    """True when called from a thread running an asyncio event loop."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class StaticDetector:
    def __init__(self, server):
        self.server = server
        self.running = False
        self.started_on_loop = []

    @property
    def server_endpoint(self):
        return Endpoint(ip="203.0.113.1", port=self.server.port)

    def start(self):
        self.started_on_loop.append(on_event_loop())
        self.running = True

    def shutdown(self):
        self.running = False

    def get_mapping_for(self, port):
        return Endpoint(ip="1.2.3.4", port=port + 1000)


class StaticSelector:
    def __init__(self, probe):
        self.probe = probe
        self.on_loop = []

    def get_local_host(self, destination):
        self.on_loop.append(on_event_loop())
        if to_ip(destination).version == 6:
            return ipaddress.IPv6Address("2001:db8::10")
        return ipaddress.IPv4Address("192.0.2.10")


class StaticProbe:
    def __init__(self, retries):
        self.port = 40000
        self.closed = False

    def close(self):
        self.closed = True


@pytest.fixture
def store():
    return ConfigurationStore()


@pytest.fixture
def client(store):
    resolver = AddressResolver(
        store,
        detector_factory=StaticDetector,
        probe_factory=StaticProbe,
        selector_factory=StaticSelector,
    )
    with TestClient(create_app(resolver)) as test_client:
        yield test_client


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "stun_enabled": False}

    def test_status(self, client):
        data = client.get("/api/status").json()

        assert data["running"] is True
        assert data["probe_port"] == 40000
        assert data["stun_server"] is None

    def test_status_without_usable_probe(self, client):
        client.app.state.resolver._probe.closed = True

        assert client.get("/api/status").json()["probe_port"] is None


class TestResolution:
    def test_local_host(self, client):
        response = client.get("/api/local-host", params={"destination": "198.51.100.7"})

        assert response.status_code == 200
        assert response.json() == {"destination": "198.51.100.7", "address": "192.0.2.10"}

    def test_local_host_ipv6(self, client):
        response = client.get("/api/local-host", params={"destination": "[2001:db8::99]"})

        assert response.json()["address"] == "2001:db8::10"

    def test_scoped_destination(self, client):
        response = client.get("/api/local-host", params={"destination": "fe80::99%eth0"})

        assert response.status_code == 200
        assert response.json() == {"destination": "fe80::99", "address": "2001:db8::10"}

    def test_invalid_destination(self, client):
        response = client.get("/api/local-host", params={"destination": "not-an-ip"})

        assert response.status_code == 400

    def test_public_address_without_stun(self, client):
        response = client.get("/api/public-address", params={"port": 5060, "destination": "198.51.100.7"})

        assert response.status_code == 200
        assert response.json() == {"ip": "192.0.2.10", "port": 5060, "family": "ipv4"}

    def test_public_address_port_range(self, client):
        response = client.get("/api/public-address", params={"port": 0})

        assert response.status_code == 422


class TestReinitialize:
    def test_reinitialize_picks_up_stun(self, client, store):
        """Settings committed after start take effect on reinitialize."""
        store.set_property(STUN_SERVER_ADDRESS, "stun.example.com")
        store.set_property(STUN_SERVER_PORT, "3478")
        assert client.get("/health").json()["stun_enabled"] is False

        response = client.post("/api/reinitialize")

        assert response.status_code == 200
        assert response.json()["stun_enabled"] is True
        assert response.json()["stun_server"] == "stun.example.com:3478"

        data = client.get("/api/public-address", params={"port": 4000}).json()
        assert data == {"ip": "1.2.3.4", "port": 5000, "family": "ipv4"}


class TestEventLoop:
    """Blocking resolver calls stay off the event loop."""

    def test_local_host_runs_in_executor(self, client):
        client.get("/api/local-host", params={"destination": "198.51.100.7"})

        assert client.app.state.resolver._selector.on_loop == [False]

    def test_reinitialize_runs_in_executor(self, client, store):
        store.set_property(STUN_SERVER_ADDRESS, "stun.example.com")
        store.set_property(STUN_SERVER_PORT, "3478")

        client.post("/api/reinitialize")

        assert client.app.state.resolver._detector.started_on_loop == [False]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
