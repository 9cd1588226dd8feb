"""
Shared fixtures for mirroring service tests.

Provides a local swarm and network client, a temporary registry, a
ready-to-use MirrorManager, and a fully opened MirroringService bound to a
free localhost port.
"""

from __future__ import annotations

import os
import socket
from pathlib import Path

import pytest

from mirroring_service.config import ServiceSettings
from mirroring_service.manager import MirrorManager
from mirroring_service.network.local import LocalNetworkClient, LocalSwarm
from mirroring_service.observability.metrics import MetricsRegistry
from mirroring_service.persistence.tree import KeyValueTree
from mirroring_service.service import MirroringService


def make_key() -> bytes:
    """A random 32-byte content identifier."""
    return os.urandom(32)


def free_port() -> int:
    """Ask the OS for a currently unused localhost port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def new_key():
    """Factory for random keys."""
    return make_key


@pytest.fixture
def swarm() -> LocalSwarm:
    return LocalSwarm()


@pytest.fixture
def network_client(swarm):
    client = LocalNetworkClient(swarm)
    client.ready()
    yield client
    client.close()


@pytest.fixture
def registry_root(tmp_path: Path) -> KeyValueTree:
    root = KeyValueTree.open(tmp_path / "registry.json").sub("v1")
    root.ready()
    return root


@pytest.fixture
def manager(network_client, registry_root) -> MirrorManager:
    return MirrorManager(
        network_client,
        network_client.chainstore("test"),
        registry_root.sub("chains"),
        registry_root.sub("types"),
        MetricsRegistry(),
    )


@pytest.fixture
def settings(tmp_path: Path) -> ServiceSettings:
    return ServiceSettings(
        host="127.0.0.1",
        port=free_port(),
        storage_dir=tmp_path / "storage",
        probe_timeout=0.5,
    )


@pytest.fixture
def make_service(settings, swarm):
    """Factory for services sharing the test's settings and swarm."""
    created = []

    def _make(**kwargs) -> MirroringService:
        kwargs.setdefault("client_factory", lambda: LocalNetworkClient(swarm))
        kwargs.setdefault("registry", MetricsRegistry())
        service = MirroringService(kwargs.pop("settings", settings), **kwargs)
        created.append(service)
        return service

    yield _make

    for service in created:
        service.close()


@pytest.fixture
def service(make_service) -> MirroringService:
    """An opened service."""
    service = make_service()
    service.open()
    return service


@pytest.fixture
def api(service):
    """Flask test client for the service's control API."""
    return service.server.app.test_client()
