"""Client factory — maps ClientType to concrete Resource API clients."""

from __future__ import annotations

from cloud_provisioner.clients.arm import ArmClient
from cloud_provisioner.clients.base import ResourceAPIClient
from cloud_provisioner.clients.memory import InMemoryControlPlane
from cloud_provisioner.config.models import ClientConfig, ClientType

_CLIENT_REGISTRY: dict[ClientType, type] = {
    ClientType.ARM: ArmClient,
    ClientType.MEMORY: InMemoryControlPlane,
}


def create_client(config: ClientConfig) -> ResourceAPIClient:
    """Create a Resource API client from configuration.

    Adding a new control plane = one class + one dict entry in
    ``_CLIENT_REGISTRY``.
    """
    cls = _CLIENT_REGISTRY.get(config.client_type)
    if cls is None:
        msg = f"Unknown client type: {config.client_type}"
        raise ValueError(msg)
    return cls(config)  # type: ignore[no-any-return]
