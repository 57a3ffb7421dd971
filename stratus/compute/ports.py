"""Protocols for the provider APIs the compute layer consumes.

Provider SDKs and REST bindings stay outside this package. An adapter
implements these protocols (see ``stratus.providers.aws``) and everything
above it only talks to the protocols.

Two network services are modelled:

- ``ComputeApi``: the compute control plane. Its floating IP, security
  group and key pair features are optional per region (``None`` when the
  extension is not available).
- ``NetworkApi``: an optional, separately deployed network service with
  port-based floating IPs and its own security groups. When linked, it
  takes precedence over the compute extensions.

Exhaustion is signalled by raising ``InsufficientResourcesError`` or
``ResourceNotFoundError``; name collisions by ``ResourceAlreadyExistsError``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from stratus.domain import (
        FloatingIp,
        KeyPair,
        Location,
        Network,
        Port,
        ProviderRule,
        ProviderSecurityGroup,
        Server,
    )


# =============================================================================
# Compute service
# =============================================================================


class ServerApi(Protocol):
    def list(self) -> Sequence[Server]: ...

    def get(self, server_id: str) -> Server | None: ...

    def create(
        self,
        name: str,
        image_id: str,
        flavor_id: str,
        *,
        key_name: str | None = None,
        security_groups: Sequence[str] = (),
        metadata: Mapping[str, str] | None = None,
    ) -> Server: ...

    def delete(self, server_id: str) -> bool: ...


class FloatingIpApi(Protocol):
    """Compute-style floating IPs, attached by server id."""

    def list(self) -> Sequence[FloatingIp]: ...

    def create(self) -> FloatingIp: ...

    def allocate_from_pool(self, pool: str) -> FloatingIp: ...

    def add_to_server(self, address: str, server_id: str) -> None: ...

    def remove_from_server(self, address: str, server_id: str) -> None: ...

    def delete(self, floating_ip_id: str) -> bool: ...


class SecurityGroupApi(Protocol):
    """Compute-style security groups; peer rules reference groups by id."""

    def list(self) -> Sequence[ProviderSecurityGroup]: ...

    def get(self, group_id: str) -> ProviderSecurityGroup | None: ...

    def create(self, name: str, description: str) -> ProviderSecurityGroup: ...

    def delete(self, group_id: str) -> bool: ...

    def create_rule_allowing_cidr_block(
        self, group_id: str, protocol: str, from_port: int, to_port: int, cidr: str
    ) -> ProviderRule: ...

    def create_rule_allowing_security_group_id(
        self, group_id: str, protocol: str, from_port: int, to_port: int, source_group_id: str
    ) -> ProviderRule: ...


class KeyPairApi(Protocol):
    def list(self) -> Sequence[KeyPair]: ...

    def get(self, name: str) -> KeyPair | None: ...

    def create(self, name: str) -> KeyPair: ...

    def delete(self, name: str) -> bool: ...


@runtime_checkable
class ComputeApi(Protocol):
    """Per-region access to the compute control plane."""

    def regions(self) -> frozenset[str]: ...

    def servers(self, region: str) -> ServerApi: ...

    def floating_ips(self, region: str) -> FloatingIpApi | None: ...

    def security_groups(self, region: str) -> SecurityGroupApi | None: ...

    def key_pairs(self, region: str) -> KeyPairApi | None: ...


# =============================================================================
# Network service
# =============================================================================


class NetworkFloatingIpApi(Protocol):
    """Port-based floating IPs. Deleting an IP also disassociates it."""

    def list(self) -> Sequence[FloatingIp]: ...

    def create(self, network_id: str, availability_zone: str | None = None) -> FloatingIp: ...

    def update(self, floating_ip_id: str, port_id: str | None) -> FloatingIp: ...

    def delete(self, floating_ip_id: str) -> bool: ...


class PortApi(Protocol):
    def list(self) -> Sequence[Port]: ...


class NetworkListApi(Protocol):
    def list(self) -> Sequence[Network]: ...


class NetworkSecurityGroupApi(Protocol):
    """Network-service security groups; rules carry a remote prefix or group id."""

    def list(self) -> Sequence[ProviderSecurityGroup]: ...

    def get(self, group_id: str) -> ProviderSecurityGroup | None: ...

    def create(self, name: str, description: str) -> ProviderSecurityGroup: ...

    def delete(self, group_id: str) -> bool: ...

    def create_rule(
        self,
        group_id: str,
        protocol: str,
        from_port: int,
        to_port: int,
        *,
        remote_ip_prefix: str | None = None,
        remote_group_id: str | None = None,
    ) -> ProviderRule: ...


@runtime_checkable
class NetworkApi(Protocol):
    def floating_ips(self, region: str) -> NetworkFloatingIpApi: ...

    def ports(self, region: str) -> PortApi: ...

    def networks(self, region: str) -> NetworkListApi: ...

    def security_groups(self, region: str) -> NetworkSecurityGroupApi: ...


# =============================================================================
# Location index
# =============================================================================


class LocationIndex(Protocol):
    """Supplier of ``region id -> Location``."""

    def __call__(self) -> Mapping[str, Location]: ...
