"""Immutable domain values.

Two families live here: the portable values callers see (``Node``,
``SecurityGroup``, ``KeyPair``, ``FloatingIp``...) and the provider-side
descriptors the ports return (``Server``, ``ProviderSecurityGroup``,
``Port``, ``Network``). Conversion between them happens in
``stratus.compute.normalize``.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum, StrEnum
from types import MappingProxyType

from stratus.domain.keys import RegionAndId

__all__ = [
    "LocationScope",
    "Location",
    "NodeStatus",
    "Hardware",
    "Image",
    "Node",
    "FloatingIp",
    "IpProtocol",
    "IpPermission",
    "SecurityGroup",
    "KeyPair",
    "ServerAddress",
    "Server",
    "GroupRef",
    "ProviderRule",
    "ProviderSecurityGroup",
    "Port",
    "Network",
]


def _frozen_mapping(data: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType(dict(data or {}))


# =============================================================================
# Locations
# =============================================================================


class LocationScope(Enum):
    PROVIDER = "provider"
    REGION = "region"
    ZONE = "zone"
    HOST = "host"


@dataclass(frozen=True, slots=True)
class Location:
    """A portable location, optionally nested under a parent."""

    id: str
    scope: LocationScope = LocationScope.REGION
    description: str = ""
    parent: Location | None = None

    @property
    def region_id(self) -> str:
        """Region this location belongs to.

        Host and zone scoped locations report their parent; anything else
        is its own region.
        """
        if self.scope in (LocationScope.HOST, LocationScope.ZONE) and self.parent is not None:
            return self.parent.id
        return self.id


# =============================================================================
# Nodes
# =============================================================================


class NodeStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"
    ERROR = "error"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True, slots=True)
class Hardware:
    id: str
    name: str
    vcpus: int = 0
    ram_mb: int = 0
    disk_gb: int = 0


@dataclass(frozen=True, slots=True)
class Image:
    id: str
    name: str
    os_family: str = "unrecognized"
    os_version: str = ""


@dataclass(frozen=True, slots=True)
class Node:
    """Portable view of a compute node.

    ``id`` is the slash-encoded ``region/providerId``.
    """

    id: str
    provider_id: str
    name: str
    location: Location
    status: NodeStatus
    group: str | None = None
    tags: frozenset[str] = frozenset()
    metadata: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), compare=False
    )
    public_addresses: frozenset[str] = frozenset()
    private_addresses: frozenset[str] = frozenset()
    hardware: Hardware | None = None
    image_id: str | None = None
    os_family: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", _frozen_mapping(self.metadata))

    @property
    def region_and_id(self) -> RegionAndId:
        return RegionAndId.from_slash_encoded(self.id)

    @property
    def region(self) -> str:
        return self.location.region_id

    def with_public_addresses(self, addresses: Iterable[str]) -> Node:
        return replace(self, public_addresses=frozenset(addresses))

    def with_status(self, status: NodeStatus) -> Node:
        return replace(self, status=status)


# =============================================================================
# Floating IPs
# =============================================================================


@dataclass(frozen=True, slots=True)
class FloatingIp:
    """An allocatable public address.

    Compute-style backends report the association through ``fixed_ip`` and
    ``server_id``; network-style backends through ``port_id``.
    """

    id: str
    address: str
    fixed_ip: str | None = None
    server_id: str | None = None
    port_id: str | None = None
    pool: str | None = None

    @property
    def is_attached(self) -> bool:
        return bool(self.fixed_ip or self.server_id or self.port_id)


# =============================================================================
# Security groups and key pairs
# =============================================================================


class IpProtocol(StrEnum):
    TCP = "tcp"
    UDP = "udp"
    ICMP = "icmp"
    ALL = "all"

    @classmethod
    def parse(cls, value: str) -> IpProtocol:
        normalized = value.lower()
        if normalized in ("-1", "any"):
            return cls.ALL
        return cls(normalized)


@dataclass(frozen=True, slots=True)
class IpPermission:
    """One ingress permission, validated at construction."""

    protocol: IpProtocol
    from_port: int
    to_port: int
    cidr_blocks: frozenset[str] = frozenset()
    group_ids: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        lowest = -1 if self.protocol in (IpProtocol.ICMP, IpProtocol.ALL) else 0
        for port in (self.from_port, self.to_port):
            if not lowest <= port <= 65535:
                raise ValueError(f"port {port} out of range for {self.protocol}")
        if self.from_port > self.to_port:
            raise ValueError(f"from_port {self.from_port} is greater than to_port {self.to_port}")
        for cidr in self.cidr_blocks:
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError as e:
                raise ValueError(f"invalid CIDR block {cidr!r}") from e
        if not self.cidr_blocks and not self.group_ids:
            raise ValueError("permission needs at least one CIDR block or group id")

    @classmethod
    def tcp(
        cls,
        port: int,
        *,
        cidr_blocks: Iterable[str] = (),
        group_ids: Iterable[str] = (),
    ) -> IpPermission:
        return cls(
            protocol=IpProtocol.TCP,
            from_port=port,
            to_port=port,
            cidr_blocks=frozenset(cidr_blocks),
            group_ids=frozenset(group_ids),
        )


@dataclass(frozen=True, slots=True)
class SecurityGroup:
    """Portable security group. ``id`` is ``region/providerId``."""

    id: str
    provider_id: str
    name: str
    location: Location
    permissions: tuple[IpPermission, ...] = ()
    owner_id: str | None = None

    def allows(self, port: int, *, cidr: str | None = None, group_id: str | None = None) -> bool:
        for perm in self.permissions:
            if not perm.from_port <= port <= perm.to_port:
                continue
            if cidr is not None and cidr in perm.cidr_blocks:
                return True
            if group_id is not None and group_id in perm.group_ids:
                return True
        return False


@dataclass(frozen=True, slots=True)
class KeyPair:
    name: str
    fingerprint: str = ""
    public_key: str = ""
    private_key: str | None = field(default=None, repr=False)


# =============================================================================
# Provider descriptors
# =============================================================================


@dataclass(frozen=True, slots=True)
class ServerAddress:
    address: str
    version: int = 4


@dataclass(frozen=True, slots=True)
class Server:
    """A server as the provider reports it."""

    id: str
    name: str
    status: str
    host_id: str | None = None
    image_id: str | None = None
    flavor_id: str | None = None
    metadata: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), compare=False
    )
    addresses: tuple[ServerAddress, ...] = ()
    access_ipv4: str | None = None
    access_ipv6: str | None = None
    security_group_names: tuple[str, ...] = ()
    key_name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", _frozen_mapping(self.metadata))


@dataclass(frozen=True, slots=True)
class GroupRef:
    """Peer group reference as compute-style APIs report it: by tenant and name."""

    tenant_id: str | None
    name: str


@dataclass(frozen=True, slots=True)
class ProviderRule:
    """An ingress rule as the provider reports it.

    A rule either has a ``cidr`` or refers to a peer group, by id
    (``source_group_id``) or by tenant and name (``source_group``).
    """

    id: str
    protocol: str
    from_port: int
    to_port: int
    cidr: str | None = None
    source_group_id: str | None = None
    source_group: GroupRef | None = None


@dataclass(frozen=True, slots=True)
class ProviderSecurityGroup:
    id: str
    name: str
    tenant_id: str | None = None
    description: str = ""
    rules: tuple[ProviderRule, ...] = ()


@dataclass(frozen=True, slots=True)
class Port:
    id: str
    device_id: str
    network_id: str | None = None


@dataclass(frozen=True, slots=True)
class Network:
    id: str
    name: str
    external: bool = False
    availability_zone: str | None = None
