"""Floating IP and security group backends.

Each backend adapts one of the two network services (see ``ports``) to the
shape the reconciliation components need. The selector functions pick a
backend per call: the network service when it is linked, otherwise the
compute extension for the region, otherwise ``None``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from stratus.exceptions import (
    IllegalStateError,
    InsufficientResourcesError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
)

if TYPE_CHECKING:
    from stratus.compute.ports import (
        ComputeApi,
        FloatingIpApi,
        NetworkApi,
        NetworkSecurityGroupApi,
        SecurityGroupApi,
    )
    from stratus.domain import FloatingIp, Node, ProviderSecurityGroup

log = logger.bind(component="backends")


# =============================================================================
# Floating IPs
# =============================================================================


class FloatingIpBackend(Protocol):
    """Floating IP operations normalized across network services."""

    region: str

    @property
    def requires_detach(self) -> bool:
        """Whether an IP must be detached before it can be deallocated."""
        ...

    def allocate_from_pool(self, pool: str) -> FloatingIp: ...

    def create(self) -> FloatingIp: ...

    def list(self) -> Sequence[FloatingIp]: ...

    def attach(self, ip: FloatingIp, node: Node) -> FloatingIp: ...

    def detach(self, ip: FloatingIp, server_id: str) -> None: ...

    def deallocate(self, ip: FloatingIp) -> bool: ...

    def list_for_server(self, server_id: str) -> list[FloatingIp]: ...


class ComputeFloatingIpBackend:
    """Floating IPs from the compute extension, attached by server id."""

    requires_detach = True

    def __init__(self, region: str, api: FloatingIpApi) -> None:
        self.region = region
        self._api = api

    def allocate_from_pool(self, pool: str) -> FloatingIp:
        return self._api.allocate_from_pool(pool)

    def create(self) -> FloatingIp:
        return self._api.create()

    def list(self) -> Sequence[FloatingIp]:
        return self._api.list()

    def attach(self, ip: FloatingIp, node: Node) -> FloatingIp:
        self._api.add_to_server(ip.address, node.provider_id)
        return replace(ip, server_id=node.provider_id)

    def detach(self, ip: FloatingIp, server_id: str) -> None:
        self._api.remove_from_server(ip.address, server_id)

    def deallocate(self, ip: FloatingIp) -> bool:
        return self._api.delete(ip.id)

    def list_for_server(self, server_id: str) -> list[FloatingIp]:
        return [ip for ip in self._api.list() if ip.server_id == server_id]


class NetworkFloatingIpBackend:
    """Floating IPs from the network service, attached through the node's port.

    Pools are network names. Deleting an IP releases the association, so no
    detach step is needed.
    """

    requires_detach = False

    def __init__(self, region: str, api: NetworkApi, availability_zone: str | None = None) -> None:
        self.region = region
        self._api = api
        self._availability_zone = availability_zone

    def allocate_from_pool(self, pool: str) -> FloatingIp:
        networks = [n for n in self._api.networks(self.region).list() if n.name == pool]
        if not networks:
            raise ResourceNotFoundError(f"no network named {pool} in {self.region}")
        return self._create_on_first(networks)

    def create(self) -> FloatingIp:
        networks = [
            n
            for n in self._api.networks(self.region).list()
            if n.external
            and (self._availability_zone is None or n.availability_zone in (None, self._availability_zone))
        ]
        if not networks:
            raise ResourceNotFoundError(f"no external network in {self.region}")
        return self._create_on_first(networks)

    def _create_on_first(self, networks: Sequence) -> FloatingIp:
        floating_ips = self._api.floating_ips(self.region)
        last_error: Exception | None = None
        for network in networks:
            try:
                return floating_ips.create(network.id, network.availability_zone)
            except (InsufficientResourcesError, ResourceNotFoundError) as e:
                log.trace(
                    "<< [{error}] failed to allocate a floating IP from network {network}",
                    error=e,
                    network=network.id,
                )
                last_error = e
        raise InsufficientResourcesError(
            f"no floating IP available on networks {[n.id for n in networks]}"
        ) from last_error

    def list(self) -> Sequence[FloatingIp]:
        return self._api.floating_ips(self.region).list()

    def attach(self, ip: FloatingIp, node: Node) -> FloatingIp:
        port = next(
            (p for p in self._api.ports(self.region).list() if p.device_id == node.provider_id),
            None,
        )
        if port is None:
            log.error("Node {node} doesn't have a port to attach a floating IP", node=node.id)
            raise IllegalStateError(f"Missing required port in node: {node.id}")
        return self._api.floating_ips(self.region).update(ip.id, port.id)

    def detach(self, ip: FloatingIp, server_id: str) -> None:
        return None

    def deallocate(self, ip: FloatingIp) -> bool:
        return self._api.floating_ips(self.region).delete(ip.id)

    def list_for_server(self, server_id: str) -> list[FloatingIp]:
        port_ids = {p.id for p in self._api.ports(self.region).list() if p.device_id == server_id}
        if not port_ids:
            return []
        return [ip for ip in self.list() if ip.port_id in port_ids]


def select_floating_ip_backend(
    compute: ComputeApi,
    network: NetworkApi | None,
    region: str,
) -> FloatingIpBackend | None:
    if network is not None:
        return NetworkFloatingIpBackend(region, network)
    api = compute.floating_ips(region)
    if api is None:
        return None
    return ComputeFloatingIpBackend(region, api)


# =============================================================================
# Security groups
# =============================================================================


@dataclass(frozen=True, slots=True)
class Created:
    group: ProviderSecurityGroup


@dataclass(frozen=True, slots=True)
class AlreadyExists:
    name: str


type CreateResult = Created | AlreadyExists


class SecurityGroupBackend(Protocol):
    region: str

    def create(self, name: str, description: str) -> CreateResult: ...

    def list(self) -> Sequence[ProviderSecurityGroup]: ...

    def get(self, group_id: str) -> ProviderSecurityGroup | None: ...

    def delete(self, group_id: str) -> bool: ...

    def authorize_cidr(self, group_id: str, protocol: str, from_port: int, to_port: int, cidr: str) -> None: ...

    def authorize_group(
        self, group_id: str, protocol: str, from_port: int, to_port: int, source_group_id: str
    ) -> None: ...


def _skip_duplicate_rule(e: ResourceAlreadyExistsError, group_id: str, port: int) -> None:
    log.debug("rule on port {port} already present in group {group}: {error}", port=port, group=group_id, error=e)


class ComputeSecurityGroupBackend:
    def __init__(self, region: str, api: SecurityGroupApi) -> None:
        self.region = region
        self._api = api

    def create(self, name: str, description: str) -> CreateResult:
        try:
            return Created(self._api.create(name, description))
        except ResourceAlreadyExistsError:
            return AlreadyExists(name)

    def list(self) -> Sequence[ProviderSecurityGroup]:
        return self._api.list()

    def get(self, group_id: str) -> ProviderSecurityGroup | None:
        return self._api.get(group_id)

    def delete(self, group_id: str) -> bool:
        return self._api.delete(group_id)

    def authorize_cidr(self, group_id: str, protocol: str, from_port: int, to_port: int, cidr: str) -> None:
        try:
            self._api.create_rule_allowing_cidr_block(group_id, protocol, from_port, to_port, cidr)
        except ResourceAlreadyExistsError as e:
            _skip_duplicate_rule(e, group_id, from_port)

    def authorize_group(
        self, group_id: str, protocol: str, from_port: int, to_port: int, source_group_id: str
    ) -> None:
        try:
            self._api.create_rule_allowing_security_group_id(
                group_id, protocol, from_port, to_port, source_group_id
            )
        except ResourceAlreadyExistsError as e:
            _skip_duplicate_rule(e, group_id, from_port)


class NetworkSecurityGroupBackend:
    def __init__(self, region: str, api: NetworkSecurityGroupApi) -> None:
        self.region = region
        self._api = api

    def create(self, name: str, description: str) -> CreateResult:
        try:
            return Created(self._api.create(name, description))
        except ResourceAlreadyExistsError:
            return AlreadyExists(name)

    def list(self) -> Sequence[ProviderSecurityGroup]:
        return self._api.list()

    def get(self, group_id: str) -> ProviderSecurityGroup | None:
        return self._api.get(group_id)

    def delete(self, group_id: str) -> bool:
        return self._api.delete(group_id)

    def authorize_cidr(self, group_id: str, protocol: str, from_port: int, to_port: int, cidr: str) -> None:
        try:
            self._api.create_rule(group_id, protocol, from_port, to_port, remote_ip_prefix=cidr)
        except ResourceAlreadyExistsError as e:
            _skip_duplicate_rule(e, group_id, from_port)

    def authorize_group(
        self, group_id: str, protocol: str, from_port: int, to_port: int, source_group_id: str
    ) -> None:
        try:
            self._api.create_rule(group_id, protocol, from_port, to_port, remote_group_id=source_group_id)
        except ResourceAlreadyExistsError as e:
            _skip_duplicate_rule(e, group_id, from_port)


def select_security_group_backend(
    compute: ComputeApi,
    network: NetworkApi | None,
    region: str,
) -> SecurityGroupBackend | None:
    if network is not None:
        return NetworkSecurityGroupBackend(region, network.security_groups(region))
    api = compute.security_groups(region)
    if api is None:
        return None
    return ComputeSecurityGroupBackend(region, api)
