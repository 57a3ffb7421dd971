"""Central DI module for Stratus.

``ComputeModule`` wires the caches and reconciliation components. A
provider module (e.g. ``stratus.providers.aws.AWSModule``) supplies the
provider side: ``ComputeApi``, ``LocationIndex`` and ``Catalog``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from injector import Binder, Module, provider, singleton

from stratus.cache import FloatingIpCache, KeyPairCache, SecurityGroupCache
from stratus.compute.cleanup import ResourceCleanupOrchestrator
from stratus.compute.floating_ips import FloatingIpAllocator, FloatingIpReclaimer
from stratus.compute.naming import GroupNamingConvention
from stratus.compute.normalize import OPENSTACK_STATUS, ServerToNode, StatusMap
from stratus.compute.orphans import OrphanedGroupDetector, all_nodes_in_group_terminated
from stratus.compute.ports import ComputeApi, LocationIndex, NetworkApi
from stratus.compute.security_groups import SecurityGroupProvisioner
from stratus.compute.service import ComputeService
from stratus.config import ComputeProperties
from stratus.domain import Hardware, Image, Node


@dataclass(frozen=True, slots=True)
class NetworkLink:
    """The linked network service, if any."""

    api: NetworkApi | None = None


@dataclass(frozen=True, slots=True)
class Catalog:
    """Provider tables used to normalize servers.

    ``hardware`` and ``images`` are keyed by ``region/id``.
    """

    status_map: StatusMap = OPENSTACK_STATUS
    hardware: Mapping[str, Hardware] = field(default_factory=lambda: MappingProxyType({}))
    images: Mapping[str, Image] = field(default_factory=lambda: MappingProxyType({}))


class ComputeModule(Module):
    """Module providing the compute service and its collaborators.

    Usage:
        injector = Injector([ComputeModule(properties), AWSModule(AWS(region="us-east-1"))])
        service = injector.get(ComputeService)
    """

    def __init__(
        self,
        properties: ComputeProperties | None = None,
        network: NetworkApi | None = None,
    ) -> None:
        self._properties = properties or ComputeProperties()
        self._network = network

    def configure(self, binder: Binder) -> None:
        binder.bind(ComputeProperties, to=self._properties)
        binder.bind(NetworkLink, to=NetworkLink(self._network))

    # -------------------------------------------------------------------------
    # Caches (each needs a unique type)
    # -------------------------------------------------------------------------

    @singleton
    @provider
    def provide_floating_ip_cache(self, properties: ComputeProperties) -> FloatingIpCache:
        return FloatingIpCache(maximum_size=properties.cache_maximum_size, name="floating-ip")

    @singleton
    @provider
    def provide_security_group_cache(self, properties: ComputeProperties) -> SecurityGroupCache:
        return SecurityGroupCache(maximum_size=properties.cache_maximum_size, name="security-group")

    @singleton
    @provider
    def provide_key_pair_cache(self, properties: ComputeProperties, compute: ComputeApi) -> KeyPairCache:
        def load(key):
            key_pairs = compute.key_pairs(key.region)
            return key_pairs.get(key.name) if key_pairs is not None else None

        return KeyPairCache(load, maximum_size=properties.cache_maximum_size, name="key-pair")

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    @singleton
    @provider
    def provide_server_to_node(
        self, locations: LocationIndex, catalog: Catalog, properties: ComputeProperties
    ) -> ServerToNode:
        return ServerToNode(
            locations,
            hardware=catalog.hardware,
            images=catalog.images,
            naming=GroupNamingConvention(prefix=properties.naming_prefix).without_prefix(),
            status_map=catalog.status_map,
        )

    @singleton
    @provider
    def provide_allocator(
        self, compute: ComputeApi, cache: FloatingIpCache, network: NetworkLink
    ) -> FloatingIpAllocator:
        return FloatingIpAllocator(compute, cache, network.api)

    @singleton
    @provider
    def provide_reclaimer(
        self, compute: ComputeApi, cache: FloatingIpCache, network: NetworkLink
    ) -> FloatingIpReclaimer:
        return FloatingIpReclaimer(compute, cache, network.api)

    @singleton
    @provider
    def provide_provisioner(
        self, compute: ComputeApi, locations: LocationIndex, network: NetworkLink
    ) -> SecurityGroupProvisioner:
        return SecurityGroupProvisioner(compute, locations, network.api)

    @singleton
    @provider
    def provide_orchestrator(
        self,
        compute: ComputeApi,
        reclaimer: FloatingIpReclaimer,
        security_groups: SecurityGroupCache,
        key_pairs: KeyPairCache,
        network: NetworkLink,
    ) -> ResourceCleanupOrchestrator:
        return ResourceCleanupOrchestrator(compute, reclaimer, security_groups, key_pairs, network.api)

    @singleton
    @provider
    def provide_detector(self, compute: ComputeApi, to_node: ServerToNode) -> OrphanedGroupDetector:
        def list_nodes(region: str, group: str) -> list[Node]:
            nodes = (to_node(region, server) for server in compute.servers(region).list())
            return [node for node in nodes if node.group == group]

        return OrphanedGroupDetector(all_nodes_in_group_terminated(list_nodes))

    @singleton
    @provider
    def provide_compute_service(
        self,
        compute: ComputeApi,
        to_node: ServerToNode,
        allocator: FloatingIpAllocator,
        provisioner: SecurityGroupProvisioner,
        orchestrator: ResourceCleanupOrchestrator,
        security_groups: SecurityGroupCache,
        key_pairs: KeyPairCache,
        properties: ComputeProperties,
        network: NetworkLink,
        detector: OrphanedGroupDetector,
    ) -> ComputeService:
        return ComputeService(
            compute,
            to_node,
            allocator,
            provisioner,
            orchestrator,
            security_groups,
            key_pairs,
            properties=properties,
            network=network.api,
            detector=detector,
        )


__all__ = [
    "Catalog",
    "ComputeModule",
    "NetworkLink",
]
