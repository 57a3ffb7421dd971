"""Compute service facade.

Sequences the reconciliation components around the node lifecycle:
security group and key pair before launch, floating IP once a node runs,
cleanup on destroy and group-level cleanup once a group is orphaned.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from loguru import logger

from stratus.compute.backends import select_floating_ip_backend
from stratus.compute.naming import GroupNamingConvention
from stratus.compute.orphans import OrphanedGroupDetector, all_nodes_in_group_terminated
from stratus.compute.polling import create_running_poller, create_terminated_poller
from stratus.config import ComputeProperties
from stratus.constants import (
    ANY_IPV4,
    GROUP_METADATA_KEY,
    KEY_PAIR_TAG_PREFIX,
    SECURITY_GROUP_ID_TAG_PREFIX,
    TAGS_METADATA_KEY,
)
from stratus.domain import Node, NodeStatus, RegionAndId, RegionAndName
from stratus.exceptions import ConfigurationError, NodeTimeoutError

if TYPE_CHECKING:
    from stratus.cache import KeyPairCache, SecurityGroupCache
    from stratus.compute.cleanup import ResourceCleanupOrchestrator
    from stratus.compute.floating_ips import FloatingIpAllocator
    from stratus.compute.normalize import ServerToNode
    from stratus.compute.ports import ComputeApi, NetworkApi
    from stratus.compute.security_groups import SecurityGroupProvisioner
    from stratus.domain import KeyPair, SecurityGroup

log = logger.bind(component="compute")


@dataclass(frozen=True, slots=True)
class NodeTemplate:
    """What to launch and which side resources it needs.

    ``None`` for ``generate_key_pair``, ``auto_assign_floating_ip`` and
    ``floating_ip_pool_names`` falls back to ``ComputeProperties``.
    """

    region: str
    image_id: str
    flavor_id: str
    inbound_ports: tuple[int, ...] = ()
    security_groups: tuple[str, ...] = ()
    key_pair_name: str | None = None
    generate_key_pair: bool | None = None
    auto_assign_floating_ip: bool | None = None
    floating_ip_pool_names: tuple[str, ...] | None = None
    tags: frozenset[str] = frozenset()
    metadata: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}), compare=False)


@dataclass(frozen=True, slots=True)
class CreateNodesResult:
    """Nodes that came up, and the errors of those that didn't (by node name)."""

    nodes: frozenset[Node]
    failed: Mapping[str, Exception] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True, slots=True)
class _LaunchPlan:
    region: str
    key_name: str | None
    security_groups: tuple[str, ...]
    metadata: Mapping[str, str]
    assign_floating_ip: bool
    pool_names: tuple[str, ...]


class ComputeService:
    def __init__(
        self,
        compute: ComputeApi,
        to_node: ServerToNode,
        allocator: FloatingIpAllocator,
        provisioner: SecurityGroupProvisioner,
        orchestrator: ResourceCleanupOrchestrator,
        security_group_cache: SecurityGroupCache,
        key_pair_cache: KeyPairCache,
        properties: ComputeProperties | None = None,
        network: NetworkApi | None = None,
        detector: OrphanedGroupDetector | None = None,
    ) -> None:
        self._compute = compute
        self._network = network
        self._to_node = to_node
        self._allocator = allocator
        self._provisioner = provisioner
        self._orchestrator = orchestrator
        self._security_groups = security_group_cache
        self._key_pairs = key_pair_cache
        self.properties = properties or ComputeProperties()
        self.naming = GroupNamingConvention(prefix=self.properties.naming_prefix)
        self._detector = detector or OrphanedGroupDetector(all_nodes_in_group_terminated(self.list_nodes_in_group))
        self._wait_running = create_running_poller(
            self.get_node, self.properties.node_running_timeout, self.properties.poll_interval
        )
        self._wait_terminated = create_terminated_poller(
            self.get_node, self.properties.node_terminated_timeout, self.properties.poll_interval
        )

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def list_nodes(self) -> set[Node]:
        return {
            self._to_node(region, server)
            for region in sorted(self._compute.regions())
            for server in self._compute.servers(region).list()
        }

    def list_nodes_in_group(self, region: str, group: str) -> list[Node]:
        return [
            node
            for server in self._compute.servers(region).list()
            if (node := self._to_node(region, server)).group == group
        ]

    def get_node(self, node_id: str) -> Node | None:
        key = RegionAndId.from_slash_encoded(node_id)
        server = self._compute.servers(key.region).get(key.id)
        return self._to_node(key.region, server) if server else None

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_nodes_in_group(self, group: str, count: int, template: NodeTemplate) -> CreateNodesResult:
        """Launch ``count`` nodes in ``group`` and wait for them to run.

        Nodes that fail after launch (never run, or no floating IP) are
        cleaned up and reported in ``CreateNodesResult.failed``.
        """
        if count <= 0:
            raise ValueError(f"count must be positive, got {count}")
        plan = self._plan(group, template)

        node_naming = self.naming.without_prefix()
        names = [node_naming.unique_name_for_group(group) for _ in range(count)]
        log.info("Launching {count} nodes in group {group} ({region})", count=count, group=group, region=plan.region)

        nodes: set[Node] = set()
        failed: dict[str, Exception] = {}
        with ThreadPoolExecutor(max_workers=min(count, self.properties.max_workers)) as pool:
            futures = {pool.submit(self._launch, name, template, plan): name for name in names}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    nodes.add(future.result())
                except Exception as e:
                    log.opt(exception=e).warning("Node {name} failed to launch", name=name)
                    failed[name] = e

        return CreateNodesResult(nodes=frozenset(nodes), failed=MappingProxyType(failed))

    def _plan(self, group: str, template: NodeTemplate) -> _LaunchPlan:
        region = template.region
        generate_key_pair = (
            self.properties.auto_generate_key_pairs
            if template.generate_key_pair is None
            else template.generate_key_pair
        )
        assign_floating_ip = (
            self.properties.auto_assign_floating_ip
            if template.auto_assign_floating_ip is None
            else template.auto_assign_floating_ip
        )
        self._check_extensions(region, template, generate_key_pair, assign_floating_ip)

        tags = set(template.tags)
        key_name = template.key_pair_name
        if generate_key_pair and key_name is None:
            key_pair = self._ensure_key_pair(region, self.naming.unique_name_for_group(group))
            key_name = key_pair.name
            tags.add(f"{KEY_PAIR_TAG_PREFIX}{key_name}")

        security_groups = list(template.security_groups)
        if template.inbound_ports:
            security_group = self._ensure_security_group(region, group, template.inbound_ports)
            security_groups.append(security_group.name)
            tags.add(f"{SECURITY_GROUP_ID_TAG_PREFIX}-{security_group.provider_id}")

        metadata = {**template.metadata, GROUP_METADATA_KEY: group}
        if tags:
            metadata[TAGS_METADATA_KEY] = ",".join(sorted(tags))

        pool_names = (
            self.properties.floating_ip_pool_names
            if template.floating_ip_pool_names is None
            else template.floating_ip_pool_names
        )
        return _LaunchPlan(
            region=region,
            key_name=key_name,
            security_groups=tuple(security_groups),
            metadata=MappingProxyType(metadata),
            assign_floating_ip=assign_floating_ip,
            pool_names=tuple(pool_names),
        )

    def _check_extensions(
        self,
        region: str,
        template: NodeTemplate,
        generate_key_pair: bool,
        assign_floating_ip: bool,
    ) -> None:
        if region not in self._compute.regions():
            raise ConfigurationError(f"unknown region {region}")
        if assign_floating_ip and select_floating_ip_backend(self._compute, self._network, region) is None:
            raise ConfigurationError(f"floating IPs requested but not supported in region {region}")
        if generate_key_pair and self._compute.key_pairs(region) is None:
            raise ConfigurationError(f"key pair generation requested but not supported in region {region}")
        if template.inbound_ports and self._provisioner.backend(region) is None:
            raise ConfigurationError(f"inbound ports requested but security groups are not supported in {region}")

    def _ensure_key_pair(self, region: str, name: str) -> KeyPair:
        key_pairs = self._compute.key_pairs(region)
        if key_pairs is None:
            raise ConfigurationError(f"key pairs are not supported in region {region}")
        key_pair = self._key_pairs.get(RegionAndName(region, name), lambda: key_pairs.create(name))
        if key_pair is None:
            raise ConfigurationError(f"could not create key pair {name} in {region}")
        log.debug("using key pair {name} in {region}", name=name, region=region)
        return key_pair

    def _ensure_security_group(self, region: str, group: str, ports: Iterable[int]) -> SecurityGroup:
        name = self.naming.shared_name_for_group(group)
        ports = tuple(ports)
        key = RegionAndName(region, name)
        security_group = self._security_groups.get(key, lambda: self._provisioner.ensure_group(region, name, ports))
        if security_group is None:
            raise ConfigurationError(f"could not provision security group {name} in {region}")
        missing = sorted(p for p in set(ports) if not security_group.allows(p, cidr=ANY_IPV4))
        if missing:
            log.debug("authorizing ports {ports} on security group {name} in {region}", ports=missing, name=name, region=region)
            security_group = self._provisioner.ensure_group(region, name, ports)
            self._security_groups.put(key, security_group)
        return security_group

    def _launch(self, name: str, template: NodeTemplate, plan: _LaunchPlan) -> Node:
        server = self._compute.servers(plan.region).create(
            name,
            template.image_id,
            template.flavor_id,
            key_name=plan.key_name,
            security_groups=plan.security_groups,
            metadata=plan.metadata,
        )
        node_id = RegionAndId(plan.region, server.id)
        log.debug("launched {name} as {node}", name=name, node=node_id)
        try:
            node = self._wait_running(node_id.slash_encode())
            if plan.assign_floating_ip:
                node = self._allocator.assign(node, plan.pool_names)
        except Exception:
            log.warning("Cleaning up node {node} after a failed launch", node=node_id)
            self._orchestrator.cleanup(node_id)
            raise
        return node

    # -------------------------------------------------------------------------
    # Destruction
    # -------------------------------------------------------------------------

    def destroy_node(self, node_id: str) -> bool:
        deleted = self._orchestrator.cleanup(RegionAndId.from_slash_encoded(node_id))
        if deleted:
            try:
                self._wait_terminated(node_id)
            except NodeTimeoutError as e:
                log.warning("{error}", error=e)
        return deleted

    def destroy_nodes_in_group(self, group: str) -> set[Node]:
        targets = [node for node in self.list_nodes() if node.group == group]
        destroyed: set[Node] = set()
        if not targets:
            return destroyed
        with ThreadPoolExecutor(max_workers=min(len(targets), self.properties.max_workers)) as pool:
            for node, deleted in pool.map(self._destroy_quietly, targets):
                if deleted:
                    destroyed.add(node.with_status(NodeStatus.TERMINATED))
        self.clean_up_incidental_resources(destroyed)
        return destroyed

    def _destroy_quietly(self, node: Node) -> tuple[Node, bool]:
        try:
            return node, self.destroy_node(node.id)
        except Exception:
            log.opt(exception=True).warning("Failed to destroy node {node}", node=node.id)
            return node, False

    def clean_up_incidental_resources(self, dead_nodes: Iterable[Node]) -> None:
        """Remove the shared resources of groups left without live nodes."""
        dead_nodes = list(dead_nodes)
        for region, groups in self._detector.detect(dead_nodes).items():
            for group in sorted(groups):
                log.info("Cleaning up resources of orphaned group {group} in {region}", group=group, region=region)
                tags = {
                    tag
                    for node in dead_nodes
                    if node.region == region and node.group == group
                    for tag in node.tags
                }
                self._orchestrator.cleanup_group_resources(region, tags)
                self._orchestrator.cleanup_orphaned_group(region, self.naming.contains_group(group))
