"""Best-effort teardown of a node and the resources created for it.

Per node: reclaim floating IPs, delete the key pair and security group the
library created (recognized by the node's ownership tags), and delete the
server. Only the server deletion decides the result; every other step logs
its failure and lets the next one run.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from loguru import logger

from stratus.compute.backends import select_floating_ip_backend, select_security_group_backend
from stratus.compute.normalize import parse_tags
from stratus.constants import KEY_PAIR_TAG_PREFIX, SECURITY_GROUP_ID_TAG_PREFIX, SECURITY_GROUP_TAG_PREFIX
from stratus.domain import RegionAndId, RegionAndName

if TYPE_CHECKING:
    from stratus.cache import KeyPairCache, SecurityGroupCache
    from stratus.compute.floating_ips import FloatingIpReclaimer
    from stratus.compute.ports import ComputeApi, NetworkApi

log = logger.bind(component="cleanup")


def _tagged(tags: Iterable[str], prefix: str) -> list[str]:
    return [tag.removeprefix(prefix) for tag in tags if tag.startswith(prefix) and len(tag) > len(prefix)]


class ResourceCleanupOrchestrator:
    def __init__(
        self,
        compute: ComputeApi,
        reclaimer: FloatingIpReclaimer,
        security_group_cache: SecurityGroupCache,
        key_pair_cache: KeyPairCache,
        network: NetworkApi | None = None,
    ) -> None:
        self._compute = compute
        self._network = network
        self._reclaimer = reclaimer
        self._security_groups = security_group_cache
        self._key_pairs = key_pair_cache

    def cleanup(self, node_id: RegionAndId | str) -> bool:
        """Tear down a node. Returns whether the server was deleted.

        A server that no longer exists counts as deleted.
        """
        key = node_id if isinstance(node_id, RegionAndId) else RegionAndId.from_slash_encoded(node_id)
        servers = self._compute.servers(key.region)
        server = servers.get(key.id)

        if select_floating_ip_backend(self._compute, self._network, key.region) is not None:
            try:
                self._reclaimer.reclaim(key)
            except Exception:
                log.opt(exception=True).warning("Failed to reclaim floating IPs of node {node}", node=key)

        if server is None:
            log.debug("server {node} already gone", node=key)
            return True

        tags = parse_tags(server.metadata)
        for name in _tagged(tags, KEY_PAIR_TAG_PREFIX):
            self._remove_key_pair(key.region, name)

        deleted = servers.delete(key.id)
        log.info("Deleted server {node}: {deleted}", node=key, deleted=deleted)

        for name in _tagged(tags, SECURITY_GROUP_TAG_PREFIX):
            self._remove_security_group_named(key.region, name)
        return deleted

    def cleanup_group_resources(self, region: str, tags: Iterable[str]) -> bool:
        """Delete the group-wide security group referenced by ``jclouds_sg-<id>``.

        Returns whether a group was removed.
        """
        ids = _tagged(tags, f"{SECURITY_GROUP_ID_TAG_PREFIX}-")
        if not ids:
            return False
        backend = select_security_group_backend(self._compute, self._network, region)
        if backend is None:
            return False
        removed = False
        for group_id in ids:
            try:
                deleted = backend.delete(group_id)
            except Exception:
                log.opt(exception=True).warning("Failed to delete security group {id} in {region}", id=group_id, region=region)
                continue
            self._security_groups.invalidate_where(lambda _, group, gid=group_id: group.provider_id == gid)
            log.debug("deleted security group {id} in {region}: {deleted}", id=group_id, region=region, deleted=deleted)
            removed = removed or deleted
        return removed

    def cleanup_orphaned_group(self, region: str, matches: Callable[[str], bool]) -> None:
        """Delete the security groups and key pairs whose names ``matches`` accepts."""
        backend = select_security_group_backend(self._compute, self._network, region)
        if backend is not None:
            try:
                names = [g.name for g in backend.list() if matches(g.name)]
            except Exception:
                log.opt(exception=True).warning("Failed to list security groups in {region}", region=region)
                names = []
            for name in names:
                self._remove_security_group_named(region, name)

        key_pairs = self._compute.key_pairs(region)
        if key_pairs is not None:
            try:
                names = [kp.name for kp in key_pairs.list() if matches(kp.name)]
            except Exception:
                log.opt(exception=True).warning("Failed to list key pairs in {region}", region=region)
                names = []
            for name in names:
                self._remove_key_pair(region, name)

    def _remove_key_pair(self, region: str, name: str) -> None:
        key_pairs = self._compute.key_pairs(region)
        if key_pairs is None:
            return
        try:
            log.debug("deleting key pair {name} in {region}", name=name, region=region)
            key_pairs.delete(name)
            self._key_pairs.invalidate(RegionAndName(region, name))
        except Exception:
            log.opt(exception=True).warning("Failed to delete key pair {name} in {region}", name=name, region=region)

    def _remove_security_group_named(self, region: str, name: str) -> None:
        backend = select_security_group_backend(self._compute, self._network, region)
        if backend is None:
            return
        try:
            group = next((g for g in backend.list() if g.name.lower() == name.lower()), None)
            if group is None:
                log.debug("security group {name} not found in {region}", name=name, region=region)
                return
            log.debug("deleting security group {name} ({id}) in {region}", name=group.name, id=group.id, region=region)
            backend.delete(group.id)
            self._security_groups.invalidate(RegionAndName(region, group.name))
        except Exception:
            log.opt(exception=True).warning("Failed to delete security group {name} in {region}", name=name, region=region)
