"""Floating IP allocation and reclaim.

Allocation tries, in order: each requested pool, the provider's default
pool, then scavenging an unattached address. Scavenging shuffles the
candidates. The decision and the attach run under a lock owned by the
allocator. Two allocators (in this process or another) can still pick the
same scavenged address; the shuffle only makes that less likely.
"""

from __future__ import annotations

import random
import threading
from collections.abc import Sequence
from typing import TYPE_CHECKING

from loguru import logger

from stratus.compute.backends import FloatingIpBackend, select_floating_ip_backend
from stratus.exceptions import ConfigurationError, InsufficientResourcesError, ResourceNotFoundError

if TYPE_CHECKING:
    from stratus.cache import FloatingIpCache
    from stratus.compute.ports import ComputeApi, NetworkApi
    from stratus.domain import FloatingIp, Node, RegionAndId

log = logger.bind(component="floating-ip")

_EXHAUSTED = (InsufficientResourcesError, ResourceNotFoundError)


def _backend_for(compute: ComputeApi, network: NetworkApi | None, region: str) -> FloatingIpBackend:
    backend = select_floating_ip_backend(compute, network, region)
    if backend is None:
        raise ConfigurationError(f"floating IPs are not supported in region {region}")
    return backend


class FloatingIpAllocator:
    """Allocates a floating IP for a running node and attaches it."""

    def __init__(
        self,
        compute: ComputeApi,
        cache: FloatingIpCache,
        network: NetworkApi | None = None,
    ) -> None:
        self._compute = compute
        self._network = network
        self._cache = cache
        self._lock = threading.Lock()

    def allocate(self, node: Node, pool_names: Sequence[str] | None = None) -> FloatingIp:
        """Allocate and attach a floating IP to ``node``.

        Raises:
            InsufficientResourcesError: No strategy produced an address.
        """
        backend = _backend_for(self._compute, self._network, node.region)
        with self._lock:
            ip = self._choose(backend, node, pool_names or ())
            log.debug("attaching floating IP {ip} to node {node}", ip=ip.address, node=node.id)
            attached = backend.attach(ip, node)
        self._cache.invalidate(node.region_and_id)
        log.info("Floating IP {ip} attached to node {node}", ip=attached.address, node=node.id)
        return attached

    def assign(self, node: Node, pool_names: Sequence[str] | None = None) -> Node:
        """Allocate a floating IP and return ``node`` with it as its public address."""
        ip = self.allocate(node, pool_names)
        return node.with_public_addresses([ip.address])

    def _choose(self, backend: FloatingIpBackend, node: Node, pool_names: Sequence[str]) -> FloatingIp:
        for pool in pool_names:
            try:
                ip = backend.allocate_from_pool(pool)
                log.debug("allocated {ip} from pool {pool}", ip=ip.address, pool=pool)
                return ip
            except _EXHAUSTED as e:
                log.trace("<< [{error}] failed to allocate a floating IP from pool {pool}", error=e, pool=pool)

        try:
            ip = backend.create()
            log.debug("allocated {ip} from the default pool", ip=ip.address)
            return ip
        except _EXHAUSTED as e:
            log.trace("<< [{error}] failed to create a floating IP for node {node}", error=e, node=node.id)

        unassigned = [ip for ip in backend.list() if not ip.is_attached]
        if not unassigned:
            log.warning("No floating IP available for node {node}", node=node.id)
            raise InsufficientResourcesError.for_node(node.id)
        random.shuffle(unassigned)
        ip = unassigned[-1]
        log.debug("scavenged unassigned floating IP {ip} for node {node}", ip=ip.address, node=node.id)
        return ip


class FloatingIpReclaimer:
    """Detaches and deallocates the floating IPs of a node. Safe to repeat."""

    def __init__(
        self,
        compute: ComputeApi,
        cache: FloatingIpCache,
        network: NetworkApi | None = None,
    ) -> None:
        self._compute = compute
        self._network = network
        self._cache = cache

    def reclaim(self, node_id: RegionAndId) -> RegionAndId:
        backend = _backend_for(self._compute, self._network, node_id.region)
        try:
            ips = self._cache.get(node_id, lambda: tuple(backend.list_for_server(node_id.id))) or ()
            for ip in ips:
                if backend.requires_detach:
                    log.debug("detaching floating IP {ip} from node {node}", ip=ip.address, node=node_id)
                    backend.detach(ip, node_id.id)
                log.debug("deallocating floating IP {ip}", ip=ip.address)
                backend.deallocate(ip)
        finally:
            self._cache.invalidate(node_id)
        return node_id
