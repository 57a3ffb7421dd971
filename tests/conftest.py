from __future__ import annotations

import pytest

from stratus.cache import FloatingIpCache, KeyPairCache, SecurityGroupCache
from stratus.compute.cleanup import ResourceCleanupOrchestrator
from stratus.compute.floating_ips import FloatingIpAllocator, FloatingIpReclaimer
from stratus.compute.normalize import ServerToNode
from stratus.compute.security_groups import SecurityGroupProvisioner

from tests.fakes import REGION, FakeCloud, StaticLocations



@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud(regions=(REGION, "R2"))


@pytest.fixture
def locations() -> StaticLocations:
    return StaticLocations((REGION, "R2"))


@pytest.fixture
def floating_ip_cache() -> FloatingIpCache:
    return FloatingIpCache(name="floating-ip")


@pytest.fixture
def security_group_cache() -> SecurityGroupCache:
    return SecurityGroupCache(name="security-group")


@pytest.fixture
def key_pair_cache() -> KeyPairCache:
    return KeyPairCache(name="key-pair")


@pytest.fixture
def to_node(locations: StaticLocations) -> ServerToNode:
    return ServerToNode(locations)


@pytest.fixture
def allocator(cloud: FakeCloud, floating_ip_cache: FloatingIpCache) -> FloatingIpAllocator:
    return FloatingIpAllocator(cloud, floating_ip_cache)


@pytest.fixture
def reclaimer(cloud: FakeCloud, floating_ip_cache: FloatingIpCache) -> FloatingIpReclaimer:
    return FloatingIpReclaimer(cloud, floating_ip_cache)


@pytest.fixture
def provisioner(cloud: FakeCloud, locations: StaticLocations) -> SecurityGroupProvisioner:
    return SecurityGroupProvisioner(cloud, locations)


@pytest.fixture
def orchestrator(
    cloud: FakeCloud,
    reclaimer: FloatingIpReclaimer,
    security_group_cache: SecurityGroupCache,
    key_pair_cache: KeyPairCache,
) -> ResourceCleanupOrchestrator:
    return ResourceCleanupOrchestrator(cloud, reclaimer, security_group_cache, key_pair_cache)


@pytest.fixture
def running_node(cloud: FakeCloud, to_node: ServerToNode):
    server = cloud.add_server(REGION, "web-0a1b2c")
    return to_node(REGION, server)


