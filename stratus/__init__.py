"""Stratus - portable compute nodes and the resources they leave behind.

Normalizes provider servers into portable ``Node`` values and manages the
floating IPs, security groups and key pairs created alongside them.

Example:

    from injector import Injector

    from stratus import ComputeModule, ComputeService, NodeTemplate
    from stratus.providers.aws import AWS, AWSModule

    injector = Injector([ComputeModule(), AWSModule(AWS(region="us-east-1"))])
    service = injector.get(ComputeService)

    result = service.create_nodes_in_group(
        "web", 2, NodeTemplate(region="us-east-1", image_id="ami-123", flavor_id="t3.micro", inbound_ports=(22, 80)),
    )
    service.destroy_nodes_in_group("web")
"""

from stratus.logging import LogConfig, setup_logging, teardown_logging

from stratus.cache import FloatingIpCache, KeyPairCache, LoadingCache, SecurityGroupCache
from stratus.compute import (
    AlreadyExists,
    ComputeService,
    Created,
    CreateNodesResult,
    FloatingIpAllocator,
    FloatingIpReclaimer,
    GroupNamingConvention,
    NodeTemplate,
    OrphanedGroupDetector,
    ResourceCleanupOrchestrator,
    SecurityGroupProvisioner,
    ServerToNode,
)
from stratus.config import ComputeProperties, compute_properties, load_config, resolve_provider
from stratus.domain import (
    FloatingIp,
    IpPermission,
    IpProtocol,
    KeyPair,
    Location,
    LocationScope,
    Node,
    NodeStatus,
    RegionAndId,
    RegionAndName,
    SecurityGroup,
)
from stratus.exceptions import (
    ConfigurationError,
    IllegalStateError,
    InsufficientResourcesError,
    NodeTimeoutError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    StratusError,
)
from stratus.module import Catalog, ComputeModule, NetworkLink

__version__ = "0.1.0"

__all__ = [
    # Logging
    "LogConfig",
    "setup_logging",
    "teardown_logging",
    # Caches
    "LoadingCache",
    "FloatingIpCache",
    "KeyPairCache",
    "SecurityGroupCache",
    # Compute
    "AlreadyExists",
    "ComputeService",
    "Created",
    "CreateNodesResult",
    "FloatingIpAllocator",
    "FloatingIpReclaimer",
    "GroupNamingConvention",
    "NodeTemplate",
    "OrphanedGroupDetector",
    "ResourceCleanupOrchestrator",
    "SecurityGroupProvisioner",
    "ServerToNode",
    # Config
    "ComputeProperties",
    "compute_properties",
    "load_config",
    "resolve_provider",
    # Domain
    "FloatingIp",
    "IpPermission",
    "IpProtocol",
    "KeyPair",
    "Location",
    "LocationScope",
    "Node",
    "NodeStatus",
    "RegionAndId",
    "RegionAndName",
    "SecurityGroup",
    # Errors
    "ConfigurationError",
    "IllegalStateError",
    "InsufficientResourcesError",
    "NodeTimeoutError",
    "ResourceAlreadyExistsError",
    "ResourceNotFoundError",
    "StratusError",
    # DI
    "Catalog",
    "ComputeModule",
    "NetworkLink",
]
