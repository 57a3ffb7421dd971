"""Compute normalization and resource reconciliation."""

from stratus.compute.backends import AlreadyExists, Created, CreateResult
from stratus.compute.cleanup import ResourceCleanupOrchestrator
from stratus.compute.floating_ips import FloatingIpAllocator, FloatingIpReclaimer
from stratus.compute.naming import GroupNamingConvention
from stratus.compute.normalize import OPENSTACK_STATUS, SecurityGroupConverter, ServerToNode
from stratus.compute.orphans import OrphanedGroupDetector, all_nodes_in_group_terminated
from stratus.compute.security_groups import SecurityGroupProvisioner
from stratus.compute.service import ComputeService, CreateNodesResult, NodeTemplate

__all__ = [
    "AlreadyExists",
    "Created",
    "CreateResult",
    "ResourceCleanupOrchestrator",
    "FloatingIpAllocator",
    "FloatingIpReclaimer",
    "GroupNamingConvention",
    "OPENSTACK_STATUS",
    "SecurityGroupConverter",
    "ServerToNode",
    "OrphanedGroupDetector",
    "all_nodes_in_group_terminated",
    "SecurityGroupProvisioner",
    "ComputeService",
    "CreateNodesResult",
    "NodeTemplate",
]
