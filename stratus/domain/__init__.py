"""Domain values and composite keys."""

from stratus.domain.keys import RegionAndId, RegionAndName
from stratus.domain.model import (
    FloatingIp,
    GroupRef,
    Hardware,
    Image,
    IpPermission,
    IpProtocol,
    KeyPair,
    Location,
    LocationScope,
    Network,
    Node,
    NodeStatus,
    Port,
    ProviderRule,
    ProviderSecurityGroup,
    SecurityGroup,
    Server,
    ServerAddress,
)

__all__ = [
    "RegionAndId",
    "RegionAndName",
    "FloatingIp",
    "GroupRef",
    "Hardware",
    "Image",
    "IpPermission",
    "IpProtocol",
    "KeyPair",
    "Location",
    "LocationScope",
    "Network",
    "Node",
    "NodeStatus",
    "Port",
    "ProviderRule",
    "ProviderSecurityGroup",
    "SecurityGroup",
    "Server",
    "ServerAddress",
]
