"""AWS provider configuration.

Immutable configuration dataclass for the AWS provider.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AWS:
    """AWS provider configuration.

    Example:
        >>> from stratus.providers.aws import AWS
        >>> config = AWS(region="us-west-2")

    Args:
        region: Default AWS region. Default: us-east-1
        regions: Additional regions the compute service manages.
        vpc_id: VPC for security groups. If None, the default VPC is used.
        subnet_id: Subnet for launched instances. If None, EC2 picks one.
        throttle_timeout: Seconds to keep retrying throttled EC2 calls.
    """

    region: str = "us-east-1"
    regions: tuple[str, ...] = ()
    vpc_id: str | None = None
    subnet_id: str | None = None
    throttle_timeout: float = 60

    def __post_init__(self) -> None:
        object.__setattr__(self, "regions", tuple(self.regions))

    @property
    def all_regions(self) -> frozenset[str]:
        return frozenset((self.region, *self.regions))
