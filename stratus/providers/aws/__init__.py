"""AWS EC2 provider for Stratus.

Example:
    from injector import Injector

    from stratus.compute import ComputeService
    from stratus.module import ComputeModule
    from stratus.providers.aws import AWS, AWSModule

    injector = Injector([ComputeModule(), AWSModule(AWS(region="us-east-1"))])
    service = injector.get(ComputeService)
"""

from stratus.providers.aws.clients import AWSModule, EC2ClientFactory
from stratus.providers.aws.config import AWS
from stratus.providers.aws.ec2 import EC2_STATUS, EC2Compute, RegionLocations

__all__ = ["AWS", "AWSModule", "EC2ClientFactory", "EC2Compute", "EC2_STATUS", "RegionLocations"]
