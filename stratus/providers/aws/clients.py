"""AWS client factories with dependency injection.

Provides the EC2 client factory and the module binding the compute ports
to their EC2 implementation.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

import boto3
from injector import Binder, Module, provider, singleton

from stratus.compute.ports import ComputeApi, LocationIndex
from stratus.module import Catalog
from stratus.providers.aws.config import AWS
from stratus.providers.aws.ec2 import EC2_STATUS, EC2Compute, RegionLocations

# =============================================================================
# Wrapper Classes for DI (each needs a unique type)
# =============================================================================


class EC2ClientFactory:
    """Per-region EC2 clients, created lazily and reused."""

    def __init__(self, factory: Callable[[str], Any]) -> None:
        self._factory = factory
        self._clients: dict[str, Any] = {}
        self._lock = threading.Lock()

    def __call__(self, region: str) -> Any:
        with self._lock:
            client = self._clients.get(region)
            if client is None:
                client = self._clients[region] = self._factory(region)
            return client


# =============================================================================
# AWS Module
# =============================================================================


class AWSModule(Module):
    """DI module binding the compute ports to EC2.

    Usage:
        >>> from injector import Injector
        >>> from stratus.module import ComputeModule
        >>> from stratus.providers.aws import AWSModule, AWS
        >>>
        >>> injector = Injector([ComputeModule(), AWSModule(AWS(region="us-east-1"))])
        >>> service = injector.get(ComputeService)
    """

    def __init__(self, config: AWS | None = None) -> None:
        self._config = config or AWS()

    def configure(self, binder: Binder) -> None:
        binder.bind(AWS, to=self._config)

    @singleton
    @provider
    def provide_session(self) -> boto3.Session:
        """Provide singleton boto3 session."""
        return boto3.Session()

    @singleton
    @provider
    def provide_ec2(self, session: boto3.Session) -> EC2ClientFactory:
        """Provide EC2 client factory."""
        return EC2ClientFactory(lambda region: session.client("ec2", region_name=region))

    @singleton
    @provider
    def provide_compute_api(self, config: AWS, clients: EC2ClientFactory) -> ComputeApi:
        return EC2Compute(config, clients)

    @singleton
    @provider
    def provide_locations(self, config: AWS) -> LocationIndex:
        return RegionLocations(config)

    @singleton
    @provider
    def provide_catalog(self) -> Catalog:
        return Catalog(status_map=EC2_STATUS)
