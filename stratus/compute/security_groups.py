"""Idempotent security group provisioning."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from loguru import logger

from stratus.compute.backends import (
    AlreadyExists,
    Created,
    SecurityGroupBackend,
    select_security_group_backend,
)
from stratus.compute.normalize import SecurityGroupConverter
from stratus.constants import ANY_IPV4, SECURITY_GROUP_DESCRIPTION
from stratus.domain import IpProtocol
from stratus.exceptions import ConfigurationError, IllegalStateError

if TYPE_CHECKING:
    from stratus.compute.ports import ComputeApi, LocationIndex, NetworkApi
    from stratus.domain import ProviderSecurityGroup, SecurityGroup

log = logger.bind(component="security-group")


class SecurityGroupProvisioner:
    """Creates a security group with ingress rules, or reuses the existing one.

    Concurrent callers asking for the same region and name end up with the
    same provider group: a losing ``create`` comes back as ``AlreadyExists``
    and the group is looked up by name instead.
    """

    def __init__(
        self,
        compute: ComputeApi,
        locations: LocationIndex,
        network: NetworkApi | None = None,
    ) -> None:
        self._compute = compute
        self._network = network
        self._convert = SecurityGroupConverter(locations)

    def backend(self, region: str) -> SecurityGroupBackend | None:
        return select_security_group_backend(self._compute, self._network, region)

    def ensure_group(self, region: str, name: str, ports: Iterable[int]) -> SecurityGroup:
        backend = self._require_backend(region)

        match backend.create(name, SECURITY_GROUP_DESCRIPTION):
            case Created(group=group):
                log.debug("created security group {name} ({id}) in {region}", name=name, id=group.id, region=region)
            case AlreadyExists():
                group = self._find_by_name(backend, name)
                if group is None:
                    raise IllegalStateError(f"security group {name} reported as existing but not found in {region}")
                log.debug("reusing security group {name} ({id}) in {region}", name=name, id=group.id, region=region)

        for port in sorted(set(ports)):
            backend.authorize_group(group.id, IpProtocol.TCP.value, port, port, group.id)
            backend.authorize_cidr(group.id, IpProtocol.TCP.value, port, port, ANY_IPV4)

        known = backend.list()
        refreshed = next((g for g in known if g.id == group.id), None) or backend.get(group.id) or group
        return self._convert(region, refreshed, known)

    def find(self, region: str, name: str) -> SecurityGroup | None:
        """Look up a group by exact name; ``None`` when absent or unsupported."""
        backend = self.backend(region)
        if backend is None:
            return None
        known = backend.list()
        group = next((g for g in known if g.name == name), None)
        return self._convert(region, group, known) if group else None

    def _require_backend(self, region: str) -> SecurityGroupBackend:
        backend = self.backend(region)
        if backend is None:
            raise ConfigurationError(f"security groups are not supported in region {region}")
        return backend

    @staticmethod
    def _find_by_name(backend: SecurityGroupBackend, name: str) -> ProviderSecurityGroup | None:
        return next((g for g in backend.list() if g.name == name), None)
