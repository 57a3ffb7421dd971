"""Conversion of provider descriptors into portable values."""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import TYPE_CHECKING, Final

from loguru import logger

from stratus.compute.naming import GroupNamingConvention
from stratus.constants import GROUP_METADATA_KEY, TAGS_METADATA_KEY
from stratus.domain import (
    Hardware,
    Image,
    IpPermission,
    IpProtocol,
    Location,
    LocationScope,
    Node,
    NodeStatus,
    ProviderRule,
    ProviderSecurityGroup,
    RegionAndId,
    SecurityGroup,
    Server,
)

if TYPE_CHECKING:
    from stratus.compute.ports import LocationIndex

log = logger.bind(component="normalize")

type StatusMap = Mapping[str, NodeStatus]

_PENDING = (
    "BUILD",
    "HARD_REBOOT",
    "MIGRATING",
    "PASSWORD",
    "REBOOT",
    "REBUILD",
    "RESCUE",
    "RESIZE",
    "REVERT_RESIZE",
    "VERIFY_RESIZE",
)
_SUSPENDED = ("PAUSED", "SHELVED", "SHELVED_OFFLOADED", "SHUTOFF", "STOPPED", "SUSPENDED")

OPENSTACK_STATUS: Final[StatusMap] = MappingProxyType(
    {
        "ACTIVE": NodeStatus.RUNNING,
        **dict.fromkeys(_PENDING, NodeStatus.PENDING),
        "DELETED": NodeStatus.TERMINATED,
        "SOFT_DELETED": NodeStatus.TERMINATED,
        "ERROR": NodeStatus.ERROR,
        **dict.fromkeys(_SUSPENDED, NodeStatus.SUSPENDED),
        "UNKNOWN": NodeStatus.UNRECOGNIZED,
        "UNRECOGNIZED": NodeStatus.UNRECOGNIZED,
    }
)

_RFC1918: Final = tuple(
    ipaddress.ip_network(n) for n in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16")
)


def to_node_status(status: str, table: StatusMap = OPENSTACK_STATUS) -> NodeStatus:
    return table.get(status.upper(), NodeStatus.UNRECOGNIZED)


def parse_tags(metadata: Mapping[str, str]) -> frozenset[str]:
    """Tags stored comma-delimited under the tags metadata key."""
    raw = metadata.get(TAGS_METADATA_KEY) or ""
    return frozenset(tag.strip() for tag in raw.split(",") if tag.strip())


def split_addresses(addresses: Iterable[str]) -> tuple[frozenset[str], frozenset[str]]:
    """Split addresses into ``(public, private)``.

    IPv6 literals are dropped. Hostnames are not IP literals and count as
    public.
    """
    public: set[str] = set()
    private: set[str] = set()
    for address in addresses:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            public.add(address)
            continue
        if ip.version != 4:
            continue
        if ip.is_loopback or ip.is_link_local or any(ip in net for net in _RFC1918):
            private.add(address)
        else:
            public.add(address)
    return frozenset(public), frozenset(private)


class ServerToNode:
    """Turns a provider ``Server`` in a region into a portable ``Node``.

    Hardware and images are looked up by ``region/id``; a miss leaves the
    field empty.
    """

    def __init__(
        self,
        locations: LocationIndex,
        *,
        hardware: Mapping[str, Hardware] | None = None,
        images: Mapping[str, Image] | None = None,
        naming: GroupNamingConvention | None = None,
        status_map: StatusMap = OPENSTACK_STATUS,
    ) -> None:
        self._locations = locations
        self._hardware = hardware or {}
        self._images = images or {}
        self._naming = naming or GroupNamingConvention().without_prefix()
        self._status_map = status_map

    def __call__(self, region: str, server: Server) -> Node:
        key = RegionAndId(region, server.id)
        metadata = dict(server.metadata)
        tags = parse_tags(metadata)
        metadata.pop(TAGS_METADATA_KEY, None)
        group = metadata.get(GROUP_METADATA_KEY) or self._naming.group_from_name(server.name)

        addresses = [a.address for a in server.addresses]
        if server.access_ipv4:
            addresses.append(server.access_ipv4)
        public, private = split_addresses(addresses)

        hardware = self._lookup(self._hardware, region, server.flavor_id, "hardware")
        image = self._lookup(self._images, region, server.image_id, "image")

        return Node(
            id=key.slash_encode(),
            provider_id=server.id,
            name=server.name,
            location=self._location(region, server.host_id),
            status=to_node_status(server.status, self._status_map),
            group=group,
            tags=tags,
            metadata=metadata,
            public_addresses=public,
            private_addresses=private,
            hardware=hardware,
            image_id=RegionAndId(region, server.image_id).slash_encode() if server.image_id else None,
            os_family=image.os_family if image else None,
        )

    def _location(self, region: str, host_id: str | None) -> Location:
        parent = self._locations().get(region)
        if parent is None:
            log.trace("<< location for region {region} not indexed", region=region)
            parent = Location(id=region, scope=LocationScope.REGION, description=region)
        if not host_id:
            return parent
        return Location(id=host_id, scope=LocationScope.HOST, description=host_id, parent=parent)

    @staticmethod
    def _lookup[T](index: Mapping[str, T], region: str, id_: str | None, kind: str) -> T | None:
        if not id_:
            return None
        key = RegionAndId(region, id_).slash_encode()
        value = index.get(key)
        if value is None:
            log.trace("<< {kind} {key} not found", kind=kind, key=key)
        return value


class SecurityGroupConverter:
    """Turns a ``ProviderSecurityGroup`` into a portable ``SecurityGroup``.

    Peer-group references resolve against ``known`` (the region's groups).
    A reference that can't be resolved, or that matches more than one group,
    is dropped with a warning.
    """

    def __init__(self, locations: LocationIndex) -> None:
        self._locations = locations

    def __call__(
        self,
        region: str,
        group: ProviderSecurityGroup,
        known: Sequence[ProviderSecurityGroup] = (),
    ) -> SecurityGroup:
        candidates = {g.id: g for g in (*known, group)}
        permissions = tuple(
            perm
            for rule in group.rules
            if (perm := self._permission(region, group, rule, list(candidates.values()))) is not None
        )
        location = self._locations().get(region) or Location(id=region)
        return SecurityGroup(
            id=RegionAndId(region, group.id).slash_encode(),
            provider_id=group.id,
            name=group.name,
            location=location,
            permissions=permissions,
            owner_id=group.tenant_id,
        )

    def _permission(
        self,
        region: str,
        group: ProviderSecurityGroup,
        rule: ProviderRule,
        known: list[ProviderSecurityGroup],
    ) -> IpPermission | None:
        cidr_blocks: frozenset[str] = frozenset()
        group_ids: frozenset[str] = frozenset()
        if rule.cidr:
            cidr_blocks = frozenset({rule.cidr})
        elif rule.source_group_id or rule.source_group:
            peer = self._resolve_peer(group, rule, known)
            if peer is None:
                return None
            group_ids = frozenset({RegionAndId(region, peer.id).slash_encode()})
        try:
            return IpPermission(
                protocol=IpProtocol.parse(rule.protocol),
                from_port=rule.from_port,
                to_port=rule.to_port,
                cidr_blocks=cidr_blocks,
                group_ids=group_ids,
            )
        except ValueError as e:
            log.warning("dropping rule {rule} of group {group}: {error}", rule=rule.id, group=group.name, error=e)
            return None

    @staticmethod
    def _resolve_peer(
        group: ProviderSecurityGroup,
        rule: ProviderRule,
        known: list[ProviderSecurityGroup],
    ) -> ProviderSecurityGroup | None:
        if rule.source_group_id:
            matches = [g for g in known if g.id == rule.source_group_id]
            reference = rule.source_group_id
        elif (ref := rule.source_group) is not None:
            matches = [
                g for g in known if g.name == ref.name and (ref.tenant_id is None or g.tenant_id == ref.tenant_id)
            ]
            reference = f"{ref.tenant_id}/{ref.name}"
        else:
            return None
        if not matches:
            log.warning(
                "dropping rule {rule} of group {group}: peer group {ref} not found",
                rule=rule.id,
                group=group.name,
                ref=reference,
            )
            return None
        if len(matches) > 1:
            log.warning(
                "dropping rule {rule} of group {group}: peer group {ref} is ambiguous ({count} matches)",
                rule=rule.id,
                group=group.name,
                ref=reference,
                count=len(matches),
            )
            return None
        return matches[0]
