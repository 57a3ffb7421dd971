"""EC2 implementation of the compute ports.

Elastic IPs stand in for floating IPs, EC2 security groups and key pairs
map one to one, and instance tags carry the server metadata (the ``Name``
tag is the server name).

Throttled calls are retried; other ``ClientError`` codes are translated
into the stratus exception hierarchy.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

from botocore.exceptions import ClientError
from loguru import logger
from tenacity import retry, retry_if_exception, stop_after_delay, wait_exponential

from stratus.domain import (
    FloatingIp,
    KeyPair,
    Location,
    LocationScope,
    NodeStatus,
    ProviderRule,
    ProviderSecurityGroup,
    Server,
    ServerAddress,
)
from stratus.exceptions import (
    InsufficientResourcesError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
)

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

    from stratus.providers.aws.clients import EC2ClientFactory
    from stratus.providers.aws.config import AWS

log = logger.bind(component="aws")

# =============================================================================
# Constants
# =============================================================================

NAME_TAG: Final = "Name"

EC2_STATUS: Final[Mapping[str, NodeStatus]] = MappingProxyType(
    {
        "PENDING": NodeStatus.PENDING,
        "RUNNING": NodeStatus.RUNNING,
        "SHUTTING-DOWN": NodeStatus.PENDING,
        "STOPPING": NodeStatus.PENDING,
        "STOPPED": NodeStatus.SUSPENDED,
        "TERMINATED": NodeStatus.TERMINATED,
    }
)

_THROTTLED: Final = frozenset({"RequestLimitExceeded", "Throttling", "ThrottlingException"})
_DUPLICATE: Final = frozenset(
    {"InvalidGroup.Duplicate", "InvalidKeyPair.Duplicate", "InvalidPermission.Duplicate"}
)
_EXHAUSTED: Final = frozenset({"AddressLimitExceeded", "InsufficientAddressCapacity"})


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


def _is_throttled(e: BaseException) -> bool:
    return isinstance(e, ClientError) and _error_code(e) in _THROTTLED


def _is_not_found(e: ClientError) -> bool:
    return _error_code(e).endswith(".NotFound")


@contextmanager
def _translated(kind: str, name: str) -> Iterator[None]:
    try:
        yield
    except ClientError as e:
        code = _error_code(e)
        if code in _DUPLICATE:
            raise ResourceAlreadyExistsError(kind, name) from e
        if code in _EXHAUSTED:
            raise InsufficientResourcesError(f"{kind} {name}: {code}") from e
        if code.endswith(".NotFound"):
            raise ResourceNotFoundError(f"{kind} {name} not found ({code})") from e
        raise


def throttled_call(timeout: float) -> Callable[..., Any]:
    """Return ``call(client, operation, **params)`` retrying EC2 throttling."""

    @retry(
        stop=stop_after_delay(timeout),
        wait=wait_exponential(multiplier=0.5, max=10),
        retry=retry_if_exception(_is_throttled),
        reraise=True,
    )
    def call(client: EC2Client, operation: str, **params: Any) -> dict[str, Any]:
        return getattr(client, operation)(**params)

    return call


def _tags(resource: Mapping[str, Any]) -> dict[str, str]:
    return {t["Key"]: t["Value"] for t in resource.get("Tags", [])}


# =============================================================================
# Instances
# =============================================================================


def _server(instance: Mapping[str, Any]) -> Server:
    tags = _tags(instance)
    name = tags.pop(NAME_TAG, instance["InstanceId"])
    addresses: list[ServerAddress] = []
    for key in ("PrivateIpAddress", "PublicIpAddress"):
        if instance.get(key):
            addresses.append(ServerAddress(instance[key], 4))
    for interface in instance.get("NetworkInterfaces", []):
        for v6 in interface.get("Ipv6Addresses", []):
            addresses.append(ServerAddress(v6["Ipv6Address"], 6))
    return Server(
        id=instance["InstanceId"],
        name=name,
        status=instance.get("State", {}).get("Name", "unknown"),
        host_id=instance.get("Placement", {}).get("HostId"),
        image_id=instance.get("ImageId"),
        flavor_id=instance.get("InstanceType"),
        metadata=tags,
        addresses=tuple(addresses),
        security_group_names=tuple(g["GroupName"] for g in instance.get("SecurityGroups", [])),
        key_name=instance.get("KeyName"),
    )


class EC2Servers:
    def __init__(self, client: EC2Client, config: AWS, call: Callable[..., Any]) -> None:
        self._client = client
        self._config = config
        self._call = call

    def list(self) -> Sequence[Server]:
        servers: list[Server] = []
        for page in self._client.get_paginator("describe_instances").paginate():
            for reservation in page.get("Reservations", []):
                servers.extend(_server(i) for i in reservation.get("Instances", []))
        return servers

    def get(self, server_id: str) -> Server | None:
        try:
            response = self._call(self._client, "describe_instances", InstanceIds=[server_id])
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return _server(instance)
        return None

    def create(
        self,
        name: str,
        image_id: str,
        flavor_id: str,
        *,
        key_name: str | None = None,
        security_groups: Sequence[str] = (),
        metadata: Mapping[str, str] | None = None,
    ) -> Server:
        tags = [{"Key": NAME_TAG, "Value": name}]
        tags.extend({"Key": k, "Value": v} for k, v in (metadata or {}).items())
        params: dict[str, Any] = {
            "ImageId": image_id,
            "InstanceType": flavor_id,
            "MinCount": 1,
            "MaxCount": 1,
            "TagSpecifications": [{"ResourceType": "instance", "Tags": tags}],
        }
        if key_name:
            params["KeyName"] = key_name
        if security_groups:
            params["SecurityGroupIds"] = self._group_ids(security_groups)
        if self._config.subnet_id:
            params["SubnetId"] = self._config.subnet_id

        with _translated("instance", name):
            response = self._call(self._client, "run_instances", **params)
        instance = response["Instances"][0]
        log.debug("run_instances {name} -> {id}", name=name, id=instance["InstanceId"])
        return _server(instance)

    def delete(self, server_id: str) -> bool:
        try:
            self._call(self._client, "terminate_instances", InstanceIds=[server_id])
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise
        return True

    def _group_ids(self, names: Sequence[str]) -> list[str]:
        filters = [{"Name": "group-name", "Values": list(names)}]
        if self._config.vpc_id:
            filters.append({"Name": "vpc-id", "Values": [self._config.vpc_id]})
        response = self._call(self._client, "describe_security_groups", Filters=filters)
        ids = {g["GroupName"]: g["GroupId"] for g in response.get("SecurityGroups", [])}
        missing = [n for n in names if n not in ids]
        if missing:
            raise ResourceNotFoundError(f"security groups not found: {', '.join(missing)}")
        return [ids[n] for n in names]


# =============================================================================
# Elastic IPs
# =============================================================================


def _floating_ip(address: Mapping[str, Any]) -> FloatingIp:
    return FloatingIp(
        id=address["AllocationId"],
        address=address["PublicIp"],
        fixed_ip=address.get("PrivateIpAddress"),
        server_id=address.get("InstanceId"),
        port_id=address.get("NetworkInterfaceId"),
        pool=address.get("PublicIpv4Pool"),
    )


class EC2ElasticIps:
    def __init__(self, client: EC2Client, call: Callable[..., Any]) -> None:
        self._client = client
        self._call = call

    def list(self) -> Sequence[FloatingIp]:
        response = self._call(self._client, "describe_addresses", Filters=[{"Name": "domain", "Values": ["vpc"]}])
        return [_floating_ip(a) for a in response.get("Addresses", [])]

    def create(self) -> FloatingIp:
        return self._allocate("default")

    def allocate_from_pool(self, pool: str) -> FloatingIp:
        return self._allocate(pool, PublicIpv4Pool=pool)

    def _allocate(self, pool: str, **params: Any) -> FloatingIp:
        with _translated("address pool", pool):
            response = self._call(self._client, "allocate_address", Domain="vpc", **params)
        return FloatingIp(
            id=response["AllocationId"],
            address=response["PublicIp"],
            pool=response.get("PublicIpv4Pool"),
        )

    def add_to_server(self, address: str, server_id: str) -> None:
        allocation = self._describe(address)
        with _translated("address", address):
            self._call(
                self._client,
                "associate_address",
                AllocationId=allocation["AllocationId"],
                InstanceId=server_id,
                AllowReassociation=False,
            )

    def remove_from_server(self, address: str, server_id: str) -> None:
        allocation = self._describe(address)
        if allocation.get("InstanceId") != server_id or "AssociationId" not in allocation:
            log.debug("address {address} is not associated with {server}", address=address, server=server_id)
            return
        with _translated("address", address):
            self._call(self._client, "disassociate_address", AssociationId=allocation["AssociationId"])

    def delete(self, floating_ip_id: str) -> bool:
        try:
            self._call(self._client, "release_address", AllocationId=floating_ip_id)
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise
        return True

    def _describe(self, address: str) -> Mapping[str, Any]:
        with _translated("address", address):
            response = self._call(self._client, "describe_addresses", PublicIps=[address])
        addresses = response.get("Addresses", [])
        if not addresses:
            raise ResourceNotFoundError(f"address {address} not found")
        return addresses[0]


# =============================================================================
# Security groups
# =============================================================================


def _rules(group_id: str, permissions: Sequence[Mapping[str, Any]]) -> tuple[ProviderRule, ...]:
    rules: list[ProviderRule] = []
    for perm in permissions:
        protocol = perm.get("IpProtocol", "-1")
        from_port = perm.get("FromPort", -1)
        to_port = perm.get("ToPort", -1)
        prefix = f"{group_id}:{protocol}:{from_port}-{to_port}"
        for ip_range in perm.get("IpRanges", []):
            rules.append(
                ProviderRule(
                    id=f"{prefix}:{ip_range['CidrIp']}",
                    protocol=protocol,
                    from_port=from_port,
                    to_port=to_port,
                    cidr=ip_range["CidrIp"],
                )
            )
        for pair in perm.get("UserIdGroupPairs", []):
            rules.append(
                ProviderRule(
                    id=f"{prefix}:{pair['GroupId']}",
                    protocol=protocol,
                    from_port=from_port,
                    to_port=to_port,
                    source_group_id=pair["GroupId"],
                )
            )
    return tuple(rules)


def _security_group(group: Mapping[str, Any]) -> ProviderSecurityGroup:
    return ProviderSecurityGroup(
        id=group["GroupId"],
        name=group["GroupName"],
        tenant_id=group.get("OwnerId"),
        description=group.get("Description", ""),
        rules=_rules(group["GroupId"], group.get("IpPermissions", [])),
    )


class EC2SecurityGroups:
    def __init__(self, client: EC2Client, config: AWS, call: Callable[..., Any]) -> None:
        self._client = client
        self._config = config
        self._call = call

    def list(self) -> Sequence[ProviderSecurityGroup]:
        params: dict[str, Any] = {}
        if self._config.vpc_id:
            params["Filters"] = [{"Name": "vpc-id", "Values": [self._config.vpc_id]}]
        response = self._call(self._client, "describe_security_groups", **params)
        return [_security_group(g) for g in response.get("SecurityGroups", [])]

    def get(self, group_id: str) -> ProviderSecurityGroup | None:
        try:
            response = self._call(self._client, "describe_security_groups", GroupIds=[group_id])
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise
        groups = response.get("SecurityGroups", [])
        return _security_group(groups[0]) if groups else None

    def create(self, name: str, description: str) -> ProviderSecurityGroup:
        params: dict[str, Any] = {"GroupName": name, "Description": description}
        if self._config.vpc_id:
            params["VpcId"] = self._config.vpc_id
        with _translated("security group", name):
            response = self._call(self._client, "create_security_group", **params)
        return ProviderSecurityGroup(id=response["GroupId"], name=name, description=description)

    def delete(self, group_id: str) -> bool:
        try:
            self._call(self._client, "delete_security_group", GroupId=group_id)
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise
        return True

    def create_rule_allowing_cidr_block(
        self, group_id: str, protocol: str, from_port: int, to_port: int, cidr: str
    ) -> ProviderRule:
        self._authorize(group_id, protocol, from_port, to_port, IpRanges=[{"CidrIp": cidr}])
        return ProviderRule(
            id=f"{group_id}:{protocol}:{from_port}-{to_port}:{cidr}",
            protocol=protocol,
            from_port=from_port,
            to_port=to_port,
            cidr=cidr,
        )

    def create_rule_allowing_security_group_id(
        self, group_id: str, protocol: str, from_port: int, to_port: int, source_group_id: str
    ) -> ProviderRule:
        self._authorize(group_id, protocol, from_port, to_port, UserIdGroupPairs=[{"GroupId": source_group_id}])
        return ProviderRule(
            id=f"{group_id}:{protocol}:{from_port}-{to_port}:{source_group_id}",
            protocol=protocol,
            from_port=from_port,
            to_port=to_port,
            source_group_id=source_group_id,
        )

    def _authorize(self, group_id: str, protocol: str, from_port: int, to_port: int, **source: Any) -> None:
        permission = {"IpProtocol": protocol, "FromPort": from_port, "ToPort": to_port, **source}
        with _translated("rule", f"{group_id}:{protocol}:{from_port}-{to_port}"):
            self._call(self._client, "authorize_security_group_ingress", GroupId=group_id, IpPermissions=[permission])


# =============================================================================
# Key pairs
# =============================================================================


class EC2KeyPairs:
    def __init__(self, client: EC2Client, call: Callable[..., Any]) -> None:
        self._client = client
        self._call = call

    def list(self) -> Sequence[KeyPair]:
        response = self._call(self._client, "describe_key_pairs")
        return [
            KeyPair(name=k["KeyName"], fingerprint=k.get("KeyFingerprint", ""), public_key=k.get("PublicKey", ""))
            for k in response.get("KeyPairs", [])
        ]

    def get(self, name: str) -> KeyPair | None:
        try:
            response = self._call(self._client, "describe_key_pairs", KeyNames=[name])
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise
        pairs = response.get("KeyPairs", [])
        if not pairs:
            return None
        return KeyPair(name=pairs[0]["KeyName"], fingerprint=pairs[0].get("KeyFingerprint", ""))

    def create(self, name: str) -> KeyPair:
        with _translated("key pair", name):
            response = self._call(self._client, "create_key_pair", KeyName=name)
        return KeyPair(
            name=response["KeyName"],
            fingerprint=response.get("KeyFingerprint", ""),
            private_key=response.get("KeyMaterial"),
        )

    def delete(self, name: str) -> bool:
        try:
            self._call(self._client, "delete_key_pair", KeyName=name)
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise
        return True


# =============================================================================
# Compute API and locations
# =============================================================================


class EC2Compute:
    """``ComputeApi`` over EC2, one client per region."""

    def __init__(self, config: AWS, clients: EC2ClientFactory) -> None:
        self._config = config
        self._clients = clients
        self._call = throttled_call(config.throttle_timeout)

    def regions(self) -> frozenset[str]:
        return self._config.all_regions

    def servers(self, region: str) -> EC2Servers:
        return EC2Servers(self._clients(region), self._config, self._call)

    def floating_ips(self, region: str) -> EC2ElasticIps:
        return EC2ElasticIps(self._clients(region), self._call)

    def security_groups(self, region: str) -> EC2SecurityGroups:
        return EC2SecurityGroups(self._clients(region), self._config, self._call)

    def key_pairs(self, region: str) -> EC2KeyPairs:
        return EC2KeyPairs(self._clients(region), self._call)


class RegionLocations:
    """``LocationIndex`` of the configured regions."""

    def __init__(self, config: AWS) -> None:
        provider = Location(id="aws", scope=LocationScope.PROVIDER, description="Amazon Web Services")
        self._locations = MappingProxyType(
            {
                region: Location(id=region, scope=LocationScope.REGION, description=region, parent=provider)
                for region in sorted(config.all_regions)
            }
        )

    def __call__(self) -> Mapping[str, Location]:
        return self._locations
