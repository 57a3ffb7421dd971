from __future__ import annotations

import pytest

from stratus.compute.normalize import (
    OPENSTACK_STATUS,
    SecurityGroupConverter,
    ServerToNode,
    parse_tags,
    split_addresses,
    to_node_status,
)
from stratus.domain import (
    Hardware,
    Image,
    LocationScope,
    NodeStatus,
    ProviderRule,
    ProviderSecurityGroup,
    Server,
    ServerAddress,
)

from tests.fakes import REGION, StaticLocations

pytestmark = [pytest.mark.xdist_group("unit")]


class TestStatus:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("ACTIVE", NodeStatus.RUNNING),
            ("build", NodeStatus.PENDING),
            ("SHUTOFF", NodeStatus.SUSPENDED),
            ("DELETED", NodeStatus.TERMINATED),
            ("ERROR", NodeStatus.ERROR),
            ("SOMETHING_NEW", NodeStatus.UNRECOGNIZED),
        ],
    )
    def test_openstack_table(self, raw, expected):
        assert to_node_status(raw, OPENSTACK_STATUS) is expected

    def test_custom_table(self):
        assert to_node_status("running", {"RUNNING": NodeStatus.RUNNING}) is NodeStatus.RUNNING


class TestTags:
    def test_parses_comma_delimited(self):
        assert parse_tags({"jclouds_tags": "a, b,,c "}) == frozenset({"a", "b", "c"})

    def test_missing_key(self):
        assert parse_tags({}) == frozenset()


class TestAddresses:
    def test_classifies_private_and_public(self):
        public, private = split_addresses(
            ["10.0.0.4", "172.20.1.1", "192.168.1.9", "127.0.0.1", "169.254.0.5", "203.0.113.9", "fe80::1", "host.example"]
        )

        assert private == {"10.0.0.4", "172.20.1.1", "192.168.1.9", "127.0.0.1", "169.254.0.5"}
        assert public == {"203.0.113.9", "host.example"}


class TestServerToNode:
    @pytest.fixture
    def convert(self) -> ServerToNode:
        return ServerToNode(
            StaticLocations((REGION,)),
            hardware={f"{REGION}/m1.small": Hardware("m1.small", "small", vcpus=1)},
            images={f"{REGION}/img-1": Image("img-1", "ubuntu", os_family="ubuntu")},
        )

    def test_full_conversion(self, convert):
        server = Server(
            id="s1",
            name="web-0a1b2c",
            status="ACTIVE",
            host_id="h-77",
            image_id="img-1",
            flavor_id="m1.small",
            metadata={"jclouds_tags": "jclouds-kp-k,team", "owner": "ops"},
            addresses=(ServerAddress("10.0.0.3"), ServerAddress("2001:db8::1", version=6)),
            access_ipv4="203.0.113.3",
        )

        node = convert(REGION, server)

        assert node.id == f"{REGION}/s1"
        assert node.status is NodeStatus.RUNNING
        assert node.group == "web"
        assert node.tags == {"jclouds-kp-k", "team"}
        assert dict(node.metadata) == {"owner": "ops"}
        assert node.private_addresses == {"10.0.0.3"}
        assert node.public_addresses == {"203.0.113.3"}
        assert node.hardware.name == "small"
        assert node.os_family == "ubuntu"
        assert node.image_id == f"{REGION}/img-1"
        assert node.location.scope is LocationScope.HOST
        assert node.location.id == "h-77"
        assert node.region == REGION

    def test_group_metadata_wins_over_name(self, convert):
        node = convert(REGION, Server(id="s1", name="web-0a1b2c", status="BUILD", metadata={"jclouds-group": "api"}))

        assert node.group == "api"
        assert node.status is NodeStatus.PENDING

    def test_unmatched_name_has_no_group(self, convert):
        node = convert(REGION, Server(id="s1", name="handmade", status="ACTIVE"))

        assert node.group is None
        assert node.hardware is None
        assert node.location.scope is LocationScope.REGION

    def test_unindexed_region_gets_a_synthetic_location(self, convert):
        node = convert("elsewhere", Server(id="s1", name="x", status="ACTIVE"))

        assert node.location.id == "elsewhere"


class TestSecurityGroupConverter:
    def test_invalid_rules_are_dropped(self):
        group = ProviderSecurityGroup(
            id="sg-1",
            name="web",
            rules=(
                ProviderRule(id="r1", protocol="tcp", from_port=80, to_port=80, cidr="0.0.0.0/0"),
                ProviderRule(id="r2", protocol="tcp", from_port=90, to_port=80, cidr="0.0.0.0/0"),
                ProviderRule(id="r3", protocol="tcp", from_port=22, to_port=22, source_group_id="sg-1"),
            ),
        )

        converted = SecurityGroupConverter(StaticLocations((REGION,)))(REGION, group)

        assert converted.id == f"{REGION}/sg-1"
        assert len(converted.permissions) == 2
        assert converted.allows(80, cidr="0.0.0.0/0")
        assert converted.allows(22, group_id=f"{REGION}/sg-1")
