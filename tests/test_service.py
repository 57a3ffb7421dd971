from __future__ import annotations

from dataclasses import replace

import pytest

from stratus.compute.service import ComputeService, NodeTemplate
from stratus.config import ComputeProperties
from stratus.domain import NodeStatus
from stratus.exceptions import ConfigurationError, IllegalStateError, InsufficientResourcesError

from tests.fakes import REGION, FakeCloud

pytestmark = [pytest.mark.xdist_group("unit")]

FAST = ComputeProperties(poll_interval=0.01, node_running_timeout=1, node_terminated_timeout=1)


def _service(cloud, to_node, allocator, provisioner, orchestrator, security_group_cache, key_pair_cache, **props):
    properties = replace(FAST, **props)
    return ComputeService(
        cloud,
        to_node,
        allocator,
        provisioner,
        orchestrator,
        security_group_cache,
        key_pair_cache,
        properties=properties,
    )


@pytest.fixture
def service(cloud, to_node, allocator, provisioner, orchestrator, security_group_cache, key_pair_cache) -> ComputeService:
    return _service(cloud, to_node, allocator, provisioner, orchestrator, security_group_cache, key_pair_cache)


@pytest.fixture
def template() -> NodeTemplate:
    return NodeTemplate(
        region=REGION,
        image_id="img-1",
        flavor_id="m1.small",
        inbound_ports=(22, 80),
        generate_key_pair=True,
        auto_assign_floating_ip=True,
        tags=frozenset({"team-a"}),
    )


class TestCreateNodes:
    def test_launches_with_side_resources(self, cloud, service, template):
        cloud.default_pool[REGION] = ["172.24.4.1", "172.24.4.2"]

        result = service.create_nodes_in_group("web", 2, template)

        assert result.failed == {}
        assert len(result.nodes) == 2
        assert {a for n in result.nodes for a in n.public_addresses} == {"172.24.4.1", "172.24.4.2"}
        assert all(n.group == "web" and n.status is NodeStatus.RUNNING for n in result.nodes)

        (group,) = cloud.groups[REGION].values()
        assert group.name == "jclouds-web"
        (key_name,) = cloud.keys[REGION]
        assert key_name.startswith("jclouds-web-")
        for server in cloud.server_map[REGION].values():
            assert server.metadata["jclouds-group"] == "web"
            assert set(server.metadata["jclouds_tags"].split(",")) == {
                "team-a",
                f"jclouds-kp-{key_name}",
                f"jclouds_sg-{group.id}",
            }
            assert server.security_group_names == ("jclouds-web",)
            assert server.key_name == key_name

    def test_security_group_is_shared_across_launches(self, cloud, service, template):
        cloud.default_pool[REGION] = ["172.24.4.1", "172.24.4.2"]

        service.create_nodes_in_group("web", 1, template)
        service.create_nodes_in_group("web", 1, template)

        assert len(cloud.groups[REGION]) == 1
        assert cloud.calls.count("security_groups.create") == 1

    def test_new_inbound_ports_are_authorized_on_the_shared_group(self, cloud, service, provisioner):
        service.create_nodes_in_group("web", 1, NodeTemplate(region=REGION, image_id="i", flavor_id="f", inbound_ports=(22,)))
        service.create_nodes_in_group(
            "web", 1, NodeTemplate(region=REGION, image_id="i", flavor_id="f", inbound_ports=(22, 8080))
        )

        group = provisioner.find(REGION, "jclouds-web")
        assert group.allows(22, cidr="0.0.0.0/0")
        assert group.allows(8080, cidr="0.0.0.0/0")
        assert group.allows(8080, group_id=group.id)
        assert len(cloud.groups[REGION]) == 1

    def test_node_without_floating_ip_is_cleaned_up_and_reported(self, cloud, service, template):
        result = service.create_nodes_in_group("web", 1, template)

        assert result.nodes == frozenset()
        (error,) = result.failed.values()
        assert isinstance(error, InsufficientResourcesError)
        assert cloud.server_map[REGION] == {}

    def test_node_in_error_is_cleaned_up(self, cloud, service):
        cloud.server_status = "ERROR"

        result = service.create_nodes_in_group("web", 2, NodeTemplate(region=REGION, image_id="i", flavor_id="f"))

        assert len(result.failed) == 2
        assert all(isinstance(e, IllegalStateError) for e in result.failed.values())
        assert cloud.server_map[REGION] == {}

    def test_properties_supply_defaults(
        self, cloud, to_node, allocator, provisioner, orchestrator, security_group_cache, key_pair_cache
    ):
        cloud.pools[REGION] = {"public": ["203.0.113.1"]}
        service = _service(
            cloud,
            to_node,
            allocator,
            provisioner,
            orchestrator,
            security_group_cache,
            key_pair_cache,
            auto_assign_floating_ip=True,
            floating_ip_pool_names=("public",),
        )

        result = service.create_nodes_in_group("web", 1, NodeTemplate(region=REGION, image_id="i", flavor_id="f"))

        (node,) = result.nodes
        assert node.public_addresses == {"203.0.113.1"}
        assert cloud.keys[REGION] == {}

    def test_explicit_key_pair_is_not_generated(self, cloud, service, template):
        cloud.default_pool[REGION] = ["172.24.4.1"]

        service.create_nodes_in_group("web", 1, NodeTemplate(region=REGION, image_id="i", flavor_id="f", key_pair_name="mine"))

        (server,) = cloud.server_map[REGION].values()
        assert server.key_name == "mine"
        assert "key_pairs.create" not in cloud.calls

    def test_missing_floating_ip_extension(
        self, to_node, allocator, provisioner, orchestrator, security_group_cache, key_pair_cache, template
    ):
        cloud = FakeCloud(regions=(REGION,), floating_ips=False)
        service = _service(cloud, to_node, allocator, provisioner, orchestrator, security_group_cache, key_pair_cache)

        with pytest.raises(ConfigurationError, match="floating IPs"):
            service.create_nodes_in_group("web", 1, template)

        assert "servers.create" not in cloud.calls

    def test_unknown_region(self, service):
        with pytest.raises(ConfigurationError, match="unknown region"):
            service.create_nodes_in_group("web", 1, NodeTemplate(region="nowhere", image_id="i", flavor_id="f"))

    def test_count_must_be_positive(self, service, template):
        with pytest.raises(ValueError):
            service.create_nodes_in_group("web", 0, template)


class TestListing:
    def test_nodes_in_group(self, cloud, service):
        cloud.add_server(REGION, "web-0a0a0a")
        cloud.add_server(REGION, "db-0b0b0b")
        cloud.add_server("R2", "web-0c0c0c")

        assert {n.name for n in service.list_nodes()} == {"web-0a0a0a", "db-0b0b0b", "web-0c0c0c"}
        assert [n.name for n in service.list_nodes_in_group(REGION, "web")] == ["web-0a0a0a"]

    def test_get_missing_node(self, service):
        assert service.get_node(f"{REGION}/nope") is None


class TestDestroy:
    def test_destroy_node(self, cloud, service):
        server = cloud.add_server(REGION, "web-0a0a0a")
        cloud.add_floating_ip(REGION, "172.24.4.1", server_id=server.id)

        assert service.destroy_node(f"{REGION}/{server.id}") is True

        assert cloud.server_map[REGION] == {}
        assert cloud.ips[REGION] == {}

    def test_destroy_group_removes_orphaned_resources(self, cloud, service, template):
        cloud.default_pool[REGION] = ["172.24.4.1", "172.24.4.2"]
        service.create_nodes_in_group("web", 2, template)
        cloud.add_security_group(REGION, "jclouds-db")
        cloud.add_key_pair(REGION, "personal")
        other = cloud.add_server(REGION, "db-0d0d0d")

        destroyed = service.destroy_nodes_in_group("web")

        assert len(destroyed) == 2
        assert all(n.status is NodeStatus.TERMINATED for n in destroyed)
        assert list(cloud.server_map[REGION]) == [other.id]
        assert [g.name for g in cloud.groups[REGION].values()] == ["jclouds-db"]
        assert list(cloud.keys[REGION]) == ["personal"]
        assert cloud.ips[REGION] == {}

    def test_destroy_empty_group(self, cloud, service):
        assert service.destroy_nodes_in_group("web") == set()
