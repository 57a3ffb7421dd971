from __future__ import annotations

import threading

import pytest

from stratus.compute.backends import AlreadyExists, ComputeSecurityGroupBackend, Created
from stratus.compute.security_groups import SecurityGroupProvisioner
from stratus.constants import ANY_IPV4
from stratus.domain import GroupRef, ProviderRule
from stratus.exceptions import ConfigurationError, IllegalStateError

from tests.fakes import REGION, FakeCloud, FakeNetwork, StaticLocations, network_api

pytestmark = [pytest.mark.xdist_group("unit")]


def _cidr_ports(group) -> set[int]:
    return {p.from_port for p in group.permissions if ANY_IPV4 in p.cidr_blocks}


class TestEnsureGroup:
    def test_creates_group_with_self_and_world_rules(self, cloud, provisioner):
        group = provisioner.ensure_group(REGION, "web", [80, 443])

        assert group.name == "web"
        assert group.id == f"{REGION}/{group.provider_id}"
        assert _cidr_ports(group) == {80, 443}
        assert all(group.allows(port, group_id=group.id) for port in (80, 443))
        assert all(p.protocol == "tcp" and p.from_port == p.to_port for p in group.permissions)

    def test_reuses_existing_group(self, cloud, provisioner):
        existing = cloud.add_security_group(REGION, "web")

        group = provisioner.ensure_group(REGION, "web", [22])

        assert group.provider_id == existing.id
        assert len(cloud.groups[REGION]) == 1
        assert _cidr_ports(group) == {22}

    def test_existing_rules_are_not_duplicated(self, cloud, provisioner):
        provisioner.ensure_group(REGION, "web", [80])
        group = provisioner.ensure_group(REGION, "web", [80])

        (provider_group,) = cloud.groups[REGION].values()
        assert len(provider_group.rules) == 2
        assert _cidr_ports(group) == {80}

    def test_vanished_group_is_an_illegal_state(self, cloud, locations):
        class Flaky(FakeCloud):
            def security_groups(self, region):
                api = super().security_groups(region)
                api.list = lambda: []
                return api

        flaky = Flaky(regions=(REGION,))
        flaky.add_security_group(REGION, "web")

        with pytest.raises(IllegalStateError):
            SecurityGroupProvisioner(flaky, locations).ensure_group(REGION, "web", [80])

    def test_unsupported_region(self, locations):
        cloud = FakeCloud(regions=(REGION,), security_groups=False)

        with pytest.raises(ConfigurationError):
            SecurityGroupProvisioner(cloud, locations).ensure_group(REGION, "web", [80])

    def test_find(self, cloud, provisioner):
        assert provisioner.find(REGION, "web") is None
        created = provisioner.ensure_group(REGION, "web", [80])

        assert provisioner.find(REGION, "web") == created


class TestConcurrentEnsureGroup:
    def test_two_callers_converge_on_one_group(self, cloud, provisioner):
        barrier = threading.Barrier(2)
        results = []

        def run():
            barrier.wait()
            results.append(provisioner.ensure_group(REGION, "web", {80, 443}))

        threads = [threading.Thread(target=run) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cloud.groups[REGION]) == 1
        assert len(results) == 2
        for group in results:
            assert group.name == "web"
            assert _cidr_ports(group) == {80, 443}
        assert results[0].provider_id == results[1].provider_id

    def test_second_create_reports_already_exists(self, cloud):
        backend = ComputeSecurityGroupBackend(REGION, cloud.security_groups(REGION))

        first = backend.create("web", "d")
        second = backend.create("web", "d")

        assert isinstance(first, Created)
        assert second == AlreadyExists("web")


class TestPeerReferences:
    def test_unresolved_peer_rule_is_dropped(self, cloud, provisioner):
        cloud.add_security_group(
            REGION,
            "web",
            rules=[ProviderRule(id="r1", protocol="tcp", from_port=22, to_port=22, source_group_id="sg-gone")],
        )

        group = provisioner.ensure_group(REGION, "web", [80])

        assert not group.allows(22, group_id=f"{REGION}/sg-gone")
        assert _cidr_ports(group) == {80}

    def test_ambiguous_peer_rule_is_dropped(self, cloud, provisioner):
        cloud.add_security_group(REGION, "db", tenant_id="t1")
        cloud.add_security_group(REGION, "db", tenant_id="t1")
        cloud.add_security_group(
            REGION,
            "web",
            rules=[ProviderRule(id="r1", protocol="tcp", from_port=5432, to_port=5432, source_group=GroupRef("t1", "db"))],
        )

        group = provisioner.ensure_group(REGION, "web", [80])

        assert all(p.from_port != 5432 for p in group.permissions)

    def test_peer_by_name_is_resolved(self, cloud, provisioner):
        db = cloud.add_security_group(REGION, "db", tenant_id="t1")
        cloud.add_security_group(
            REGION,
            "web",
            rules=[ProviderRule(id="r1", protocol="tcp", from_port=5432, to_port=5432, source_group=GroupRef("t1", "db"))],
        )

        group = provisioner.ensure_group(REGION, "web", [80])

        assert group.allows(5432, group_id=f"{REGION}/{db.id}")


class TestNetworkBackend:
    def test_groups_come_from_the_network_service(self, cloud):
        network = FakeNetwork(cloud)
        provisioner = SecurityGroupProvisioner(cloud, StaticLocations((REGION,)), network_api(network))

        group = provisioner.ensure_group(REGION, "web", [8080])

        assert _cidr_ports(group) == {8080}
        assert "network.security_groups.create" in cloud.calls
        assert "security_groups.create" not in cloud.calls
