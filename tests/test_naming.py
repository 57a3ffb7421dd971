from __future__ import annotations

import pytest

from stratus.compute.naming import GroupNamingConvention

pytestmark = [pytest.mark.xdist_group("unit")]


class TestGroupNamingConvention:
    def test_shared_name(self):
        assert GroupNamingConvention().shared_name_for_group("web") == "jclouds-web"

    def test_unique_name_has_hex_suffix(self):
        name = GroupNamingConvention().unique_name_for_group("web")

        assert name.startswith("jclouds-web-")
        assert len(name.rsplit("-", 1)[1]) == 6
        assert GroupNamingConvention().group_from_name(name) == "web"

    def test_unique_names_differ(self):
        naming = GroupNamingConvention()

        assert len({naming.unique_name_for_group("web") for _ in range(20)}) > 1

    def test_group_from_shared_name(self):
        assert GroupNamingConvention().group_from_name("jclouds-my-cluster") == "my-cluster"

    def test_foreign_names_have_no_group(self):
        assert GroupNamingConvention().group_from_name("prod-db") is None

    def test_without_prefix_requires_the_suffix(self):
        naming = GroupNamingConvention().without_prefix()

        assert naming.group_from_name("my-cluster-0a1b2c") == "my-cluster"
        assert naming.group_from_name("bastion") is None
        assert naming.unique_name_for_group("web").startswith("web-")

    def test_contains_group(self):
        matches = GroupNamingConvention(prefix="acme").contains_group("web")

        assert matches("acme-web")
        assert matches("acme-web-00ff00")
        assert not matches("acme-webapp")
        assert not matches("jclouds-web")

    def test_empty_group_is_rejected(self):
        with pytest.raises(ValueError):
            GroupNamingConvention().shared_name_for_group("")
