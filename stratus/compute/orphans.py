"""Detection of node groups with no surviving members."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable

from loguru import logger

from stratus.domain import Node, NodeStatus

log = logger.bind(component="orphans")

type GroupPredicate = Callable[[str, str], bool]
"""``(region, group) -> True`` when every node of the group is gone."""

type NodeLister = Callable[[str, str], Iterable[Node]]
"""``(region, group) -> nodes`` currently listed for the group."""


def all_nodes_in_group_terminated(list_nodes: NodeLister) -> GroupPredicate:
    """Predicate backed by a live listing: no nodes, or all TERMINATED."""

    def predicate(region: str, group: str) -> bool:
        return all(node.status is NodeStatus.TERMINATED for node in list_nodes(region, group))

    return predicate


class OrphanedGroupDetector:
    def __init__(self, is_orphaned: GroupPredicate) -> None:
        self._is_orphaned = is_orphaned

    def detect(self, dead_nodes: Iterable[Node]) -> dict[str, set[str]]:
        """Return ``region -> groups`` whose members are all terminated."""
        pairs = {(node.region, node.group) for node in dead_nodes if node.group}
        orphaned: dict[str, set[str]] = defaultdict(set)
        for region, group in sorted(pairs):
            if self._is_orphaned(region, group):
                orphaned[region].add(group)
            else:
                log.debug("group {group} in {region} still has live nodes", group=group, region=region)
        return dict(orphaned)
