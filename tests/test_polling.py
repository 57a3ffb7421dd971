from __future__ import annotations

import pytest

from stratus.compute.polling import create_running_poller, create_terminated_poller
from stratus.domain import Location, Node, NodeStatus
from stratus.exceptions import IllegalStateError, NodeTimeoutError, ResourceNotFoundError

pytestmark = [pytest.mark.xdist_group("unit")]


def _node(status: NodeStatus) -> Node:
    return Node(id="R/a", provider_id="a", name="a", location=Location("R"), status=status)


def _sequence(*statuses):
    nodes = iter([_node(s) if s is not None else None for s in statuses])
    last = None

    def fetch(node_id):
        nonlocal last
        last = next(nodes, last)
        return last

    return fetch


class TestRunningPoller:
    def test_waits_until_running(self):
        poll = create_running_poller(
            _sequence(NodeStatus.PENDING, NodeStatus.PENDING, NodeStatus.RUNNING), timeout=5, interval=0.01
        )

        assert poll("R/a").status is NodeStatus.RUNNING

    def test_error_status_fails_fast(self):
        poll = create_running_poller(_sequence(NodeStatus.PENDING, NodeStatus.ERROR), timeout=5, interval=0.01)

        with pytest.raises(IllegalStateError):
            poll("R/a")

    def test_missing_node(self):
        poll = create_running_poller(lambda node_id: None, timeout=5, interval=0.01)

        with pytest.raises(ResourceNotFoundError):
            poll("R/a")

    def test_timeout(self):
        poll = create_running_poller(_sequence(NodeStatus.PENDING), timeout=0.05, interval=0.01)

        with pytest.raises(NodeTimeoutError) as exc_info:
            poll("R/a")

        assert exc_info.value.node_id == "R/a"


class TestTerminatedPoller:
    def test_gone_counts_as_terminated(self):
        poll = create_terminated_poller(_sequence(NodeStatus.RUNNING, None), timeout=5, interval=0.01)

        poll("R/a")

    def test_timeout(self):
        poll = create_terminated_poller(_sequence(NodeStatus.RUNNING), timeout=0.05, interval=0.01)

        with pytest.raises(NodeTimeoutError):
            poll("R/a")
