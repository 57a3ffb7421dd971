"""Node status polling.

Factories returning retry-enabled pollers that block until a node reaches
a status or the deadline passes.
"""

from __future__ import annotations

from collections.abc import Callable

from tenacity import retry, retry_if_exception_type, stop_after_delay, wait_fixed

from stratus.constants import NODE_RUNNING_TIMEOUT, NODE_TERMINATED_TIMEOUT, POLL_INTERVAL
from stratus.domain import Node, NodeStatus
from stratus.exceptions import IllegalStateError, NodeTimeoutError, ResourceNotFoundError

type NodeFetcher = Callable[[str], Node | None]


class NodePendingError(Exception):
    """Node not yet in target state - retry."""


def create_running_poller(
    fetch: NodeFetcher,
    timeout: float = NODE_RUNNING_TIMEOUT,
    interval: float = POLL_INTERVAL,
) -> Callable[[str], Node]:
    """Create a poller that waits for a node to become RUNNING.

    The returned function raises ``ResourceNotFoundError`` if the node
    disappears, ``IllegalStateError`` if it ends in ERROR or TERMINATED, and
    ``NodeTimeoutError`` when ``timeout`` seconds pass first.
    """

    @retry(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(NodePendingError),
        reraise=True,
    )
    def poll(node_id: str) -> Node:
        node = fetch(node_id)
        if node is None:
            raise ResourceNotFoundError(f"node {node_id} disappeared while waiting for it to run")
        match node.status:
            case NodeStatus.RUNNING:
                return node
            case NodeStatus.ERROR | NodeStatus.TERMINATED:
                raise IllegalStateError(f"node {node_id} is {node.status.value}, expected running")
            case _:
                raise NodePendingError(f"Node status: {node.status.value}, waiting for: running")

    def wait(node_id: str) -> Node:
        try:
            return poll(node_id)
        except NodePendingError as e:
            raise NodeTimeoutError(node_id, NodeStatus.RUNNING.value, timeout) from e

    return wait


def create_terminated_poller(
    fetch: NodeFetcher,
    timeout: float = NODE_TERMINATED_TIMEOUT,
    interval: float = POLL_INTERVAL,
) -> Callable[[str], None]:
    """Create a poller that waits until a node is gone or TERMINATED."""

    @retry(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(NodePendingError),
        reraise=True,
    )
    def poll(node_id: str) -> None:
        node = fetch(node_id)
        if node is not None and node.status is not NodeStatus.TERMINATED:
            raise NodePendingError(f"Node status: {node.status.value}, waiting for: terminated")

    def wait(node_id: str) -> None:
        try:
            poll(node_id)
        except NodePendingError as e:
            raise NodeTimeoutError(node_id, NodeStatus.TERMINATED.value, timeout) from e

    return wait
