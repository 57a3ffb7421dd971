"""Custom exception hierarchy for Stratus.

All stratus-specific exceptions inherit from StratusError, enabling
users to catch all stratus exceptions with a single except clause.
"""

from __future__ import annotations


class StratusError(Exception):
    """Base exception for all Stratus errors."""


class ConfigurationError(StratusError):
    """Raised for invalid configuration or a missing provider extension."""


class IllegalStateError(StratusError):
    """Raised when a provider resource is not in the state an operation needs."""


class ResourceAlreadyExistsError(IllegalStateError):
    """Raised by a provider when a named resource already exists."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} {name} already exists")


class ResourceNotFoundError(StratusError):
    """Raised when a provider resource (or pool) does not exist."""


class InsufficientResourcesError(StratusError):
    """Raised when the provider has no capacity left for a request.

    When raised by the floating IP allocator, ``node_id`` names the node
    that could not get an address.
    """

    def __init__(self, message: str, node_id: str | None = None) -> None:
        self.node_id = node_id
        super().__init__(message)

    @classmethod
    def for_node(cls, node_id: str) -> InsufficientResourcesError:
        return cls(f"Failed to allocate a floating IP for node({node_id})", node_id=node_id)


class NodeTimeoutError(StratusError):
    """Raised when a node does not reach a status before the deadline."""

    def __init__(self, node_id: str, status: str, timeout: float) -> None:
        self.node_id = node_id
        self.status = status
        self.timeout = timeout
        super().__init__(f"Node {node_id} did not become {status} within {timeout:.0f}s")
