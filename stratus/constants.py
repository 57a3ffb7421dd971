"""Centralized constants and enums for Stratus.

Tag conventions are shared with nodes created by jclouds-based tooling, so a
node launched by either can be cleaned up by the other.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Ownership tags
# =============================================================================

TAGS_METADATA_KEY: Final = "jclouds_tags"
GROUP_METADATA_KEY: Final = "jclouds-group"

KEY_PAIR_TAG_PREFIX: Final = "jclouds-kp-"
SECURITY_GROUP_TAG_PREFIX: Final = "jclouds-sg-"
SECURITY_GROUP_ID_TAG_PREFIX: Final = "jclouds_sg"

DEFAULT_NAMING_PREFIX: Final = "jclouds"


# =============================================================================
# Security group defaults
# =============================================================================

ANY_IPV4: Final = "0.0.0.0/0"
SECURITY_GROUP_DESCRIPTION: Final = "created by stratus"


# =============================================================================
# Provider names
# =============================================================================


class ProviderName(StrEnum):
    AWS = "aws"


# =============================================================================
# Timeouts (in seconds)
# =============================================================================

NODE_RUNNING_TIMEOUT: Final = 1200
NODE_TERMINATED_TIMEOUT: Final = 30
POLL_INTERVAL: Final = 2.0
CACHE_MAXIMUM_SIZE: Final = 1000
MAX_WORKERS: Final = 10
