"""Group naming convention.

Resources shared by a node group are named ``<prefix>-<group>``; per-node
resources get a random hex suffix, ``<prefix>-<group>-<hex>``. Node names
use the same scheme without the prefix.
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass

from stratus.constants import DEFAULT_NAMING_PREFIX

SUFFIX_BYTES = 3
_SUFFIX = rf"[0-9a-f]{{{SUFFIX_BYTES * 2}}}"


@dataclass(frozen=True, slots=True)
class GroupNamingConvention:
    prefix: str | None = DEFAULT_NAMING_PREFIX
    delimiter: str = "-"

    def without_prefix(self) -> GroupNamingConvention:
        return GroupNamingConvention(prefix=None, delimiter=self.delimiter)

    def shared_name_for_group(self, group: str) -> str:
        self._check_group(group)
        return self._join(group)

    def unique_name_for_group(self, group: str) -> str:
        self._check_group(group)
        return self._join(group, secrets.token_hex(SUFFIX_BYTES))

    def group_from_name(self, name: str) -> str | None:
        """Parse the group out of a shared or unique name, ``None`` if it doesn't match.

        Without a prefix only unique names (with the hex suffix) match.
        """
        match = self._pattern().fullmatch(name)
        return match.group("group") if match else None

    def contains_group(self, group: str) -> Callable[[str], bool]:
        """Predicate matching the shared and unique names of ``group``."""
        pattern = re.compile(
            self._head() + re.escape(group) + rf"(?:{re.escape(self.delimiter)}{_SUFFIX})?"
        )
        return lambda name: name is not None and pattern.fullmatch(name) is not None

    def _join(self, *parts: str) -> str:
        if self.prefix:
            parts = (self.prefix, *parts)
        return self.delimiter.join(parts)

    def _head(self) -> str:
        return re.escape(self.prefix + self.delimiter) if self.prefix else ""

    def _pattern(self) -> re.Pattern[str]:
        suffix = rf"(?:{re.escape(self.delimiter)}{_SUFFIX})"
        # without a prefix only unique names carry a group
        return re.compile(self._head() + "(?P<group>.+?)" + (suffix + "?" if self.prefix else suffix))

    @staticmethod
    def _check_group(group: str) -> None:
        if not group:
            raise ValueError("group name must not be empty")
