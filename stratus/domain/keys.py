"""Composite region-scoped keys.

Both keys are used as cache keys everywhere a provider id or name is only
unique within a region.
"""

from __future__ import annotations

from dataclasses import dataclass


def _split(encoded: str) -> tuple[str, str]:
    region, sep, rest = encoded.partition("/")
    if not sep or not region or not rest or "/" in rest:
        raise ValueError(f"expected 'region/value', got {encoded!r}")
    return region, rest


@dataclass(frozen=True, slots=True)
class RegionAndId:
    """A provider-local id qualified by its region."""

    region: str
    id: str

    @classmethod
    def from_slash_encoded(cls, encoded: str) -> RegionAndId:
        region, id_ = _split(encoded)
        return cls(region=region, id=id_)

    def slash_encode(self) -> str:
        return f"{self.region}/{self.id}"

    def __str__(self) -> str:
        return self.slash_encode()


@dataclass(frozen=True, slots=True)
class RegionAndName:
    """A provider-local name qualified by its region."""

    region: str
    name: str

    @classmethod
    def from_slash_encoded(cls, encoded: str) -> RegionAndName:
        region, name = _split(encoded)
        return cls(region=region, name=name)

    def slash_encode(self) -> str:
        return f"{self.region}/{self.name}"

    def __str__(self) -> str:
        return self.slash_encode()
