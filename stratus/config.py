"""TOML-based compute and provider configuration.

Loads ~/.stratus/defaults.toml (global) and stratus.toml (project),
merges them, and resolves the ``[compute]`` section into
``ComputeProperties`` and named ``[providers.<name>]`` sections into
provider configs.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

from stratus.constants import (
    CACHE_MAXIMUM_SIZE,
    DEFAULT_NAMING_PREFIX,
    MAX_WORKERS,
    NODE_RUNNING_TIMEOUT,
    NODE_TERMINATED_TIMEOUT,
    POLL_INTERVAL,
    ProviderName,
)
from stratus.exceptions import ConfigurationError

if TYPE_CHECKING:
    from stratus.providers.aws.config import AWS

    type ProviderConfig = AWS

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".stratus" / "defaults.toml"
PROJECT_CONFIG_NAME = "stratus.toml"


@dataclass(frozen=True, slots=True)
class ComputeProperties:
    """Behaviour of the compute service.

    Attributes:
        auto_assign_floating_ip: Attach a floating IP to every node once it runs.
        floating_ip_pool_names: Pools tried in order before the default pool.
        auto_generate_key_pairs: Create a key pair for each launch.
        naming_prefix: Prefix of shared resource names (security groups, key pairs).
        node_running_timeout: Seconds to wait for a node to run.
        node_terminated_timeout: Seconds to wait for a node to terminate.
        poll_interval: Seconds between status polls.
        cache_maximum_size: Bound of each resource cache.
        max_workers: Threads used to launch nodes in parallel.
    """

    auto_assign_floating_ip: bool = False
    floating_ip_pool_names: tuple[str, ...] = ()
    auto_generate_key_pairs: bool = False
    naming_prefix: str = DEFAULT_NAMING_PREFIX
    node_running_timeout: float = NODE_RUNNING_TIMEOUT
    node_terminated_timeout: float = NODE_TERMINATED_TIMEOUT
    poll_interval: float = POLL_INTERVAL
    cache_maximum_size: int = CACHE_MAXIMUM_SIZE
    max_workers: int = MAX_WORKERS

    def __post_init__(self) -> None:
        object.__setattr__(self, "floating_ip_pool_names", tuple(self.floating_ip_pool_names))
        for name in ("node_running_timeout", "node_terminated_timeout", "poll_interval"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"compute.{name} must be positive")
        if self.cache_maximum_size <= 0 or self.max_workers <= 0:
            raise ConfigurationError("compute.cache_maximum_size and compute.max_workers must be positive")
        if not self.naming_prefix:
            raise ConfigurationError("compute.naming_prefix must not be empty")


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("compute", {})
    merged.setdefault("providers", {})
    return merged


def _build[T](cls: type[T], section: str, raw: RawConfig) -> T:
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in [{section}]: {', '.join(unknown)}. Valid: {', '.join(sorted(known))}"
        )
    try:
        return cls(**raw)
    except TypeError as e:
        raise ConfigurationError(f"Invalid [{section}]: {e}") from e


def compute_properties(config: RawConfig | None = None) -> ComputeProperties:
    raw = (config if config is not None else load_config()).get("compute", {})
    return _build(ComputeProperties, "compute", dict(raw))


def _get_provider_map() -> dict[str, type]:
    from stratus.providers.aws.config import AWS

    return {ProviderName.AWS: AWS}


def _build_provider(name: str, raw: RawConfig) -> ProviderConfig:
    raw = dict(raw)
    provider_type = raw.pop("type", None)
    if provider_type is None:
        raise ConfigurationError(f"Provider '{name}' missing 'type' field")

    provider_map = _get_provider_map()
    cls = provider_map.get(provider_type)
    if cls is None:
        raise ConfigurationError(
            f"Unknown provider type '{provider_type}'. "
            f"Valid: {', '.join(provider_map)}"
        )
    return _build(cls, f"providers.{name}", raw)


def resolve_provider(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ProviderConfig:
    config = load_config(project_dir=project_dir, global_path=global_path)
    providers = config["providers"]
    if name not in providers:
        raise ConfigurationError(
            f"Provider '{name}' not found. Available: {', '.join(providers) or 'none'}"
        )
    return _build_provider(name, providers[name])
