"""Switch configuration: store definitions, durations, and flag/environment overrides."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, replace
from datetime import timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog
import yaml

from kube_switch.errors import ConfigError

log = structlog.get_logger()

DEFAULT_CONFIG_PATH = "~/.kube/switch-config.yaml"
DEFAULT_STATE_DIRECTORY = "~/.kube/switch-state"
DEFAULT_KUBECONFIG_PATH = "~/.kube/config"
DEFAULT_KUBECONFIG_NAME = "config"
FLAG_AND_ENV_STORE_ID = "env-and-flag"


class StoreKind(StrEnum):
    """Kinds of kubeconfig sources."""

    FILESYSTEM = "filesystem"
    VAULT = "vault"
    AZURE = "azure"
    GKE = "gke"
    EKS = "eks"


class CacheKind(StrEnum):
    """Backing policies for the store cache."""

    MEMORY = "memory"
    FILESYSTEM = "filesystem"


# Kinds whose paths are locations to search rather than optional filters.
PATH_BASED_KINDS = frozenset({StoreKind.FILESYSTEM, StoreKind.VAULT})


@dataclass(frozen=True)
class CacheConfig:
    """Cache settings for one store."""

    kind: CacheKind = CacheKind.MEMORY
    path: Path | None = None
    ttl: timedelta | None = None


@dataclass(frozen=True)
class StoreConfig:
    """Configuration for a single kubeconfig store."""

    kind: StoreKind
    paths: tuple[str, ...] = ()
    id: str | None = None
    required: bool = True
    kubeconfig_name: str | None = None
    show_prefix: bool = True
    cache: CacheConfig | None = None
    refresh_index_after: timedelta | None = None
    config: dict[str, Any] = field(default_factory=dict)

    @property
    def store_id(self) -> str:
        """Stable identifier used to namespace index files and cache entries."""
        if self.id:
            return f"{self.kind}.{self.id}"
        return str(self.kind)


@dataclass(frozen=True)
class SwitchConfig:
    """The loaded switch configuration file."""

    kubeconfig_name: str | None = None
    refresh_index_after: timedelta | None = None
    stores: tuple[StoreConfig, ...] = ()


def _expand(path: str) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(path)))


@dataclass(frozen=True)
class ResolveOptions:
    """Explicit inputs to a resolution pass, replacing process-wide flag state.

    Defaults are read from the environment at construction time.
    """

    config_path: Path = field(
        default_factory=lambda: _expand(os.environ.get("KUBESWITCH_CONFIG", DEFAULT_CONFIG_PATH))
    )
    state_directory: Path = field(
        default_factory=lambda: _expand(os.environ.get("KUBESWITCH_STATE_DIR", DEFAULT_STATE_DIRECTORY))
    )
    kubeconfig_path: str | None = DEFAULT_KUBECONFIG_PATH
    kubeconfig_name: str | None = None
    store_kind: StoreKind = StoreKind.FILESYSTEM
    vault_api_address: str | None = field(default_factory=lambda: os.environ.get("VAULT_ADDR"))
    kubeconfig_env: str = field(default_factory=lambda: os.environ.get("KUBECONFIG", ""))
    no_index: bool = False


# Go-style durations: "90s", "10m", "1h30m", "250ms".
_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: Any) -> timedelta | None:
    """Parse a duration such as ``1h30m`` into a timedelta.

    Plain numbers are taken as seconds. ``None`` passes through.

    Raises:
        ConfigError: If the value is not a valid duration.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        msg = f"Invalid duration: {value!r}."
        raise ConfigError(msg)
    if isinstance(value, int | float):
        if value < 0:
            msg = f"Invalid duration: {value!r}. Must not be negative."
            raise ConfigError(msg)
        return timedelta(seconds=value)

    text = str(value).strip()
    total = 0.0
    pos = 0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        msg = f"Invalid duration: {value!r}. Use values like '90s', '10m' or '1h30m'."
        raise ConfigError(msg)
    return timedelta(seconds=total)


def _parse_cache(store_label: str, raw: Any, errors: list[str]) -> CacheConfig | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        errors.append(f"{store_label}: cache must be a mapping")
        return None

    try:
        kind = CacheKind(raw.get("kind", CacheKind.MEMORY))
    except ValueError:
        valid = ", ".join(k.value for k in CacheKind)
        errors.append(f"{store_label}: unknown cache kind {raw.get('kind')!r} (valid: {valid})")
        return None

    # Backing settings may sit at the top level or under a nested "config" key.
    settings = raw.get("config") if isinstance(raw.get("config"), dict) else raw
    ttl = None
    try:
        ttl = parse_duration(settings.get("ttl"))
    except ConfigError as e:
        errors.append(f"{store_label}: cache {e}")
    path = settings.get("path")
    return CacheConfig(kind=kind, path=_expand(str(path)) if path else None, ttl=ttl)


def _parse_store(position: int, entry: Any, errors: list[str]) -> StoreConfig | None:
    label = f"kubeconfigStores[{position}]"
    if not isinstance(entry, dict):
        errors.append(f"{label} must be a mapping, got {type(entry).__name__}")
        return None
    if entry.get("id"):
        label = f"{label} ({entry['id']})"

    try:
        kind = StoreKind(entry.get("kind"))
    except ValueError:
        valid = ", ".join(k.value for k in StoreKind)
        errors.append(f"{label}: unknown store kind {entry.get('kind')!r} (valid: {valid})")
        return None

    paths_raw = entry.get("paths") or []
    if isinstance(paths_raw, str):
        paths_raw = [paths_raw]
    if not isinstance(paths_raw, list):
        errors.append(f"{label}: paths must be a list")
        paths_raw = []

    refresh = None
    try:
        refresh = parse_duration(entry.get("refreshIndexAfter"))
    except ConfigError as e:
        errors.append(f"{label}: refreshIndexAfter {e}")

    store_settings = entry.get("config") or {}
    if not isinstance(store_settings, dict):
        errors.append(f"{label}: config must be a mapping")
        store_settings = {}

    return StoreConfig(
        kind=kind,
        paths=tuple(str(p) for p in paths_raw),
        id=str(entry["id"]) if entry.get("id") else None,
        required=bool(entry.get("required", True)),
        kubeconfig_name=entry.get("kubeconfigName") or None,
        show_prefix=bool(entry.get("showPrefix", True)),
        cache=_parse_cache(label, entry.get("cache"), errors),
        refresh_index_after=refresh,
        config=dict(store_settings),
    )


def load_config(path: Path) -> SwitchConfig:
    """Parse the YAML switch configuration file.

    A missing file is not an error: the tool then runs with the implicit
    flag/environment store only.

    Args:
        path: Path to the switch configuration file.

    Returns:
        The parsed configuration.

    Raises:
        ConfigError: If the file is malformed or contains invalid entries.
    """
    if not path.exists():
        log.debug("switch_config_not_found", path=str(path))
        return SwitchConfig()

    try:
        raw = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        msg = f"Switch config file {path} is not valid YAML: {e}"
        raise ConfigError(msg) from e

    if raw is None:
        return SwitchConfig()
    if not isinstance(raw, dict):
        msg = f"Switch config file {path} must contain a mapping at the top level."
        raise ConfigError(msg)

    errors: list[str] = []
    refresh = None
    try:
        refresh = parse_duration(raw.get("refreshIndexAfter"))
    except ConfigError as e:
        errors.append(f"refreshIndexAfter: {e}")

    stores_raw = raw.get("kubeconfigStores") or []
    if not isinstance(stores_raw, list):
        errors.append("kubeconfigStores must be a list")
        stores_raw = []

    stores = [_parse_store(i, entry, errors) for i, entry in enumerate(stores_raw)]

    if errors:
        detail = "; ".join(errors)
        msg = f"The switch configuration file {path} contains errors: {detail}"
        raise ConfigError(msg)

    return SwitchConfig(
        kubeconfig_name=raw.get("kubeconfigName") or None,
        refresh_index_after=refresh,
        stores=tuple(s for s in stores if s is not None),
    )


def validate_config(config: SwitchConfig) -> None:
    """Check the configuration for conflicts that the parser cannot see.

    Raises:
        ConfigError: On duplicate store ids or path-based stores without paths.
    """
    errors: list[str] = []
    seen: set[str] = set()
    for store in config.stores:
        if store.store_id in seen:
            errors.append(
                f"duplicate store id {store.store_id!r}: give each store of the same kind a unique 'id'"
            )
        seen.add(store.store_id)
        if store.kind in PATH_BASED_KINDS and not store.paths:
            errors.append(f"{store.store_id}: at least one path is required for kind {store.kind}")

    if errors:
        detail = "; ".join(errors)
        msg = f"Switch configuration errors: {detail}"
        raise ConfigError(msg)


def is_duplicate_path(stores: tuple[StoreConfig, ...], new_path: str) -> bool:
    """Return True if ``new_path`` is already configured in any store."""
    for store in stores:
        for path in store.paths:
            if path == new_path:
                return True
    return False


def kubeconfig_path_from_options(options: ResolveOptions) -> str | None:
    """Resolve the kubeconfig path flag.

    The default ``~/.kube/config`` is only used when the file exists, so a
    kubeconfig in the default location is never required.
    """
    if not options.kubeconfig_path:
        return None
    path = _expand(options.kubeconfig_path)
    if options.kubeconfig_path == DEFAULT_KUBECONFIG_PATH and not path.exists():
        return None
    return str(path)


def store_from_flags_and_env(config: SwitchConfig, options: ResolveOptions) -> StoreConfig | None:
    """Translate the kubeconfig flag and ``KUBECONFIG`` into an extra store.

    The result is appended next to the configured stores and never merged
    into one of them. Paths already present in a configured store are skipped.
    """
    paths: list[str] = []

    from_flag = kubeconfig_path_from_options(options)
    if from_flag and not is_duplicate_path(config.stores, from_flag):
        log.debug("kubeconfig_path_from_flag", path=from_flag)
        paths.append(from_flag)

    for path in options.kubeconfig_env.split(os.pathsep):
        if not path or path.endswith(".tmp"):
            continue
        expanded = str(_expand(path))
        if is_duplicate_path(config.stores, path) or is_duplicate_path(config.stores, expanded):
            continue
        if expanded in paths:
            continue
        log.debug("kubeconfig_path_from_env", path=expanded)
        paths.append(expanded)

    if not paths:
        return None

    return StoreConfig(
        kind=options.store_kind,
        id=FLAG_AND_ENV_STORE_ID,
        paths=tuple(paths),
        kubeconfig_name=options.kubeconfig_name,
        show_prefix=False,
    )


def effective_kubeconfig_name(store: StoreConfig, config: SwitchConfig, options: ResolveOptions) -> str:
    """Kubeconfig file name for a store: store override, then flag, then config file, then default."""
    return store.kubeconfig_name or options.kubeconfig_name or config.kubeconfig_name or DEFAULT_KUBECONFIG_NAME


def build_config(options: ResolveOptions) -> SwitchConfig:
    """Load, validate and complete the configuration for one resolution pass.

    Raises:
        ConfigError: If the configuration is invalid or no store is configured.
    """
    config = load_config(options.config_path)
    validate_config(config)

    implicit = store_from_flags_and_env(config, options)
    if implicit is not None:
        config = replace(config, stores=(*config.stores, implicit))
        validate_config(config)

    if not config.stores:
        msg = (
            "No kubeconfig store configured. Set the KUBECONFIG environment variable, "
            "pass a kubeconfig path, create ~/.kube/config, or add stores to the switch "
            "configuration file."
        )
        raise ConfigError(msg)
    return config
