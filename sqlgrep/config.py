"""
Context configuration overlay.

BaseConfig is loaded once per process and never mutated. Every request calls
resolve() to obtain its own EffectiveConfig; nothing here keeps a "current"
configuration around, so concurrent requests for different contexts cannot
observe each other's overrides.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml  # type: ignore[import-untyped]

from sqlgrep.errors.exceptions import ConfigurationError

log = logging.getLogger(__name__)

# Keys a context override may touch. Anything else in an override is ignored.
OVERRIDABLE_KEYS = ("connection", "exclude_tables", "database", "metadata")


# ------------------------------ normalisation ------------------------------ #
def normalize_exclude_tables(value: Any) -> Tuple[str, ...]:
    """Trim, lower-case, de-duplicate (first wins) and drop empty entries."""
    if value is None:
        return ()
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        return ()

    out: List[str] = []
    seen: set[str] = set()
    for item in items:
        if not isinstance(item, str):
            continue
        name = item.strip().lower()
        if name and name not in seen:
            seen.add(name)
            out.append(name)
    return tuple(out)


def normalize_metadata(value: Any) -> Tuple[Mapping[str, Any], ...]:
    """Keep only well-formed mapping entries."""
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(_freeze(dict(v)) for v in value if isinstance(v, Mapping))


def _normalize_connection(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _freeze(value: Any) -> Any:
    """Recursively wrap mappings in read-only proxies and lists in tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    """Inverse of _freeze: plain dicts/lists, safe to serialise."""
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return copy.deepcopy(value)


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Override keys win; nested mappings merge key by key; lists are replaced."""
    out: Dict[str, Any] = {k: _thaw(v) for k, v in base.items()}
    for key, value in override.items():
        current = out.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            out[key] = deep_merge(current, value)
        else:
            out[key] = _thaw(value)
    return out


def _normalize_override(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    """Normalise one context override, keeping only the keys it actually sets."""
    out: Dict[str, Any] = {}
    if "connection" in raw:
        out["connection"] = _normalize_connection(raw.get("connection"))
    if "exclude_tables" in raw:
        out["exclude_tables"] = normalize_exclude_tables(raw.get("exclude_tables"))
    if "database" in raw and isinstance(raw.get("database"), Mapping):
        out["database"] = _freeze(raw["database"])
    if "metadata" in raw:
        out["metadata"] = normalize_metadata(raw.get("metadata"))
    ignored = set(raw.keys()) - set(OVERRIDABLE_KEYS)
    if ignored:
        log.debug("Ignoring unsupported context keys", extra={"keys": sorted(ignored)})
    return MappingProxyType(out)


# ------------------------------ config values ------------------------------ #
@dataclass(frozen=True)
class EffectiveConfig:
    connection: Optional[str] = None
    exclude_tables: Tuple[str, ...] = ()
    database: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    metadata: Tuple[Mapping[str, Any], ...] = ()
    contexts: Mapping[str, Mapping[str, Any]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    connections: Mapping[str, Mapping[str, Any]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    context_name: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "EffectiveConfig":
        raw = raw or {}
        if not isinstance(raw, Mapping):
            raise ConfigurationError("configuration root must be a mapping")

        contexts_raw = raw.get("contexts") or {}
        contexts: Dict[str, Mapping[str, Any]] = {}
        if isinstance(contexts_raw, Mapping):
            for name, override in contexts_raw.items():
                if isinstance(override, Mapping):
                    contexts[str(name)] = _normalize_override(override)

        connections_raw = raw.get("connections") or {}
        connections = {
            str(name): _freeze(desc)
            for name, desc in (
                connections_raw.items() if isinstance(connections_raw, Mapping) else ()
            )
            if isinstance(desc, Mapping)
        }

        database = raw.get("database")
        context_name = raw.get("context_name")
        return cls(
            connection=_normalize_connection(raw.get("connection")),
            exclude_tables=normalize_exclude_tables(raw.get("exclude_tables")),
            database=_freeze(database if isinstance(database, Mapping) else {}),
            metadata=normalize_metadata(raw.get("metadata")),
            contexts=MappingProxyType(contexts),
            connections=MappingProxyType(connections),
            context_name=context_name if isinstance(context_name, str) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "connection": self.connection,
            "exclude_tables": list(self.exclude_tables),
            "database": _thaw(self.database),
            "metadata": _thaw(self.metadata),
            "contexts": _thaw(self.contexts),
            "connections": _thaw(self.connections),
        }
        if self.context_name is not None:
            out["context_name"] = self.context_name
        return out


# The process-wide base is just an EffectiveConfig that no context touched.
BaseConfig = EffectiveConfig


def load_base_config(path: str | Path | None) -> BaseConfig:
    """Load BaseConfig from YAML. A missing path yields an empty config."""
    if not path:
        return BaseConfig()
    p = Path(path)
    if not p.exists():
        log.info("No sqlgrep config at %s; using empty base config", p)
        return BaseConfig()
    with p.open("r", encoding="utf-8") as fh:
        try:
            raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"invalid YAML in {p}: {exc}") from exc
    return BaseConfig.from_mapping(raw)


# ------------------------------ resolution ------------------------------ #
def resolve(base: BaseConfig, context_name: Optional[str]) -> EffectiveConfig:
    """
    Overlay the named context on top of base.

    None or an unknown name returns base unchanged. Known contexts replace
    connection, exclude_tables and metadata wholesale and merge database key by
    key.
    """
    if context_name is None:
        return base

    override = base.contexts.get(context_name)
    if override is None:
        log.debug("Unknown context %r; using base config", context_name)
        return base

    changes: Dict[str, Any] = {"context_name": context_name}
    if "connection" in override:
        changes["connection"] = override["connection"]
    if "exclude_tables" in override:
        changes["exclude_tables"] = tuple(override["exclude_tables"])
    if "database" in override:
        changes["database"] = _freeze(deep_merge(base.database, override["database"]))
    if "metadata" in override:
        changes["metadata"] = tuple(override["metadata"])

    return replace(base, **changes)


def resolve_database(config: EffectiveConfig) -> Dict[str, Any]:
    """
    Effective database descriptor: the named connection (if any) with the
    config's own `database` mapping merged on top.
    """
    named: Mapping[str, Any] = {}
    if config.connection:
        found = config.connections.get(config.connection)
        if found is None:
            raise ConfigurationError(
                f"unknown connection {config.connection!r}",
                extra={"connection": config.connection},
            )
        named = found

    descriptor = deep_merge(named, config.database)
    if not descriptor:
        raise ConfigurationError(
            "no database configured",
            extra={"context": config.context_name},
        )
    return descriptor
