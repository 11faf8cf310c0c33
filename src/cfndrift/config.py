"""Configuration loading and the ignore-rule grammar."""

import logging
import os
import re
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml

from cfndrift.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CFNDRIFT_CONFIG"
DEFAULT_CONFIG_FILE = "cfndrift.yaml"

# The type part must contain "::" so that IPv6 keys (2001:db8::/32) and tag
# keys with single colons are never split inside the type.
_TYPE_SCOPED = re.compile(r"^(?P<scope>[A-Za-z0-9]+(?:::[A-Za-z0-9]+)+):(?P<key>.+)$")
_LOGICAL_ID_SCOPED = re.compile(r"^(?P<scope>[A-Za-z0-9]+):(?P<key>.+)$")


class ScopeKind(StrEnum):
    GLOBAL = "global"
    BY_TYPE = "type"
    BY_LOGICAL_ID = "logical-id"


@dataclass(frozen=True)
class IgnoreRule:
    """A single parsed ignore entry."""

    raw: str
    scope: ScopeKind
    key: str
    target: str | None = None

    @classmethod
    def parse(cls, raw: str) -> "IgnoreRule":
        raw = raw.strip()
        match = _TYPE_SCOPED.match(raw)
        if match:
            return cls(raw, ScopeKind.BY_TYPE, match["key"], match["scope"])
        match = _LOGICAL_ID_SCOPED.match(raw)
        if match:
            return cls(raw, ScopeKind.BY_LOGICAL_ID, match["key"], match["scope"])
        return cls(raw, ScopeKind.GLOBAL, raw)

    def matches(self, resource_type: str, logical_id: str, key: str) -> bool:
        # The raw text always works as a global match, so a tag key such as
        # "aws:cloudformation:stack-name" can be ignored without a scope.
        if key == self.raw:
            return True
        if self.scope == ScopeKind.BY_TYPE:
            return self.target == resource_type and self.key == key
        if self.scope == ScopeKind.BY_LOGICAL_ID:
            return self.target == logical_id and self.key == key
        return False


@dataclass(frozen=True)
class IgnoreRules:
    """An ordered collection of ignore rules."""

    rules: tuple[IgnoreRule, ...] = ()

    @classmethod
    def parse(cls, entries: list[str] | tuple[str, ...]) -> "IgnoreRules":
        return cls(tuple(IgnoreRule.parse(e) for e in entries if e and e.strip()))

    def matches(self, resource_type: str, logical_id: str, key: str) -> bool:
        return any(rule.matches(resource_type, logical_id, key) for rule in self.rules)

    def __bool__(self) -> bool:
        return bool(self.rules)


def _string_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, list):
        return [str(v) for v in value]
    raise ConfigError(f"{name} must be a list or a comma-separated string")


@dataclass(frozen=True)
class DriftConfig:
    """Settings consumed by a drift run. Immutable for the duration of a run."""

    ignore_tags: IgnoreRules = field(default_factory=IgnoreRules)
    ignore_entries: IgnoreRules = field(default_factory=IgnoreRules)
    ignore_blackholes: frozenset[str] = frozenset()
    detect_unmanaged_resources: tuple[str, ...] = ()
    ignore_unmanaged_resources: frozenset[str] = frozenset()
    separate_properties: bool = False
    results_only: bool = False
    verbose: bool = False

    @classmethod
    def from_settings(
        cls,
        settings: dict[str, Any],
        *,
        extra_ignore_tags: list[str] | None = None,
        separate_properties: bool = False,
        results_only: bool = False,
        verbose: bool = False,
    ) -> "DriftConfig":
        """Build a config from loaded settings, letting set CLI flags win."""
        drift = settings.get("drift") or {}
        if not isinstance(drift, dict):
            raise ConfigError("drift must be a mapping")

        ignore_tags = _string_list(drift.get("ignore-tags"), "drift.ignore-tags")
        ignore_tags += extra_ignore_tags or []
        # Tag ignores also cover entry and route keys; ignore-entries only adds to them.
        ignore_entries = ignore_tags + _string_list(
            drift.get("ignore-entries"), "drift.ignore-entries"
        )

        return cls(
            ignore_tags=IgnoreRules.parse(ignore_tags),
            ignore_entries=IgnoreRules.parse(ignore_entries),
            ignore_blackholes=frozenset(
                _string_list(drift.get("ignore-blackholes"), "drift.ignore-blackholes")
            ),
            detect_unmanaged_resources=tuple(
                _string_list(
                    drift.get("detect-unmanaged-resources"), "drift.detect-unmanaged-resources"
                )
            ),
            ignore_unmanaged_resources=frozenset(
                _string_list(
                    drift.get("ignore-unmanaged-resources"), "drift.ignore-unmanaged-resources"
                )
            ),
            separate_properties=separate_properties or bool(settings.get("separate-properties")),
            results_only=results_only or bool(settings.get("results-only")),
            verbose=verbose or bool(settings.get("verbose")),
        )


def load_settings(path: str | None = None) -> dict[str, Any]:
    """Load the YAML settings file.

    An explicit path (argument or CFNDRIFT_CONFIG) must exist. The default
    cfndrift.yaml in the working directory is optional.
    """
    explicit = path or os.environ.get(CONFIG_ENV_VAR)
    config_path = Path(explicit) if explicit else Path.cwd() / DEFAULT_CONFIG_FILE

    if not config_path.is_file():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        return {}

    logger.debug("Loading settings from %s", config_path)
    try:
        with config_path.open() as fh:
            settings = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Unable to read config file {config_path}: {exc}") from exc

    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return settings
