"""
Configuration loader (``stock_config.loader``).

Responsibility
--------------
Reads one YAML file and parses it into a ``StockConfiguration``.  Runtime
callers go through ``stock_config.get_active_config()``; this module is
its implementation.

Failure modes
-------------
* Missing file  -> ``ConfigurationError`` (key ``path``).
* Malformed YAML  -> ``ConfigurationError`` chained from ``yaml.YAMLError``.
* Unknown section or key, wrong type or range  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    ConcurrencySettings,
    DatabaseSettings,
    InventorySettings,
    StockConfiguration,
    TransferSettings,
)
from stock_kernel.exceptions import ConfigurationError

_SECTIONS = {
    "database": DatabaseSettings,
    "transfers": TransferSettings,
    "concurrency": ConcurrencySettings,
    "inventory": InventorySettings,
}
_ROOT_KEYS = {"config_id", "version", *_SECTIONS}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML mapping; an empty file yields ``{}``."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {path}", key="path") from None
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}", key="path") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration root must be a mapping, got {type(data).__name__}",
            key="path",
        )
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_configuration(
    data: dict[str, Any],
    source: str | None = None,
    database_url: str | None = None,
) -> StockConfiguration:
    """
    Build a ``StockConfiguration`` from a parsed YAML mapping.

    ``database_url``, when given, replaces ``database.url``.  Missing
    sections take their defaults.
    """
    unknown = sorted(set(data) - _ROOT_KEYS)
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration sections: {', '.join(unknown)}", key=unknown[0],
        )

    sections: dict[str, Any] = {}
    for name, settings_cls in _SECTIONS.items():
        raw = data.get(name) or {}
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Section {name} must be a mapping", key=name)
        if name == "database" and database_url:
            raw = {**raw, "url": database_url}
        try:
            sections[name] = settings_cls.from_dict(raw)
        except TypeError as exc:
            raise ConfigurationError(f"Invalid {name} settings: {exc}", key=name) from exc

    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise ConfigurationError(f"version must be a positive integer, got {version!r}", key="version")

    return StockConfiguration(
        config_id=str(data.get("config_id", "default")),
        version=version,
        source=source,
        checksum=compute_checksum(data),
        **sections,
    )


def load_configuration(path: Path, database_url: str | None = None) -> StockConfiguration:
    """Load and validate the configuration file at ``path``."""
    return parse_configuration(
        load_yaml_file(path), source=str(path), database_url=database_url,
    )
