"""
stock_config -- single public entrypoint for stock configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains settings.
    No other component reads configuration files or environment variables.

Architecture position:
    Sits above ``stock_kernel`` and below ``stock_services``.  The kernel
    MUST NEVER import from ``stock_config``; services pass the values they
    need into kernel constructors.

Resolution order:
    1. ``path`` argument.
    2. ``STOCK_CONFIG_PATH`` environment variable.
    3. The bundled ``sets/default.yaml``.

    ``STOCK_DATABASE_URL``, when set, overrides ``database.url``.

Audit relevance:
    Every successful call emits a ``STOCK_CONFIG_TRACE`` log entry with the
    config id, version, checksum and source file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from stock_config.loader import load_configuration
from stock_config.schema import (
    ConcurrencySettings,
    DatabaseSettings,
    InventorySettings,
    StockConfiguration,
    TransferSettings,
)

_logger = logging.getLogger("stock_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_PATH_ENV = "STOCK_CONFIG_PATH"
DATABASE_URL_ENV = "STOCK_DATABASE_URL"


def get_active_config(path: str | Path | None = None) -> StockConfiguration:
    """Load, validate and return the active configuration.

    Raises:
        ConfigurationError: missing file, malformed YAML or invalid value.
    """
    resolved = Path(path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_PATH)
    config = load_configuration(resolved, database_url=os.environ.get(DATABASE_URL_ENV))

    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": config.source,
            "atomicity": config.transfers.atomicity.value,
        },
    )
    return config


__all__ = [
    "ConcurrencySettings",
    "DatabaseSettings",
    "InventorySettings",
    "StockConfiguration",
    "TransferSettings",
    "get_active_config",
]
