"""
StockConfiguration schema.

Frozen dataclasses for the settings the stock services read at runtime.
YAML sections are parsed into these types by the loader; each type checks
its own values in ``__post_init__`` and raises ConfigurationError with the
offending key.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from stock_kernel.exceptions import ConfigurationError
from stock_kernel.services.stock_coordinator import AtomicityMode


def _require_positive_int(value: Any, key: str, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}", key=key)
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigurationError(f"{key} must be positive, got {value}", key=key)


def _reject_unknown(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in {section}: {', '.join(unknown)}",
            key=f"{section}.{unknown[0]}",
        )


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """Where the stock tables live."""

    url: str = "sqlite:///:memory:"
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.url, str) or not self.url.strip():
            raise ConfigurationError("database.url must be a non-empty string", key="database.url")
        _require_positive_int(self.pool_size, "database.pool_size")
        _require_positive_int(self.max_overflow, "database.max_overflow", allow_zero=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DatabaseSettings:
        _reject_unknown("database", data, {"url", "pool_size", "max_overflow", "echo"})
        return cls(**data)


@dataclass(frozen=True)
class TransferSettings:
    """Numbering, paging and atomicity of transfers."""

    number_prefix: str = "TRF"
    number_width: int = 4
    default_page_size: int = 10
    max_page_size: int = 100
    atomicity: AtomicityMode = AtomicityMode.TRANSACTIONAL

    def __post_init__(self) -> None:
        if not isinstance(self.number_prefix, str) or not self.number_prefix.isalnum():
            raise ConfigurationError(
                f"transfers.number_prefix must be alphanumeric, got {self.number_prefix!r}",
                key="transfers.number_prefix",
            )
        _require_positive_int(self.number_width, "transfers.number_width")
        _require_positive_int(self.default_page_size, "transfers.default_page_size")
        _require_positive_int(self.max_page_size, "transfers.max_page_size")
        if self.default_page_size > self.max_page_size:
            raise ConfigurationError(
                "transfers.default_page_size cannot exceed transfers.max_page_size",
                key="transfers.default_page_size",
            )
        try:
            object.__setattr__(self, "atomicity", AtomicityMode(self.atomicity))
        except ValueError:
            raise ConfigurationError(
                f"transfers.atomicity must be one of "
                f"{[m.value for m in AtomicityMode]}, got {self.atomicity!r}",
                key="transfers.atomicity",
            ) from None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransferSettings:
        _reject_unknown(
            "transfers", data,
            {"number_prefix", "number_width", "default_page_size", "max_page_size", "atomicity"},
        )
        return cls(**data)


@dataclass(frozen=True)
class ConcurrencySettings:
    """Caller-side retry of optimistic-concurrency conflicts."""

    max_conflict_retries: int = 3
    retry_backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        _require_positive_int(self.max_conflict_retries, "concurrency.max_conflict_retries")
        if isinstance(self.retry_backoff_seconds, bool) or not isinstance(
            self.retry_backoff_seconds, (int, float)
        ) or self.retry_backoff_seconds < 0:
            raise ConfigurationError(
                "concurrency.retry_backoff_seconds must be a non-negative number",
                key="concurrency.retry_backoff_seconds",
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConcurrencySettings:
        _reject_unknown("concurrency", data, {"max_conflict_retries", "retry_backoff_seconds"})
        return cls(**data)


@dataclass(frozen=True)
class InventorySettings:
    """Defaults applied to newly registered products."""

    default_min_stock: int = 0
    low_stock_limit: int = 50

    def __post_init__(self) -> None:
        _require_positive_int(self.default_min_stock, "inventory.default_min_stock", allow_zero=True)
        _require_positive_int(self.low_stock_limit, "inventory.low_stock_limit")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InventorySettings:
        _reject_unknown("inventory", data, {"default_min_stock", "low_stock_limit"})
        return cls(**data)


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockConfiguration:
    """The complete runtime configuration."""

    config_id: str = "default"
    version: int = 1
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    transfers: TransferSettings = field(default_factory=TransferSettings)
    concurrency: ConcurrencySettings = field(default_factory=ConcurrencySettings)
    inventory: InventorySettings = field(default_factory=InventorySettings)
    source: str | None = None
    checksum: str = ""
