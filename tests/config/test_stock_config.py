"""
stock_config: YAML loading, validation and environment overrides.
"""

from pathlib import Path

import pytest
import yaml

from stock_config import (
    CONFIG_PATH_ENV,
    DATABASE_URL_ENV,
    StockConfiguration,
    TransferSettings,
    get_active_config,
)
from stock_config.loader import compute_checksum, load_configuration, parse_configuration
from stock_kernel.exceptions import ConfigurationError
from stock_kernel.services.stock_coordinator import AtomicityMode


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
    monkeypatch.delenv(DATABASE_URL_ENV, raising=False)


def _write(tmp_path: Path, data) -> Path:
    path = tmp_path / "stock.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaultConfiguration:

    def test_bundled_defaults(self):
        config = get_active_config()

        assert config.config_id == "default"
        assert config.transfers.number_prefix == "TRF"
        assert config.transfers.number_width == 4
        assert config.transfers.atomicity == AtomicityMode.TRANSACTIONAL
        assert config.concurrency.max_conflict_retries == 3
        assert config.source.endswith("default.yaml")
        assert len(config.checksum) == 64

    def test_trace_is_logged(self, captured_logs):
        get_active_config()
        traces = [r for r in captured_logs() if r["message"] == "STOCK_CONFIG_TRACE"]
        assert traces
        assert traces[0]["config_id"] == "default"

    def test_dataclass_defaults_are_valid(self):
        config = StockConfiguration()
        assert config.transfers.default_page_size <= config.transfers.max_page_size


class TestOverrides:

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"config_id": "east", "transfers": {"number_prefix": "EST"}})
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))

        config = get_active_config()

        assert config.config_id == "east"
        assert config.transfers.number_prefix == "EST"
        assert config.transfers.number_width == 4

    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_PATH_ENV, str(tmp_path / "missing.yaml"))
        path = _write(tmp_path, {"config_id": "explicit"})

        assert get_active_config(path).config_id == "explicit"

    def test_database_url_from_environment(self, monkeypatch):
        monkeypatch.setenv(DATABASE_URL_ENV, "sqlite:///override.db")
        assert get_active_config().database.url == "sqlite:///override.db"

    def test_atomicity_from_yaml(self, tmp_path):
        path = _write(tmp_path, {"transfers": {"atomicity": "compensating"}})
        assert load_configuration(path).transfers.atomicity == AtomicityMode.COMPENSATING


class TestInvalidConfiguration:

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_configuration(tmp_path / "nope.yaml")
        assert exc_info.value.key == "path"

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("transfers: [unclosed")
        with pytest.raises(ConfigurationError):
            load_configuration(path)

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_configuration(path)

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_configuration(path).transfers == TransferSettings()

    @pytest.mark.parametrize(
        "data, key",
        [
            ({"surprise": 1}, "surprise"),
            ({"transfers": {"colour": "red"}}, "transfers.colour"),
            ({"transfers": "fast"}, "transfers"),
            ({"transfers": {"number_prefix": "TR-F"}}, "transfers.number_prefix"),
            ({"transfers": {"number_width": 0}}, "transfers.number_width"),
            ({"transfers": {"atomicity": "eventual"}}, "transfers.atomicity"),
            ({"transfers": {"default_page_size": 200}}, "transfers.default_page_size"),
            ({"concurrency": {"max_conflict_retries": True}}, "concurrency.max_conflict_retries"),
            ({"concurrency": {"retry_backoff_seconds": -1}}, "concurrency.retry_backoff_seconds"),
            ({"inventory": {"default_min_stock": -1}}, "inventory.default_min_stock"),
            ({"database": {"url": ""}}, "database.url"),
            ({"version": 0}, "version"),
        ],
    )
    def test_invalid_values_name_their_key(self, data, key):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_configuration(data)
        assert exc_info.value.key == key


class TestChecksum:

    def test_key_order_does_not_matter(self):
        assert compute_checksum({"a": 1, "b": {"c": 2}}) == compute_checksum({"b": {"c": 2}, "a": 1})

    def test_content_changes_checksum(self):
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})
