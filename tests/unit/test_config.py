"""Unit tests for configuration validation (progress_engine/config.py)"""
import pytest

from progress_engine import config
from progress_engine.exceptions import ConfigurationError


@pytest.fixture
def valid_config(monkeypatch):
    monkeypatch.setattr(config, "STORAGE_BACKEND", "memory")
    monkeypatch.setattr(config, "DB_POOL_MIN_SIZE", 2)
    monkeypatch.setattr(config, "DB_POOL_MAX_SIZE", 10)
    monkeypatch.setattr(config, "ACHIEVEMENTS_FILE", None)
    monkeypatch.setattr(config, "API_KEYS", ["test_api_key_12345"])
    monkeypatch.setattr(config, "MAX_CLOCK_SKEW_SECONDS", 300)
    monkeypatch.setattr(config, "IMPACT_WEIGHTS", {
        "research": 0.30, "support": 0.25, "knowledge": 0.20, "mentoring": 0.15, "consistency": 0.10,
    })
    return monkeypatch


def test_default_impact_weights_sum_to_one():
    assert sum(config.IMPACT_WEIGHTS.values()) == pytest.approx(1.0)


def test_validate_config_accepts_valid(valid_config):
    config.validate_config()


def test_validate_config_unknown_backend(valid_config):
    valid_config.setattr(config, "STORAGE_BACKEND", "redis")

    with pytest.raises(ConfigurationError) as exc_info:
        config.validate_config()

    assert exc_info.value.config_key == "STORAGE_BACKEND"


def test_validate_config_postgres_requires_url(valid_config):
    valid_config.setattr(config, "STORAGE_BACKEND", "postgres")
    valid_config.setattr(config, "DATABASE_URL", "")

    with pytest.raises(ConfigurationError) as exc_info:
        config.validate_config()

    assert exc_info.value.config_key == "DATABASE_URL"


def test_validate_config_pool_sizes(valid_config):
    valid_config.setattr(config, "DB_POOL_MAX_SIZE", 1)

    with pytest.raises(ConfigurationError):
        config.validate_config()


def test_validate_config_negative_weight(valid_config):
    valid_config.setattr(config, "IMPACT_WEIGHTS", {"research": -0.1})

    with pytest.raises(ConfigurationError) as exc_info:
        config.validate_config()

    assert exc_info.value.config_key == "IMPACT_WEIGHTS_RESEARCH"


def test_validate_config_missing_catalog(valid_config, tmp_path):
    valid_config.setattr(config, "ACHIEVEMENTS_FILE", tmp_path / "missing.json")

    with pytest.raises(ConfigurationError):
        config.validate_config()


def test_validate_config_existing_catalog(valid_config, tmp_path):
    catalog = tmp_path / "achievements.json"
    catalog.write_text("[]")
    valid_config.setattr(config, "ACHIEVEMENTS_FILE", catalog)

    config.validate_config()


def test_validate_config_requires_api_keys(valid_config):
    valid_config.setattr(config, "API_KEYS", [])

    with pytest.raises(ConfigurationError) as exc_info:
        config.validate_config()

    assert exc_info.value.config_key == "API_KEYS"


def test_validate_config_negative_clock_skew(valid_config):
    valid_config.setattr(config, "MAX_CLOCK_SKEW_SECONDS", -1)

    with pytest.raises(ConfigurationError) as exc_info:
        config.validate_config()

    assert exc_info.value.config_key == "MAX_CLOCK_SKEW_SECONDS"
