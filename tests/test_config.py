"""
Tests for config.py - Configuration management.
"""
import pytest

from config import (
    DEFAULT_CONFIG,
    TOKEN_ENV_VAR,
    get_access_token,
    load_config,
    save_config,
    validate_config
)


def test_default_config_structure():
    """Test that DEFAULT_CONFIG has expected keys."""
    assert "base_url" in DEFAULT_CONFIG
    assert "access_token" in DEFAULT_CONFIG
    assert "request_timeout" in DEFAULT_CONFIG
    assert DEFAULT_CONFIG["cache_ttl_seconds"] == 5
    assert "log_level" in DEFAULT_CONFIG


def test_save_and_load_config(temp_dir, sample_config, monkeypatch):
    """Test saving and loading configuration."""
    config_file = temp_dir / "config.json"

    # Patch CONFIG_FILE to use temp directory
    import config as config_module
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_file)

    save_config(sample_config)
    assert config_file.exists()

    loaded = load_config()
    assert loaded["base_url"] == sample_config["base_url"]
    assert loaded["access_token"] == sample_config["access_token"]


def test_load_config_creates_default(temp_dir, monkeypatch):
    """Test that load_config creates default config if missing."""
    config_file = temp_dir / "config.json"

    import config as config_module
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_file)

    assert not config_file.exists()

    config = load_config()

    assert config_file.exists()
    assert config["base_url"] == DEFAULT_CONFIG["base_url"]


def test_config_merge_with_defaults(temp_dir, monkeypatch):
    """Test that loading config merges with defaults for new keys."""
    config_file = temp_dir / "config.json"

    import config as config_module
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_file)

    save_config({"base_url": "http://localhost:8080"})

    loaded = load_config()
    assert loaded["base_url"] == "http://localhost:8080"
    assert "cache_ttl_seconds" in loaded  # From defaults
    assert "output_dir" in loaded  # From defaults


def test_get_access_token_from_config(sample_config):
    """Test getting the token from config dict."""
    assert get_access_token(sample_config) == "test-token-12345"


def test_get_access_token_from_env(sample_config, monkeypatch):
    """Test falling back to the environment variable."""
    config = {**sample_config, "access_token": ""}
    monkeypatch.setenv(TOKEN_ENV_VAR, "env-token")

    assert get_access_token(config) == "env-token"


def test_get_access_token_prefers_config_over_env(sample_config, monkeypatch):
    """Test that config access_token takes precedence over environment."""
    monkeypatch.setenv(TOKEN_ENV_VAR, "env-token")

    assert get_access_token(sample_config) == "test-token-12345"


def test_get_access_token_missing(sample_config, monkeypatch):
    """Test None when neither config nor environment has a token."""
    config = {**sample_config, "access_token": ""}
    monkeypatch.delenv(TOKEN_ENV_VAR, raising=False)

    assert get_access_token(config) is None


def test_validate_config_valid(sample_config):
    """Test validation passes for a complete config."""
    is_valid, error = validate_config(sample_config)
    assert is_valid
    assert error == ""


def test_validate_config_missing_token_is_valid(sample_config, monkeypatch):
    """Test a missing token is left for the session endpoint to supply."""
    monkeypatch.delenv(TOKEN_ENV_VAR, raising=False)
    is_valid, _ = validate_config({**sample_config, "access_token": ""})
    assert is_valid


@pytest.mark.parametrize("key,value,message", [
    ("base_url", "chatgpt.com", "Invalid base_url"),
    ("request_timeout", 0, "Invalid request_timeout"),
    ("cache_ttl_seconds", -1, "Invalid cache_ttl_seconds"),
    ("log_level", "VERBOSE", "Invalid log_level"),
])
def test_validate_config_rejects_bad_values(sample_config, key, value, message):
    """Test each setting is range-checked."""
    is_valid, error = validate_config({**sample_config, key: value})
    assert not is_valid
    assert message in error
