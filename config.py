#!/usr/bin/env python3
"""
Configuration management for the conversation exporter.

Handles backend location, credentials, cache lifetime and output settings.
"""
import json
import os
from pathlib import Path

CONFIG_FILE = Path(__file__).parent / "config.json"

TOKEN_ENV_VAR = "CHATGPT_ACCESS_TOKEN"

DEFAULT_CONFIG = {
    "base_url": "https://chatgpt.com",
    "access_token": "",               # user provides, or use env var
    "request_timeout": 30.0,          # seconds per backend request

    "cache_ttl_seconds": 5,           # repeat exports within this window reuse the result
    "output_dir": "data/exports",
    "log_level": "INFO"
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_config() -> dict:
    """
    Load configuration from config.json.
    Creates file with defaults if it doesn't exist.
    """
    if CONFIG_FILE.exists():
        with open(CONFIG_FILE, 'r') as f:
            config = json.load(f)
        # Merge with defaults to handle new config options
        merged = {**DEFAULT_CONFIG, **config}
        return merged
    else:
        save_config(DEFAULT_CONFIG)
        return DEFAULT_CONFIG.copy()


def save_config(config: dict) -> None:
    """Save configuration to config.json."""
    with open(CONFIG_FILE, 'w') as f:
        json.dump(config, f, indent=2)


def get_access_token(config: dict = None) -> str | None:
    """
    Get the backend access token from config or environment variable.

    Priority:
    1. config["access_token"] if non-empty
    2. CHATGPT_ACCESS_TOKEN env var
    """
    if config is None:
        config = load_config()

    if config.get("access_token"):
        return config["access_token"]

    return os.environ.get(TOKEN_ENV_VAR) or None


def validate_config(config: dict = None) -> tuple[bool, str]:
    """
    Validate configuration is complete and usable.
    Returns (is_valid, error_message).

    A missing token is not an error here: the session endpoint may still
    provide one at export time.
    """
    if config is None:
        config = load_config()

    base_url = config.get("base_url") or ""
    if not base_url.startswith(("http://", "https://")):
        return False, f"Invalid base_url: {base_url!r}. Must start with http:// or https://"

    timeout = config.get("request_timeout")
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        return False, f"Invalid request_timeout: {timeout}. Must be a positive number"

    ttl = config.get("cache_ttl_seconds")
    if not isinstance(ttl, (int, float)) or ttl < 0:
        return False, f"Invalid cache_ttl_seconds: {ttl}. Must be zero or positive"

    level = str(config.get("log_level", "")).upper()
    if level not in LOG_LEVELS:
        return False, f"Invalid log_level: {config.get('log_level')}. Must be one of {', '.join(LOG_LEVELS)}"

    return True, ""


if __name__ == "__main__":
    # Show current config when run directly
    config = load_config()
    print("Current configuration:")
    print(json.dumps({**config, "access_token": "***" if config.get("access_token") else ""}, indent=2))

    is_valid, error = validate_config(config)
    if is_valid:
        print("\nConfiguration is valid.")
        # Mask token for display
        token = get_access_token(config)
        if token:
            print(f"Access token: {token[:8]}...{token[-4:]}")
    else:
        print(f"\nConfiguration error: {error}")
