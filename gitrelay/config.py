#!/usr/bin/env python3
"""
Configuration for gitrelay.

Settings come from three layers, later ones winning:

1. built-in defaults (``get_default_config``)
2. a JSON, TOML or YAML file at ``$GITRELAY_CONFIG`` or ``~/.gitrelay/config.*``
3. ``GITRELAY_<SECTION>_<KEY>`` environment variables
"""

import os
import json
import tomllib
from pathlib import Path

import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stderr) # Default to stderr
    ]
)
logger = logging.getLogger("gitrelay")

CONFIG_DIR_NAME = '.gitrelay'
CONFIG_FILENAMES = ('config.json', 'config.toml', 'config.yaml', 'config.yml')
ENV_PREFIX = 'GITRELAY_'

# Environment variables that are read directly and never treated as overrides
RESERVED_ENV = ('GITRELAY_CONFIG', 'GITRELAY_SECRET_KEY')


def get_config_path():
    """Get the path to the configuration file.

    Checks in order:
    1. GITRELAY_CONFIG environment variable
    2. ~/.gitrelay/ directory, first non-trivial config.* file
    """
    explicit = os.environ.get('GITRELAY_CONFIG')
    if explicit and Path(explicit).exists():
        return Path(explicit)

    config_dir = Path.home() / CONFIG_DIR_NAME
    for filename in CONFIG_FILENAMES:
        candidate = config_dir / filename
        if candidate.exists() and candidate.stat().st_size > 10:  # Not empty/trivial
            return candidate

    # Where save_config writes when nothing exists yet
    return config_dir / 'config.json'


def _file_format(path):
    suffix = path.suffix.lower()
    if suffix == '.toml':
        return 'toml'
    if suffix in ('.yaml', '.yml'):
        return 'yaml'
    return 'json'


def _read_config_file(path):
    """Parse one config file into a dict."""
    fmt = _file_format(path)
    if fmt == 'toml':
        with open(path, 'rb') as f:
            return tomllib.load(f)
    if fmt == 'yaml':
        import yaml
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}
    with open(path, 'r') as f:
        return json.load(f)


def load_config():
    """Load defaults, merge the config file over them, then apply the environment."""
    config = get_default_config()
    config_path = get_config_path()

    if config_path.exists():
        try:
            config = merge_configs(config, _read_config_file(config_path))
        except Exception as e:
            logger.error(f"Error loading config from {config_path}: {e}")

    config = apply_env_overrides(config)
    configure_logging(config)
    return config


def save_config(config):
    """Write ``config`` to the active config path, in that file's format."""
    config_path = get_config_path()
    fmt = _file_format(config_path)

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            if fmt == 'toml':
                # tomllib is read-only
                import toml
                toml.dump(config, f)
            elif fmt == 'yaml':
                import yaml
                yaml.safe_dump(config, f, default_flow_style=False)
            else:
                json.dump(config, f, indent=2)
        logger.info(f"Configuration saved to {config_path}")
    except Exception as e:
        logger.error(f"Error saving config to {config_path}: {e}")


def configure_logging(config):
    """Apply the logging section of the configuration to the root logger."""
    logging_config = config.get("logging", {})
    level_name = str(logging_config.get("level", "INFO")).upper()
    logging.getLogger().setLevel(getattr(logging, level_name, logging.INFO))

    log_format = logging_config.get("format")
    if log_format:
        for handler in logging.getLogger().handlers:
            handler.setFormatter(logging.Formatter(log_format))


def get_default_config():
    """Get default configuration."""
    return {
        "general": {
            "repo_root": "~/.gitrelay/repos",
            "git_domain": "localhost:6543",
        },
        "relays": {
            "default": [
                "wss://theforest.nostr1.com",
                "wss://nostr.land",
            ],
            "search": [
                "wss://theforest.nostr1.com",
                "wss://nostr.land",
                "wss://relay.damus.io",
                "wss://thecitadel.nostr1.com",
                "wss://nostr21.com",
                "wss://relay.primal.net",
            ],
            "timeout_seconds": 5,
            "fetch_attempts": 2,
        },
        "cache": {
            "default_ttl_seconds": 300,
            "profile_ttl_seconds": 1800,
            "max_entries": 10000,
            "ownership_ttl_seconds": 300,
            "maintainer_ttl_seconds": 300,
        },
        "publish": {
            "max_attempts": 3,
            "base_delay_seconds": 1.0,
        },
        "sync": {
            "max_attempts": 3,
            "base_delay_seconds": 1.0,
            "allow_force_push": False,
            "git_timeout_seconds": 300,
        },
        "tor": {
            "socks_proxy": "127.0.0.1:9050",
        },
        "limits": {
            "max_repos_per_user": 100,
            "max_disk_quota_bytes": 10737418240,
            "cache_ttl_seconds": 300,
        },
        "access": {
            "unlimited_pubkeys": [],
            "level_ttl_seconds": 3600,
        },
        "audit": {
            "enabled": True,
            "log_file": "",
        },
        "logging": {
            "level": "INFO",
            "format": "%(levelname)s: %(message)s"
        },
    }


def merge_configs(base_config, override_config):
    """
    Recursively merge two configuration dictionaries.

    Args:
        base_config (dict): Base configuration (left unmodified)
        override_config (dict): Values that win over the base

    Returns:
        dict: Merged configuration
    """
    merged = dict(base_config)
    for key, value in override_config.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_configs(current, value)
        else:
            merged[key] = value
    return merged


def _convert_env_value(value, current):
    """Convert an environment string to the type of the value it replaces."""
    if isinstance(current, list):
        return [item.strip() for item in value.split(',') if item.strip()]

    numeric = isinstance(current, (int, float)) and not isinstance(current, bool)
    if not numeric:
        if value.lower() in ('true', '1', 'yes', 'on'):
            return True
        if value.lower() in ('false', '0', 'no', 'off'):
            return False

    if value.isdigit():
        return int(value)
    if isinstance(current, float):
        try:
            return float(value)
        except ValueError:
            return value
    return value


def _longest_key_match(section, parts):
    """The key of ``section`` spelling the longest prefix of ``parts``, and its length."""
    best_key, best_len = None, 0
    for key in section:
        key_parts = key.split('_')
        if parts[:len(key_parts)] == key_parts and len(key_parts) > best_len:
            best_key, best_len = key, len(key_parts)
    return best_key, best_len


def _resolve_env_key(config, parts):
    """
    Find the section and key an override names.

    Keys may themselves contain underscores, so at every level the longest
    matching key wins: ``sync_allow_force_push`` resolves to
    ``config['sync']['allow_force_push']``.
    """
    section = config
    while parts:
        key, length = _longest_key_match(section, parts)
        if key is None:
            return None, None
        parts = parts[length:]
        if not parts:
            return section, key
        if not isinstance(section[key], dict):
            return None, None
        section = section[key]
    return None, None


def apply_env_overrides(config):
    """
    Apply environment variable overrides to configuration.
    Environment variables follow the pattern: GITRELAY_SECTION_KEY
    For example: GITRELAY_SYNC_ALLOW_FORCE_PUSH=true
    or GITRELAY_RELAYS_DEFAULT=wss://a.example,wss://b.example
    """
    for env_key, value in os.environ.items():
        if not env_key.startswith(ENV_PREFIX) or env_key in RESERVED_ENV:
            continue

        parts = env_key[len(ENV_PREFIX):].lower().split('_')
        section, key = _resolve_env_key(config, parts)
        if section is None:
            logger.debug(f"Ignoring {env_key}: no such setting")
            continue
        section[key] = _convert_env_value(value, section[key])

    return config
